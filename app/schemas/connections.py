from pydantic import BaseModel


class ConnectionStatusOut(BaseModel):
    user_id: str
    connected: bool
    total_connections: int


class DisconnectOut(BaseModel):
    disconnected: bool
