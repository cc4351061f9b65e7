import hashlib
import hmac
import json
import logging
from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from app.core.auth import Principal, PrincipalType, UserRole
from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

ROLE_SCOPES: dict[str, set[str]] = {
    UserRole.INFLUENCER.value: {
        "notifications:read",
        "applications:write",
        "missions:write",
        "campaigns:read",
    },
    UserRole.CLIENT.value: {
        "notifications:read",
        "missions:review",
        "campaigns:read",
    },
    UserRole.ADMIN.value: {
        "notifications:read",
        "applications:write",
        "missions:write",
        "missions:review",
        "campaigns:read",
    },
}
ELEVATED_ROLES = {UserRole.CLIENT.value, UserRole.ADMIN.value}


async def get_machine_principal(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    if not x_api_key or not x_module_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"machine auth requires {settings.api_key_header} and X-Module-Id",
        )

    credentials = parse_machine_credentials(settings.machine_credentials_json)
    record = credentials.get(x_module_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")

    key_hash = hashlib.sha256(x_api_key.encode("utf-8")).hexdigest()
    if not hmac.compare_digest(record["key_hash"], key_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid module credentials")

    return Principal(
        principal_type=PrincipalType.MACHINE,
        subject=x_module_id,
        scopes=set(record["scopes"]),
        actor_id=x_module_id,
    )


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="human auth requires bearer token",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth is not configured",
        )

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    role = _resolve_human_role(user)

    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        role=role,
        scopes=set(ROLE_SCOPES.get(role, ROLE_SCOPES[UserRole.INFLUENCER.value])),
        actor_id=user_id,
    )


def parse_machine_credentials(raw: str | None) -> dict[str, dict[str, Any]]:
    """Parse ``{"module-id": {"key_hash": "<sha256>", "scopes": [...]}}``.

    Malformed entries are skipped so one bad credential cannot lock out the others.
    """
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("machine credentials json is not valid json; machine auth disabled")
        return {}
    if not isinstance(payload, dict):
        return {}

    parsed: dict[str, dict[str, Any]] = {}
    for module_id, entry in payload.items():
        if not isinstance(entry, dict):
            continue
        key_hash = entry.get("key_hash")
        if not isinstance(key_hash, str) or not key_hash:
            continue
        scopes = entry.get("scopes")
        if not isinstance(scopes, list):
            scopes = []
        parsed[str(module_id)] = {
            "key_hash": key_hash.lower(),
            "scopes": [scope for scope in scopes if isinstance(scope, str) and scope],
        }
    return parsed


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase auth verification failed",
        )

    return response.json()


def _resolve_human_role(user: dict[str, Any]) -> str:
    app_metadata = user.get("app_metadata")
    if isinstance(app_metadata, dict):
        role = app_metadata.get("role")
        if isinstance(role, str) and role in ROLE_SCOPES:
            return role
        roles = app_metadata.get("roles")
        if isinstance(roles, list):
            for candidate in (UserRole.ADMIN.value, UserRole.CLIENT.value, UserRole.INFLUENCER.value):
                if candidate in roles:
                    return candidate

    # user_metadata is user-editable, so it can never grant an elevated role.
    user_metadata = user.get("user_metadata")
    if isinstance(user_metadata, dict):
        role = user_metadata.get("role")
        if isinstance(role, str) and role in ROLE_SCOPES and role not in ELEVATED_ROLES:
            return role

    return UserRole.INFLUENCER.value
