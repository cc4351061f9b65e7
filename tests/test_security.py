from __future__ import annotations

import asyncio
import hashlib
import json

import pytest
from fastapi import HTTPException

import app.core.security as security
from app.core.auth import PrincipalType
from app.core.config import Settings


def _settings(**overrides) -> Settings:
    return Settings(**overrides)


def test_role_resolution_uses_only_app_metadata_for_elevated_roles() -> None:
    role = security._resolve_human_role(
        {
            "id": "user-1",
            "app_metadata": {},
            "user_metadata": {"role": "client"},
        }
    )
    assert role == "influencer"


def test_role_resolution_supports_app_metadata_roles_array() -> None:
    role = security._resolve_human_role(
        {
            "id": "client-1",
            "app_metadata": {"roles": ["influencer", "client"]},
        }
    )
    assert role == "client"


def test_role_resolution_defaults_to_influencer() -> None:
    assert security._resolve_human_role({"id": "user-1"}) == "influencer"


def test_parse_machine_credentials_skips_malformed_entries() -> None:
    raw = json.dumps(
        {
            "selection-workflow": {"key_hash": "ABC", "scopes": ["selection:write", 3]},
            "broken": {"scopes": ["notifications:write"]},
            "not-a-dict": "nope",
        }
    )
    assert security.parse_machine_credentials(raw) == {
        "selection-workflow": {"key_hash": "abc", "scopes": ["selection:write"]},
    }
    assert security.parse_machine_credentials("{not json") == {}
    assert security.parse_machine_credentials(None) == {}


def test_machine_principal_accepts_matching_key() -> None:
    key_hash = hashlib.sha256(b"secret-key").hexdigest()
    settings = _settings(
        machine_credentials_json=json.dumps(
            {"selection-workflow": {"key_hash": key_hash, "scopes": ["selection:write"]}}
        )
    )

    principal = asyncio.run(
        security.get_machine_principal(settings=settings, x_api_key="secret-key", x_module_id="selection-workflow")
    )

    assert principal.principal_type is PrincipalType.MACHINE
    assert principal.subject == "selection-workflow"
    assert principal.scopes == {"selection:write"}


@pytest.mark.parametrize(
    ("api_key", "module_id"),
    [("wrong-key", "selection-workflow"), ("secret-key", "unknown"), (None, "selection-workflow")],
)
def test_machine_principal_rejects_bad_credentials(api_key: str | None, module_id: str) -> None:
    key_hash = hashlib.sha256(b"secret-key").hexdigest()
    settings = _settings(
        machine_credentials_json=json.dumps({"selection-workflow": {"key_hash": key_hash, "scopes": []}})
    )

    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(security.get_machine_principal(settings=settings, x_api_key=api_key, x_module_id=module_id))
    assert exc_info.value.status_code == 401


def test_human_principal_requires_configured_identity_provider() -> None:
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(security.get_human_principal(settings=_settings(), authorization="Bearer token"))
    assert exc_info.value.status_code == 503


def test_human_principal_maps_role_to_scopes(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _fake_fetch(**_: object) -> dict[str, object]:
        return {"id": "client-1", "app_metadata": {"role": "client"}}

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
    settings = _settings(supabase_url="https://example.supabase.co", supabase_anon_key="anon-key")

    principal = asyncio.run(security.get_human_principal(settings=settings, authorization="Bearer token"))

    assert principal.role == "client"
    assert principal.actor_id == "client-1"
    assert "missions:review" in principal.scopes
    assert "applications:write" not in principal.scopes
