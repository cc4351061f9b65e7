#!/usr/bin/env python3
"""Generate an API key for a machine caller and its CN_MACHINE_CREDENTIALS_JSON entry."""

from __future__ import annotations

import argparse
import hashlib
import json
import secrets

DEFAULT_SCOPES = ["selection:write", "notifications:write"]


def credential_entry(*, module_id: str, api_key: str, scopes: list[str]) -> dict[str, dict[str, object]]:
    return {
        module_id: {
            "key_hash": hashlib.sha256(api_key.encode("utf-8")).hexdigest(),
            "scopes": scopes,
        }
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue a machine API key.")
    parser.add_argument("--module-id", required=True, help="Value the caller sends as X-Module-Id")
    parser.add_argument(
        "--scope",
        action="append",
        dest="scopes",
        help="Scope to grant; repeat for several (default: selection:write, notifications:write)",
    )
    parser.add_argument("--api-key", help="Use this key instead of generating one")
    args = parser.parse_args()

    api_key = args.api_key or secrets.token_urlsafe(32)
    entry = credential_entry(module_id=args.module_id, api_key=api_key, scopes=args.scopes or DEFAULT_SCOPES)

    print(f"api_key={api_key}")
    print(json.dumps(entry, sort_keys=True))


if __name__ == "__main__":
    main()
