#!/usr/bin/env python3
"""Emit SQL that assigns a campaign-notifier role to a Supabase user."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None, notify: bool) -> str:
    role_value = _quote_sql(role)

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        target_where = f"email = {_quote_sql(email)}"

    sql = f"""-- Supabase role bootstrap SQL
-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).

update auth.users
set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})
where {target_where};
"""
    if notify:
        sql += f"""
insert into notifications (user_id, notification_type, title, message)
select id::text, 'SYSTEM_NOTICE', 'Role updated', 'Your account role is now ' || {role_value} || '.'
from auth.users
where {target_where};
"""
    return sql


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to assign a Supabase user role.")
    parser.add_argument(
        "--role",
        choices=["influencer", "client", "admin"],
        default="client",
        help="Role to assign in auth.users.raw_app_meta_data.role",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    parser.add_argument(
        "--notify",
        action="store_true",
        help="Also store a SYSTEM_NOTICE notification for the user",
    )
    args = parser.parse_args()

    print(
        render_sql(
            role=args.role,
            user_id=args.user_id,
            email=args.email,
            notify=args.notify,
        )
    )


if __name__ == "__main__":
    main()
