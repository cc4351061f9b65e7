from __future__ import annotations

import pytest

from app.services.repository import PostgresRepository


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (" 42 ", 42),
        (str(2**63 - 1), 2**63 - 1),
        (str(-(2**63)), -(2**63)),
        ("99999999999999999999", None),
        (str(-(2**63) - 1), None),
        ("not-a-number", None),
        (None, None),
    ],
)
def test_coerce_notification_id_rejects_values_postgres_cannot_bind(raw, expected) -> None:
    assert PostgresRepository._coerce_notification_id(raw) == expected
