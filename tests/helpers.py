"""Assertion helpers shared by the test modules."""

import uuid

from payledger.engine import LedgerEngine


async def assert_balance(ledger: LedgerEngine, user_id: uuid.UUID, **expected: int) -> None:
    """Assert the named balance fields; fields not named are not checked."""
    balance = await ledger.get_balance(user_id)
    actual = {field: getattr(balance, field) for field in expected}
    assert actual == expected
