"""
Tests for database helper retry behavior.
"""

from unittest.mock import AsyncMock

import psycopg
import pytest

from mobile_trust.db import helpers
from mobile_trust.db.helpers import DatabaseError, with_db_retry


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr(helpers.asyncio, "sleep", sleep)
    return sleep


def _retrying(operation, **retry_kwargs):
    @with_db_retry(**retry_kwargs)
    async def load_rows():
        return await operation()

    return load_rows


@pytest.mark.asyncio
async def test_recoverable_errors_are_retried(no_sleep):
    operation = AsyncMock(side_effect=[DatabaseError("conn reset"), DatabaseError("conn reset"), 7])

    result = await _retrying(operation, max_retries=3, base_delay=0.1)()

    assert result == 7
    assert operation.await_count == 3
    assert [call.args[0] for call in no_sleep.await_args_list] == [0.1, 0.2]


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    operation = AsyncMock(side_effect=DatabaseError("conn reset"))

    with pytest.raises(DatabaseError):
        await _retrying(operation, max_retries=2)()
    assert operation.await_count == 3


@pytest.mark.asyncio
async def test_unrecoverable_errors_are_not_retried(no_sleep):
    operation = AsyncMock(side_effect=DatabaseError("duplicate key", recoverable=False))

    with pytest.raises(DatabaseError):
        await _retrying(operation)()
    assert operation.await_count == 1
    no_sleep.assert_not_awaited()


def test_operational_errors_are_recoverable():
    assert helpers._wrap_error(psycopg.OperationalError("gone"), "fetch_one").recoverable
    assert not helpers._wrap_error(psycopg.IntegrityError("dup"), "execute").recoverable
