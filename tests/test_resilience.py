import asyncio

import pytest

from disclosure.core.config import settings
from disclosure.core.errors import TransientStoreError, ValidationError
from disclosure.core.resilience import retry_transient, store_operation


class FakeSession:
    def __init__(self):
        self.rollbacks = 0

    async def rollback(self):
        self.rollbacks += 1


class Worker:
    def __init__(self):
        self.session = FakeSession()

    @store_operation("slow_read")
    async def slow_read(self, request_id: str, delay: float):
        await asyncio.sleep(delay)
        return request_id

    @store_operation("lost_connection")
    async def lost_connection(self, request_id: str):
        raise ConnectionResetError("peer went away")

    @store_operation("bad_input")
    async def bad_input(self, request_id: str):
        raise ValidationError("nope")


async def test_timeout_becomes_transient(monkeypatch):
    monkeypatch.setattr(settings, "STORE_TIMEOUT_SECONDS", 0.01)
    worker = Worker()
    with pytest.raises(TransientStoreError) as err:
        await worker.slow_read("r1", 1)
    assert err.value.retryable
    assert err.value.context == {"operation": "slow_read", "request_id": "r1"}
    assert worker.session.rollbacks == 1


async def test_fast_call_passes_through():
    assert await Worker().slow_read("r1", 0) == "r1"


async def test_connection_errors_are_transient():
    worker = Worker()
    with pytest.raises(TransientStoreError):
        await worker.lost_connection("r1")
    assert worker.session.rollbacks == 1


async def test_domain_errors_pass_untouched():
    worker = Worker()
    with pytest.raises(ValidationError):
        await worker.bad_input("r1")
    assert worker.session.rollbacks == 0


async def test_retry_until_success():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientStoreError("try again")
        return "ok"

    assert await retry_transient(flaky, attempts=3, base_delay=0) == "ok"
    assert len(attempts) == 3


async def test_retry_gives_up():
    async def down():
        raise TransientStoreError("still down")

    with pytest.raises(TransientStoreError):
        await retry_transient(down, attempts=2, base_delay=0)


async def test_no_retry_for_permanent_errors():
    attempts = []

    async def invalid():
        attempts.append(1)
        raise ValidationError("bad")

    with pytest.raises(ValidationError):
        await retry_transient(invalid, attempts=3, base_delay=0)
    assert attempts == [1]
