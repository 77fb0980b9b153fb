import asyncio
import functools
import inspect
import logging
from typing import Awaitable, Callable, TypeVar

from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from disclosure.core.config import settings
from disclosure.core.errors import DisclosureError, TransientStoreError

log = logging.getLogger("resilience")

T = TypeVar("T")

_TRANSIENT = (
    asyncio.TimeoutError,
    ConnectionError,
    OperationalError,
    InterfaceError,
    RedisConnectionError,
    RedisTimeoutError,
)

def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSIENT):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)

def _entity_ids(sig: inspect.Signature, args, kwargs) -> dict:
    try:
        bound = sig.bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    return {k: v for k, v in bound.arguments.items() if k.endswith("_id") and v is not None}

async def _rollback_quietly(owner) -> None:
    session = getattr(owner, "session", None)
    if session is None:
        return
    try:
        await session.rollback()
    except Exception:
        log.debug("rollback after failure did not complete", exc_info=True)

def store_operation(name: str):
    """Bound the wrapped service call by STORE_TIMEOUT_SECONDS and classify failures.

    Timeouts and lost connections become TransientStoreError. Failures are
    logged with the operation name and the *_id arguments only.
    """
    def deco(fn):
        sig = inspect.signature(fn)

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            ids = _entity_ids(sig, args, kwargs)
            try:
                return await asyncio.wait_for(fn(*args, **kwargs), timeout=settings.STORE_TIMEOUT_SECONDS)
            except DisclosureError as e:
                log.info("%s rejected (%s) %s", name, e.code, ids)
                raise
            except Exception as e:
                if args:
                    await _rollback_quietly(args[0])
                if is_transient(e):
                    log.warning("%s transient failure %s: %s", name, ids, e.__class__.__name__)
                    raise TransientStoreError(f"{name} could not reach the store", operation=name, **ids) from e
                log.exception("%s failed %s", name, ids)
                raise
        return wrapper
    return deco

async def retry_transient(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int | None = None,
    base_delay: float = 0.2,
    max_delay: float = 2.0,
) -> T:
    attempts = attempts or settings.RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except TransientStoreError:
            if attempt >= attempts:
                raise
            backoff = min(max_delay, base_delay * 2 ** (attempt - 1))  # 0.2, 0.4, 0.8 ...
            log.info("transient store error, retry %d/%d in %.1fs", attempt, attempts - 1, backoff)
            await asyncio.sleep(backoff)
    raise RuntimeError("retry_transient called with attempts < 1")
