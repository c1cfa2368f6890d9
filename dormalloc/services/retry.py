from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import get_settings
from ..db import SessionLocal
from ..domain.errors import (
    AllocationError,
    InventoryExhausted,
    RegistrantInvalid,
    SelectionInvalid,
    SelectionUnavailable,
    is_contention_error,
)
from ..domain.schemas.registration import RegistrantIn
from ..observability.metrics import ALLOCATIONS, ALLOC_RETRIES
from .allocator import AllocationOptions, AllocationOutcome, allocate_once

S = get_settings()
log = logging.getLogger("dormalloc.retry")

T = TypeVar("T")

RETRY_HINT = "please retry registration"

# patched in tests
_sleep = asyncio.sleep

_REASONS = {
    RegistrantInvalid: "invalid",
    SelectionInvalid: "selection_invalid",
    SelectionUnavailable: "unavailable",
}


class RetriesExhausted(Exception):
    def __init__(self, label: str, attempts: int, last: BaseException):
        super().__init__(f"{label} failed after {attempts} attempts: {last}")
        self.attempts = attempts
        self.last = last


def backoff_seconds(attempt: int, base_ms: Optional[int] = None) -> float:
    base = S.ALLOC_BACKOFF_BASE_MS if base_ms is None else base_ms
    return (2 ** attempt) * base / 1000.0


async def run_with_retry(
    op: Callable[[AsyncSession], Awaitable[T]],
    *,
    label: str,
    session_factory: async_sessionmaker = SessionLocal,
    max_attempts: Optional[int] = None,
    backoff_base_ms: Optional[int] = None,
) -> T:
    """
    Run `op(db)` in a fresh session, retrying contention failures with
    exponential backoff (200ms, 400ms, ... for base 100).

    Non-contention exceptions propagate on the first attempt.
    Raises RetriesExhausted when every attempt hit contention.
    """
    attempts = max_attempts or S.ALLOC_MAX_ATTEMPTS
    last: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as db:
                return await op(db)
        except Exception as e:
            if not is_contention_error(e):
                raise
            last = e
            ALLOC_RETRIES.labels(operation=label).inc()
            if attempt == attempts:
                break
            delay = backoff_seconds(attempt, backoff_base_ms)
            log.warning("%s contention on attempt %d/%d, retrying in %.0fms: %s", label, attempt, attempts, delay * 1000, e)
            await _sleep(delay)

    log.warning("%s gave up after %d attempts: %s", label, attempts, last)
    raise RetriesExhausted(label, attempts, last)


async def allocate(
    registrant: RegistrantIn,
    *,
    options: Optional[AllocationOptions] = None,
    session_factory: async_sessionmaker = SessionLocal,
) -> AllocationOutcome:
    """Allocate a bed and tag for a new registrant; never raises."""
    try:
        outcome = await run_with_retry(
            lambda db: allocate_once(db, registrant, options=options),
            label="allocate",
            session_factory=session_factory,
        )
    except InventoryExhausted as e:
        ALLOCATIONS.labels(outcome="exhausted").inc()
        return AllocationOutcome.failed(str(e), "exhausted")
    except AllocationError as e:
        ALLOCATIONS.labels(outcome="rejected").inc()
        return AllocationOutcome.failed(str(e), _REASONS.get(type(e), "error"))
    except RetriesExhausted as e:
        ALLOCATIONS.labels(outcome="error").inc()
        return AllocationOutcome.failed(f"{e.last}; {RETRY_HINT}", "conflict")
    except Exception as e:
        log.exception("allocation failed for %s", registrant.email)
        ALLOCATIONS.labels(outcome="error").inc()
        return AllocationOutcome.failed(f"Allocation failed: {e}", "error")

    pending = outcome.pending_room or outcome.pending_tag
    ALLOCATIONS.labels(outcome="pending" if pending else "assigned").inc()
    if pending:
        log.info(
            "registrant %s pending (room=%s tag=%s)",
            outcome.registrant.id, outcome.pending_room, outcome.pending_tag,
        )
    return outcome
