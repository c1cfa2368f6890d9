from __future__ import annotations

from sqlalchemy.exc import DBAPIError, IntegrityError

# SQLSTATEs raised by PostgreSQL when a SERIALIZABLE commit loses a race
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


class AllocationError(Exception): ...

# not transient: surfaced verbatim, never retried
class RegistrantInvalid(AllocationError): ...
class RegistrantNotFound(AllocationError): ...
class SelectionInvalid(AllocationError): ...
class SelectionUnavailable(AllocationError): ...
class InventoryExhausted(AllocationError): ...

# transient: a candidate was consumed between selection and commit
class AllocationConflict(AllocationError): ...


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    # asyncpg exposes .sqlstate, psycopg exposes .pgcode / .sqlstate
    for attr in ("sqlstate", "pgcode"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


def is_contention_error(exc: BaseException) -> bool:
    """True when retrying the same operation from scratch may succeed."""
    if isinstance(exc, AllocationConflict):
        return True
    if isinstance(exc, IntegrityError):
        # two writers raced on a unique tag_number / room_number
        return True
    if isinstance(exc, DBAPIError):
        if _sqlstate(exc) in _RETRYABLE_SQLSTATES:
            return True
        msg = str(exc.orig or exc).lower()
        return "database is locked" in msg or "could not serialize" in msg or "deadlock detected" in msg
    return False
