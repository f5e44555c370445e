"""Queue logic on top of Redis.

Every operation takes a ``redis.Redis`` client (created with
``decode_responses=True``) as its first argument, the same way the HTTP
layer hands one out per request.  Redis is the only shared state: the
counters, the ticket index list and one hash per ticket.  Correctness rests
on single-command atomicity plus MULTI/EXEC pipelines; there is no
application-level locking.
"""

from __future__ import annotations

import functools
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

import redis

import excel
from config import IMPORT_MAX_ERRORS, QUEUE_KEY_PREFIX, REDIS_URL
from exceptions import NotFoundError, StoreError, ValidationError
from models import (
    ISSUE_REQUIRED_FIELDS,
    TEXT_FIELDS,
    UPDATABLE_FIELDS,
    QueueState,
    Ticket,
    TicketStatus,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

CURRENT_KEY = f"{QUEUE_KEY_PREFIX}:current"
LAST_KEY = f"{QUEUE_KEY_PREFIX}:last"
NEXT_KEY = f"{QUEUE_KEY_PREFIX}:next"
TICKETS_KEY = f"{QUEUE_KEY_PREFIX}:tickets"


# Redis counters are signed 64-bit; keep room for one more INCR.
MAX_TICKET_NUMBER = 2**63 - 2


def ticket_key(ticket_number: int) -> str:
    return f"{QUEUE_KEY_PREFIX}:ticket:{ticket_number}"


# Redis connection
_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return the shared Redis client, creating it on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


def store_operation(name: str) -> Callable[[F], F]:
    """Turn any Redis failure inside the wrapped call into a ``StoreError``."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except redis.RedisError as exc:
                logger.error("Redis call failed during %s: %s", name, exc)
                raise StoreError(f"Storage unavailable while trying to {name}") from exc

        return wrapper  # type: ignore[return-value]

    return decorator


def _to_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_counter(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number", fields=[name])
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{name} must be a whole number", fields=[name])
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ValidationError(f"{name} must be a number", fields=[name]) from None
    if not isinstance(value, int):
        raise ValidationError(f"{name} must be a number", fields=[name])
    if value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}", fields=[name])
    if value > MAX_TICKET_NUMBER:
        raise ValidationError(f"{name} is too large", fields=[name])
    return value


def _check_ticket_number(ticket_number: Any) -> int:
    if (
        isinstance(ticket_number, bool)
        or not isinstance(ticket_number, int)
        or not 0 < ticket_number <= MAX_TICKET_NUMBER
    ):
        raise ValidationError("Invalid ticket number", fields=["ticketNumber"])
    return ticket_number


def _state_from_values(current: Any, last: Any, nxt: Any) -> QueueState:
    current_number = _to_int(current, 0)
    return QueueState(
        current_number=current_number,
        last_ticket=_to_int(last, 0),
        next_number=_to_int(nxt, current_number + 1),
    )


def _index_numbers(raw: List[Any]) -> List[int]:
    numbers = []
    for item in raw:
        number = _to_int(item, 0)
        if number > 0:
            numbers.append(number)
    return numbers


# ===== QUEUE STATE =====

@store_operation("read the queue state")
def get_state(r: redis.Redis) -> QueueState:
    return _state_from_values(*r.mget(CURRENT_KEY, LAST_KEY, NEXT_KEY))


@store_operation("call the next number")
def advance(r: redis.Redis) -> Tuple[QueueState, bool]:
    """Move ``next_number`` into ``current_number``.

    Returns the resulting state and whether anything changed.  When the next
    number has not been issued yet the state is returned untouched.
    """

    def _advance(pipe: redis.client.Pipeline) -> Tuple[QueueState, bool]:
        state = _state_from_values(*pipe.mget(CURRENT_KEY, LAST_KEY, NEXT_KEY))
        if not state.has_waiting:
            return state, False
        called = state.next_number
        pipe.multi()
        pipe.mset({CURRENT_KEY: called, NEXT_KEY: called + 1})
        return (
            QueueState(current_number=called, last_ticket=state.last_ticket, next_number=called + 1),
            True,
        )

    state, advanced = r.transaction(
        _advance, CURRENT_KEY, LAST_KEY, NEXT_KEY, value_from_callable=True
    )
    if advanced:
        logger.info("Now serving #%s (next #%s)", state.current_number, state.next_number)
    else:
        logger.info("No more tickets to call (last issued #%s)", state.last_ticket)
    return state, advanced


@store_operation("override the queue counters")
def override_state(
    r: redis.Redis,
    current_number: Any = None,
    next_number: Any = None,
) -> QueueState:
    """Set the counters to arbitrary values; no ordering is enforced."""
    updates: Dict[str, int] = {}
    if current_number is not None:
        updates[CURRENT_KEY] = _parse_counter("currentNumber", current_number, 0)
    if next_number is not None:
        updates[NEXT_KEY] = _parse_counter("nextNumber", next_number, 1)
    if not updates:
        raise ValidationError("Provide currentNumber and/or nextNumber")

    r.mset(updates)
    logger.info("Queue counters overridden: %s", updates)
    return get_state(r)


# ===== TICKETS =====

@store_operation("issue a ticket")
def issue_ticket(r: redis.Redis, fields: Mapping[str, Any]) -> Ticket:
    values = {attr: str(fields.get(attr) or "").strip() for attr in TEXT_FIELDS}
    missing = [attr for attr in ISSUE_REQUIRED_FIELDS if not values[attr]]
    if missing:
        names = [TEXT_FIELDS[attr] for attr in missing]
        raise ValidationError(f"Missing required fields: {', '.join(names)}", fields=names)

    # Only descriptive fields can be supplied at issuance.
    for attr in ("note", "assignee", "reply_date"):
        values[attr] = ""

    ticket_number = r.incr(LAST_KEY)
    ticket = Ticket(ticket_number=ticket_number, status=TicketStatus.pending, **values)

    pipe = r.pipeline(transaction=True)
    pipe.rpush(TICKETS_KEY, ticket_number)
    pipe.hset(ticket_key(ticket_number), mapping=ticket.to_hash())
    pipe.execute()

    logger.info("Issued ticket #%s for %s", ticket_number, ticket.customer_name)
    return ticket


@store_operation("list tickets")
def list_tickets(
    r: redis.Redis,
    limit: Optional[int] = None,
    newest_first: bool = False,
) -> List[Ticket]:
    """Return tickets in index order, optionally only the ``limit`` most recent."""
    start = -limit if limit else 0
    numbers = _index_numbers(r.lrange(TICKETS_KEY, start, -1))

    pipe = r.pipeline(transaction=False)
    for number in numbers:
        pipe.hgetall(ticket_key(number))
    records = pipe.execute() if numbers else []

    tickets = [Ticket.from_hash(number, data) for number, data in zip(numbers, records)]
    if newest_first:
        tickets.reverse()
    return tickets


@store_operation("read a ticket")
def get_ticket(r: redis.Redis, ticket_number: int) -> Ticket:
    """Unknown numbers come back as a blank pending ticket."""
    ticket_number = _check_ticket_number(ticket_number)
    return Ticket.from_hash(ticket_number, r.hgetall(ticket_key(ticket_number)))


@store_operation("update a ticket")
def update_ticket(r: redis.Redis, ticket_number: int, updates: Mapping[str, Any]) -> Ticket:
    """Apply a partial update; fields left out or set to ``None`` are kept."""
    ticket_number = _check_ticket_number(ticket_number)
    changes: Dict[str, str] = {}

    status = updates.get("status")
    if status is not None:
        if not TicketStatus.is_valid(status):
            allowed = ", ".join(s.value for s in TicketStatus)
            raise ValidationError(f"Invalid status '{status}'; expected one of {allowed}", fields=["status"])
        changes["status"] = status

    for attr in UPDATABLE_FIELDS:
        if attr == "status" or updates.get(attr) is None:
            continue
        changes[TEXT_FIELDS[attr]] = str(updates[attr])

    key = ticket_key(ticket_number)
    current = r.hgetall(key)
    if not current:
        raise NotFoundError(f"Ticket #{ticket_number} not found")

    if (
        changes.get("status") == TicketStatus.replied.value
        and "replyDate" not in changes
        and current.get("status") != TicketStatus.replied.value
    ):
        changes["replyDate"] = date.today().isoformat()

    if changes:
        r.hset(key, mapping=changes)
        logger.info("Updated ticket #%s: %s", ticket_number, sorted(changes))
    return Ticket.from_hash(ticket_number, {**current, **changes})


@store_operation("delete a ticket")
def delete_ticket(r: redis.Redis, ticket_number: int) -> int:
    ticket_number = _check_ticket_number(ticket_number)
    pipe = r.pipeline(transaction=True)
    pipe.delete(ticket_key(ticket_number))
    pipe.lrem(TICKETS_KEY, 0, ticket_number)
    deleted, removed = pipe.execute()
    logger.info(
        "Deleted ticket #%s (record=%s, index entries=%s)", ticket_number, deleted, removed
    )
    return ticket_number


@store_operation("reset the queue")
def reset(r: redis.Redis) -> None:
    """Drop every ticket and zero the counters.  Irreversible."""
    numbers = _index_numbers(r.lrange(TICKETS_KEY, 0, -1))
    pipe = r.pipeline(transaction=True)
    for number in numbers:
        pipe.delete(ticket_key(number))
    pipe.delete(TICKETS_KEY, NEXT_KEY)
    pipe.mset({CURRENT_KEY: 0, LAST_KEY: 0})
    pipe.execute()
    logger.warning("Queue reset: %s tickets removed", len(numbers))


# ===== EXCEL EXPORT / IMPORT =====

def export_tickets(r: redis.Redis, now: Optional[datetime] = None) -> Tuple[bytes, str]:
    """Snapshot every ticket into an .xlsx file; returns (content, filename)."""
    tickets = list_tickets(r)
    if not tickets:
        raise NotFoundError("No tickets to export")
    content = excel.build_workbook(tickets)
    filename = excel.export_filename(now)
    logger.info("Exported %s tickets to %s", len(tickets), filename)
    return content, filename


def _raise_last_ticket(r: redis.Redis, ticket_number: int) -> None:
    def _raise(pipe: redis.client.Pipeline) -> None:
        if _to_int(pipe.get(LAST_KEY), 0) < ticket_number:
            pipe.multi()
            pipe.set(LAST_KEY, ticket_number)

    r.transaction(_raise, LAST_KEY)


def _parse_ticket_number(text: str) -> int:
    """Read a sheet's ticket number exactly; "12" and "1.2e1" pass, "12.5" does not."""
    try:
        number = int(text)
    except ValueError:
        try:
            value = Decimal(text)
        except InvalidOperation:
            raise ValidationError("invalid ticket number") from None
        if not value.is_finite() or value != value.to_integral_value() or value > MAX_TICKET_NUMBER:
            raise ValidationError("invalid ticket number")
        number = int(value)
    if not 0 < number <= MAX_TICKET_NUMBER:
        raise ValidationError("invalid ticket number")
    return number


def _import_row(r: redis.Redis, row: List[Any], columns: Dict[str, int]) -> bool:
    """Upsert one sheet row; returns True when the ticket was new."""

    def cell(attr: str) -> str:
        index = columns[attr]
        return excel.cell_text(row[index]) if index < len(row) else ""

    ticket_number = _parse_ticket_number(cell("ticket_number"))

    key = ticket_key(ticket_number)
    existing = r.hgetall(key)
    is_new = not existing

    values = {TEXT_FIELDS[attr]: cell(attr) for attr in TEXT_FIELDS if attr in columns}
    if "status" in columns:
        values["status"] = TicketStatus.coerce(cell("status")).value
    ticket = Ticket.from_hash(ticket_number, {**existing, **values})
    r.hset(key, mapping=ticket.to_hash())

    if is_new:
        # Separate read before the push: two concurrent imports of the same
        # new number can still both append it.
        if ticket_number not in _index_numbers(r.lrange(TICKETS_KEY, 0, -1)):
            r.rpush(TICKETS_KEY, ticket_number)
        _raise_last_ticket(r, ticket_number)
    return is_new


def import_tickets(r: redis.Redis, content: bytes) -> Dict[str, Any]:
    """Upsert tickets from an .xlsx file.

    Bad rows are recorded and skipped; only an unreadable file or a missing
    ticket-number column aborts the whole import.
    """
    try:
        rows = excel.read_rows(content)
    except Exception as exc:
        logger.warning("Could not read uploaded workbook: %s", exc)
        raise ValidationError("File is not a readable .xlsx workbook") from exc

    if len(rows) < 2:
        raise ValidationError("The sheet needs a header row and at least one data row")

    columns = excel.map_headers(rows[0])
    if "ticket_number" not in columns:
        raise ValidationError("The sheet must have a ticket number column", fields=["ticketNumber"])

    imported = 0
    updated = 0
    errors: List[str] = []
    for offset, row in enumerate(rows[1:]):
        line = offset + 2
        if not row or excel.is_blank_row(row):
            continue
        try:
            if _import_row(r, row, columns):
                imported += 1
            else:
                updated += 1
        except ValidationError as exc:
            errors.append(f"Row {line}: {exc.message}")
        except redis.RedisError as exc:
            logger.error("Redis call failed importing row %s: %s", line, exc)
            errors.append(f"Row {line}: storage error")

    logger.info(
        "Import finished: %s new, %s updated, %s errors", imported, updated, len(errors)
    )
    return {
        "imported": imported,
        "updated": updated,
        "errors": errors[:IMPORT_MAX_ERRORS],
        "errorCount": len(errors),
    }
