"""Data models for the ticket queue.

Tickets and the queue counters live in Redis, so the SQLModel classes here
are plain data models (no ``table=True``).  A ticket is stored as a flat
Redis hash whose field names are the camelCase names the API also uses;
``Ticket.to_hash`` and ``Ticket.from_hash`` translate between the two.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from sqlmodel import Field, SQLModel


# Bumped whenever the stored ticket hash changes shape.
SCHEMA_VERSION = "2"


class TicketStatus(str, Enum):
    """Possible statuses for a ticket."""

    pending = "pending"
    processing = "processing"
    replied = "replied"
    completed = "completed"
    cancelled = "cancelled"

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        return isinstance(value, str) and value in cls._value2member_map_

    @classmethod
    def coerce(cls, value: Any) -> "TicketStatus":
        """Map anything unrecognised to ``pending``."""
        text = str(value).strip().lower() if value is not None else ""
        if text in cls._value2member_map_:
            return cls(text)
        return cls.pending


# Python attribute -> Redis hash / JSON field name.  Status is handled on
# its own because it is an enum rather than free text.
TEXT_FIELDS: Dict[str, str] = {
    "applicant": "applicant",
    "customer_name": "customerName",
    "customer_requirement": "customerRequirement",
    "machine_type": "machineType",
    "start_date": "startDate",
    "expected_completion_date": "expectedCompletionDate",
    "fcst": "fcst",
    "mass_production_date": "massProductionDate",
    "assignee": "assignee",
    "reply_date": "replyDate",
    "note": "note",
}

ISSUE_REQUIRED_FIELDS = (
    "applicant",
    "customer_name",
    "customer_requirement",
    "machine_type",
    "start_date",
    "expected_completion_date",
)

UPDATABLE_FIELDS = (
    "status",
    "note",
    "assignee",
    "fcst",
    "mass_production_date",
    "reply_date",
)


class Ticket(SQLModel):
    ticket_number: int
    applicant: str = ""
    customer_name: str = ""
    customer_requirement: str = ""
    machine_type: str = ""
    start_date: str = ""
    expected_completion_date: str = ""
    fcst: str = ""
    mass_production_date: str = ""
    assignee: str = ""
    status: TicketStatus = Field(default=TicketStatus.pending)
    reply_date: str = ""
    note: str = ""

    @classmethod
    def from_hash(cls, ticket_number: int, data: Optional[Mapping[str, Any]]) -> "Ticket":
        """Build a ticket from a Redis hash, tolerating missing or odd fields."""
        data = data or {}
        values = {attr: str(data.get(key) or "") for attr, key in TEXT_FIELDS.items()}
        return cls(
            ticket_number=ticket_number,
            status=TicketStatus.coerce(data.get("status")),
            **values,
        )

    def to_hash(self) -> Dict[str, str]:
        data = {key: getattr(self, attr) for attr, key in TEXT_FIELDS.items()}
        data["status"] = self.status.value
        data["schemaVersion"] = SCHEMA_VERSION
        return data

    def reply_elapsed_days(self, today: Optional[date] = None) -> Optional[int]:
        """Days since the reply went out, only while the ticket sits in ``replied``."""
        if self.status != TicketStatus.replied or not self.reply_date:
            return None
        try:
            replied_on = date.fromisoformat(self.reply_date[:10])
        except ValueError:
            return None
        return max(((today or date.today()) - replied_on).days, 0)

    def to_dict(self, today: Optional[date] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ticketNumber": self.ticket_number}
        data.update({key: getattr(self, attr) for attr, key in TEXT_FIELDS.items()})
        data["status"] = self.status.value
        data["replyElapsedDays"] = self.reply_elapsed_days(today)
        return data


class QueueState(SQLModel):
    current_number: int = 0
    last_ticket: int = 0
    next_number: int = 1

    @property
    def waiting_count(self) -> int:
        return max(self.last_ticket - self.current_number, 0)

    @property
    def has_waiting(self) -> bool:
        return self.next_number <= self.last_ticket

    def to_dict(self) -> Dict[str, int]:
        return {
            "currentNumber": self.current_number,
            "lastTicket": self.last_ticket,
            "nextNumber": self.next_number,
            "waitingCount": self.waiting_count,
        }
