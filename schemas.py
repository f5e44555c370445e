"""Pydantic schemas for requests.

Only request bodies are modelled here.  Responses are returned as plain
dicts built by the models' ``to_dict`` helpers.  Field names on the wire are
camelCase; Python code works with the snake_case attribute names.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class IssueTicketRequest(BaseModel):
    # Required fields are checked by the service so every missing field is
    # reported in one message.
    model_config = ConfigDict(populate_by_name=True)

    applicant: Optional[str] = None
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_requirement: Optional[str] = Field(default=None, alias="customerRequirement")
    machine_type: Optional[str] = Field(default=None, alias="machineType")
    start_date: Optional[str] = Field(default=None, alias="startDate")
    expected_completion_date: Optional[str] = Field(default=None, alias="expectedCompletionDate")
    fcst: Optional[str] = None
    mass_production_date: Optional[str] = Field(default=None, alias="massProductionDate")


class UpdateTicketRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[str] = None
    note: Optional[str] = None
    assignee: Optional[str] = None
    fcst: Optional[str] = None
    mass_production_date: Optional[str] = Field(default=None, alias="massProductionDate")
    reply_date: Optional[str] = Field(default=None, alias="replyDate")


class StateOverrideRequest(BaseModel):
    # Left untyped so booleans and fractions reach the service unconverted.
    model_config = ConfigDict(populate_by_name=True)

    current_number: Optional[Any] = Field(default=None, alias="currentNumber")
    next_number: Optional[Any] = Field(default=None, alias="nextNumber")
