"""
Pydantic schemas for the REST fallback.

Payloads use camelCase on the wire; models accept either spelling.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepPayload(CamelModel):
    id: Optional[str] = None
    title: str
    completed: bool = False
    due_date: Optional[str] = None
    assignee: Optional[str] = None
    created_at: Optional[str] = None


class TaskCreateRequest(CamelModel):
    # Required, but checked by the route so a missing field is a 400.
    title: Optional[str] = None
    list_id: Optional[str] = None
    completed: bool = False
    important: bool = False
    notes: Optional[str] = None
    due_date: Optional[str] = None
    steps: list[StepPayload] = []


class TaskUpdateRequest(CamelModel):
    title: Optional[str] = None
    completed: Optional[bool] = None
    important: Optional[bool] = None
    notes: Optional[str] = None
    due_date: Optional[str] = None
    list_id: Optional[str] = None
    steps: Optional[list[StepPayload]] = None


class StepUpdateRequest(CamelModel):
    title: Optional[str] = None
    completed: Optional[bool] = None
    due_date: Optional[str] = None
    assignee: Optional[str] = None
    order_index: Optional[int] = None


class StepResponse(CamelModel):
    id: str
    task_id: str
    title: str
    completed: bool
    due_date: Optional[str] = None
    assignee: Optional[str] = None
    order_index: int
    created_at: str
    updated_at: str


class TaskResponse(CamelModel):
    id: str
    title: str
    list_id: str
    completed: bool
    important: bool
    notes: Optional[str] = None
    due_date: Optional[str] = None
    steps: list[StepResponse]
    created_at: str
    updated_at: str


class ListCreateRequest(CamelModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


class ListUpdateRequest(CamelModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None


class ListResponse(CamelModel):
    id: str
    name: str
    icon: Optional[str] = None
    color: str
    created_at: str
    updated_at: str


class SuccessResponse(BaseModel):
    success: bool
