"""
HTTP routes for the task and list REST API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from backend.db import DbClient
from backend.dependencies import get_db_client
from backend.schemas import (
    ListCreateRequest,
    ListResponse,
    ListUpdateRequest,
    StepResponse,
    StepUpdateRequest,
    SuccessResponse,
    TaskCreateRequest,
    TaskResponse,
    TaskUpdateRequest,
)
from shared.errors import ValidationError
from shared.types import DEFAULT_LIST_ID

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tasks", response_model=list[TaskResponse])
def list_tasks(db: DbClient = Depends(get_db_client)):
    return [task.as_dict() for task in db.list_tasks()]


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(task_id: str, db: DbClient = Depends(get_db_client)):
    task = db.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.as_dict()


@router.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(payload: TaskCreateRequest, db: DbClient = Depends(get_db_client)):
    if not payload.title or not payload.list_id:
        raise HTTPException(status_code=400, detail="Title and listId are required")
    task = db.create_task(
        title=payload.title,
        list_id=payload.list_id,
        completed=payload.completed,
        important=payload.important,
        notes=payload.notes,
        due_date=payload.due_date,
        steps=[step.model_dump() for step in payload.steps],
    )
    logger.info("Created task %s in list %s", task.id, task.list_id)
    return task.as_dict()


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: str, payload: TaskUpdateRequest, db: DbClient = Depends(get_db_client)
):
    # Only fields present in the body change; an explicit null clears.
    changes = payload.model_dump(exclude_unset=True, exclude={"steps"})
    for required in ("title", "list_id", "completed", "important"):
        if required in changes and changes[required] in (None, ""):
            raise HTTPException(status_code=400, detail=f"{required} cannot be empty")
    steps = None
    if payload.steps is not None:
        steps = [step.model_dump() for step in payload.steps]
    task = db.update_task(task_id, changes, steps=steps)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.as_dict()


@router.delete("/tasks/{task_id}", response_model=SuccessResponse)
def delete_task(task_id: str, db: DbClient = Depends(get_db_client)):
    if not db.delete_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    logger.info("Deleted task %s", task_id)
    return SuccessResponse(success=True)


@router.patch("/tasks/{task_id}/steps/{step_id}", response_model=StepResponse)
def update_step(
    task_id: str,
    step_id: str,
    payload: StepUpdateRequest,
    db: DbClient = Depends(get_db_client),
):
    step = db.update_step(task_id, step_id, payload.model_dump(exclude_unset=True))
    if not step:
        raise HTTPException(status_code=404, detail="Step not found")
    return step.as_dict()


@router.get("/lists", response_model=list[ListResponse])
def list_lists(db: DbClient = Depends(get_db_client)):
    return [record.as_dict() for record in db.list_lists()]


@router.get("/lists/{list_id}", response_model=ListResponse)
def get_list(list_id: str, db: DbClient = Depends(get_db_client)):
    record = db.get_list(list_id)
    if not record:
        raise HTTPException(status_code=404, detail="List not found")
    return record.as_dict()


@router.post("/lists", response_model=ListResponse, status_code=201)
def create_list(payload: ListCreateRequest, db: DbClient = Depends(get_db_client)):
    if not payload.name:
        raise HTTPException(status_code=400, detail="Name is required")
    record = db.create_list(name=payload.name, icon=payload.icon, color=payload.color)
    logger.info("Created list %s", record.id)
    return record.as_dict()


@router.patch("/lists/{list_id}", response_model=ListResponse)
def update_list(
    list_id: str, payload: ListUpdateRequest, db: DbClient = Depends(get_db_client)
):
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not changes["name"]:
        raise HTTPException(status_code=400, detail="Name is required")
    if "color" in changes and not changes["color"]:
        raise HTTPException(status_code=400, detail="color cannot be empty")
    record = db.update_list(list_id, changes)
    if not record:
        raise HTTPException(status_code=404, detail="List not found")
    return record.as_dict()


@router.delete("/lists/{list_id}", response_model=SuccessResponse)
def delete_list(list_id: str, db: DbClient = Depends(get_db_client)):
    if list_id == DEFAULT_LIST_ID:
        raise HTTPException(status_code=400, detail="Cannot delete the default list")
    try:
        deleted = db.delete_list(list_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="List not found")
    logger.info("Deleted list %s; its tasks moved to %s", list_id, DEFAULT_LIST_ID)
    return SuccessResponse(success=True)
