import uuid
from datetime import date
from enum import Enum
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin
from ..db import get_db
from ..models.enums import TaskStatus
from ..models.models import User
from ..schemas.tasks import (
    TaskCreate,
    TaskUpdate,
    TaskResponse,
    RecurringTaskCreate,
    RecurringTaskResult,
)
from ..services import task_lifecycle
from ..services.permissions import resolve_company_id
from ..services.recurrence import create_recurring_tasks
from ..services.time_rules import Clock, get_clock


router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = structlog.get_logger(__name__)


class TaskAction(str, Enum):
    accept = "accept"
    reject = "reject"
    complete = "complete"
    cancel = "cancel"


@router.get("", response_model=List[TaskResponse])
def list_tasks(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    status: Optional[TaskStatus] = Query(None),
    driver_id: Optional[uuid.UUID] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    scope = resolve_company_id(user, company_id)
    return task_lifecycle.list_tasks(db, user, scope, start_date, end_date, status, driver_id)


@router.post("", response_model=TaskResponse, status_code=201)
def create_task(
    payload: TaskCreate,
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    task = task_lifecycle.create_task(db, user, scope, payload.model_dump(), clock)
    logger.info("task_created", task_id=str(task.id), company_id=str(scope), scheduled_date=task.scheduled_date.isoformat())
    return task


@router.post("/recurring", response_model=RecurringTaskResult, status_code=201)
def create_recurring(
    payload: RecurringTaskCreate,
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    result = create_recurring_tasks(
        db,
        user,
        scope,
        payload.template(),
        payload.start_date,
        payload.end_date,
        payload.weekdays(),
        clock,
    )
    return RecurringTaskResult(
        created=result.created,
        failed=result.failed,
        tasks=[TaskResponse.model_validate(t) for t in result.tasks],
        errors=result.errors,
    )


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(task_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return task_lifecycle.get_task(db, task_id, user)


@router.put("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: uuid.UUID,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    task = task_lifecycle.load_task(db, task_id, user)
    return task_lifecycle.update_task(db, task, user, payload.model_dump(exclude_unset=True), clock)


@router.delete("/{task_id}")
def delete_task(task_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    task = task_lifecycle.load_task(db, task_id, user)
    task_lifecycle.delete_task(db, task, user)
    logger.info("task_deleted", task_id=str(task_id), actor_id=str(user.id))
    return {"message": "Task deleted successfully"}


@router.post("/{task_id}/{action}", response_model=TaskResponse)
def transition_task(
    task_id: uuid.UUID,
    action: TaskAction,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    task = task_lifecycle.load_task(db, task_id, user)
    task = task_lifecycle.ACTIONS[action.value](db, task, user, clock)
    logger.info("task_transition", task_id=str(task.id), action=action.value, status=task.status, actor_id=str(user.id))
    return task
