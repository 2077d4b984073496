import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin
from ..db import get_db
from ..models.enums import DeductionStatus
from ..models.models import User
from ..schemas.deductions import DeductionCreate, DeductionUpdate, DeductionResponse, DeductionSummary
from ..services import deductions as deduction_service
from ..services.permissions import resolve_company_id
from ..services.time_rules import Clock, get_clock


router = APIRouter(prefix="/deductions", tags=["deductions"])


@router.get("", response_model=List[DeductionResponse])
def list_deductions(
    user_id: Optional[uuid.UUID] = Query(None),
    status: Optional[DeductionStatus] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    scope = resolve_company_id(user, company_id)
    return deduction_service.list_deductions(db, user, scope, user_id, status.value if status else None)


@router.get("/summary", response_model=DeductionSummary)
def deduction_summary(
    user_id: Optional[uuid.UUID] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    scope = resolve_company_id(user, company_id)
    rows = deduction_service.list_deductions(db, user, scope, user_id)
    return deduction_service.deduction_totals(rows)


@router.post("", response_model=DeductionResponse, status_code=201)
def create_deduction(
    payload: DeductionCreate,
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    return deduction_service.create_deduction(db, user, scope, payload.model_dump(), clock)


@router.get("/{deduction_id}", response_model=DeductionResponse)
def get_deduction(deduction_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return deduction_service.get_deduction(db, deduction_id, user)


@router.put("/{deduction_id}", response_model=DeductionResponse)
def update_deduction(
    deduction_id: uuid.UUID,
    payload: DeductionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    deduction = deduction_service.get_deduction(db, deduction_id, user)
    return deduction_service.update_deduction(db, deduction, user, payload.model_dump(exclude_unset=True), clock)


@router.delete("/{deduction_id}")
def delete_deduction(deduction_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    deduction = deduction_service.get_deduction(db, deduction_id, user)
    deduction_service.delete_deduction(db, deduction, user)
    return {"message": "Deduction deleted successfully"}
