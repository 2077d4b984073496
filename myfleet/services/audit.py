"""
Audit trail for company data.
Entries are written once by the event subscriber and never updated; each
carries a SHA-256 over its canonical JSON so tampering can be detected.
"""
import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings
from .events import DomainEvent, EventBus


def _integrity_hash(fields: Dict[str, Any], secret: str) -> str:
    # None values dropped and keys sorted: equal entries hash equally
    payload = json.dumps({k: v for k, v in fields.items() if v is not None}, sort_keys=True, default=str)
    return hashlib.sha256(f"{payload}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    company_id: Optional[uuid.UUID] = None,
    actor_id: Optional[uuid.UUID] = None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> AuditLog:
    """
    Persist one audit entry and commit it.

    entity_type is one of task, time_off, vehicle or deduction and action is
    the event's verb (CREATE, ACCEPT, APPROVE...). source is "api" for user
    requests and "system" otherwise. The hash is keyed with integrity_secret,
    falling back to the JWT secret; an empty secret stores no hash.
    """
    logged_at = datetime.now(timezone.utc)
    secret = settings.jwt_secret if integrity_secret is None else integrity_secret
    digest = None
    if secret:
        digest = _integrity_hash(
            {
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "actor_role": actor_role,
                "source": source,
                "timestamp_utc": logged_at.isoformat(),
                "changes": changes_json,
                "context": context,
            },
            secret,
        )

    entry = AuditLog(
        company_id=company_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source or "system",
        changes_json=changes_json,
        timestamp_utc=logged_at,
        context=context,
        integrity_hash=digest,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def get_audit_logs(
    db: Session,
    company_id: Optional[uuid.UUID] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditLog]:
    """Newest first."""
    filters = []
    if company_id:
        filters.append(AuditLog.company_id == company_id)
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id:
        filters.append(AuditLog.entity_id == entity_id)
    return (
        db.query(AuditLog)
        .filter(*filters)
        .order_by(AuditLog.timestamp_utc.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def compute_diff(before: Dict, after: Dict) -> Dict:
    """Fields whose value differs, as {field: {"before": ..., "after": ...}}."""
    return {
        key: {"before": before.get(key), "after": after.get(key)}
        for key in set(before) | set(after)
        if before.get(key) != after.get(key)
    }


def record_event(db: Session, event: DomainEvent) -> None:
    context = {
        k: v for k, v in event.to_dict().items()
        if k not in ("entity_id", "company_id", "actor_id", "actor_role", "changes", "context", "event") and v is not None
    }
    context.update(event.context or {})
    create_audit_log(
        db,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        action=event.action,
        company_id=event.company_id,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        source="api" if event.actor_id else "system",
        changes_json=_jsonable(event.changes) or None,
        context=_jsonable(context) or None,
    )


def _jsonable(data: Optional[Dict]) -> Optional[Dict]:
    # dates, Decimals and UUIDs become strings for the JSON columns
    if not data:
        return None
    return json.loads(json.dumps(data, default=str))


def register(event_bus: EventBus) -> None:
    event_bus.subscribe(DomainEvent, record_event)
