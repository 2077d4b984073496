import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    source: Optional[str] = None
    changes_json: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    timestamp_utc: datetime
    integrity_hash: Optional[str] = None

    class Config:
        from_attributes = True


class NotificationResponse(BaseModel):
    id: uuid.UUID
    title: str
    message: Optional[str] = None
    template_key: Optional[str] = None
    payload_json: Optional[Dict[str, Any]] = None
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
