from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import UUID, uuid4
from enum import Enum

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, JSON, DateTime

class AuditOperationType(str, Enum):
    TASK_CREATE = "TASK_CREATE"
    TASK_STOP = "TASK_STOP"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    operation_type: AuditOperationType = Field(nullable=False)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True)
    )
    user_id: Optional[UUID] = Field(default=None, index=True)
    resource_id: Optional[str] = Field(default=None)
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=True))
