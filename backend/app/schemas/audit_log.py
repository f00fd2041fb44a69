from typing import Optional, Dict, Any
from uuid import UUID
from sqlmodel import SQLModel, Field
from app.models.audit_log import AuditOperationType

class AuditEvent(SQLModel):
    """通过 RabbitMQ 投递的审计消息体"""
    operation_type: AuditOperationType
    user_id: Optional[UUID] = None
    resource_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
