from sqlmodel.ext.asyncio.session import AsyncSession

from app.models.audit_log import AuditLog
from app.schemas.audit_log import AuditEvent

async def create_audit_log(db_session: AsyncSession, event: AuditEvent) -> AuditLog:
    """
    在数据库中写入一条审计日志（只 flush，由调用方提交）。
    """
    audit_log = AuditLog(
        operation_type=event.operation_type,
        user_id=event.user_id,
        resource_id=event.resource_id,
        # details 写入 JSON 列，UUID、枚举等需先转换为 JSON 兼容类型
        details=event.model_dump(mode="json")["details"]
    )
    db_session.add(audit_log)
    await db_session.flush()
    return audit_log
