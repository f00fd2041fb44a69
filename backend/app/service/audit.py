import logging
from typing import Callable

from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.deps import AsyncSessionLocal
from app.core.rabbitmq_utils import publish_audit_message
from app.crud import crud_audit_log
from app.schemas.audit_log import AuditEvent

logger = logging.getLogger(__name__)

class AuditService:
    """
    审计日志入口。

    优先通过 RabbitMQ 异步投递；投递失败时退回到直接写数据库。
    直写使用独立的会话，不影响调用方的事务。record() 从不向调用方抛出异常。
    """
    def __init__(self, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        try:
            await publish_audit_message(event)
            return
        except Exception as e:
            logger.error(f"发送审计消息到队列失败，改为直接写入数据库: {e}")
        await self.record_direct(event)

    async def record_direct(self, event: AuditEvent) -> None:
        """
        同步写入数据库（兜底路径）。
        """
        try:
            async with self.session_factory() as session:
                await crud_audit_log.create_audit_log(session, event)
                await session.commit()
            logger.debug(f"审计日志已直接写入数据库: operation={event.operation_type.value}, resource_id={event.resource_id}")
        except Exception as e:
            logger.error(f"审计日志写入数据库失败: operation={event.operation_type.value}, resource_id={event.resource_id}: {e}")
