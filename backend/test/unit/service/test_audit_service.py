import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from app.models.audit_log import AuditOperationType
from app.schemas.audit_log import AuditEvent
from app.service.audit import AuditService

# --- Pytest Fixtures ---

@pytest.fixture
def audit_event():
    return AuditEvent(
        operation_type=AuditOperationType.TASK_STOP,
        user_id=uuid4(),
        resource_id=str(uuid4()),
        details={"previousStatus": "RUNNING", "status": "STOPPED"}
    )

@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.commit = AsyncMock()
    return session

@pytest.fixture
def mock_session_factory(mock_session):
    """模拟 async_sessionmaker：调用后返回一个异步上下文管理器"""
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = mock_session
    return factory

@pytest.fixture
def audit_service(mock_session_factory):
    return AuditService(session_factory=mock_session_factory)


class TestAuditService:

    @pytest.mark.asyncio
    @patch('app.crud.crud_audit_log.create_audit_log', new_callable=AsyncMock)
    @patch('app.service.audit.publish_audit_message', new_callable=AsyncMock)
    async def test_record_publishes_to_queue(self, mock_publish, mock_create_audit_log, audit_service, mock_session_factory, audit_event):
        """消息队列可用时只投递消息，不直接写数据库"""
        await audit_service.record(audit_event)

        mock_publish.assert_awaited_once_with(audit_event)
        mock_session_factory.assert_not_called()
        mock_create_audit_log.assert_not_awaited()

    @pytest.mark.asyncio
    @patch('app.crud.crud_audit_log.create_audit_log', new_callable=AsyncMock)
    @patch('app.service.audit.publish_audit_message', new_callable=AsyncMock)
    async def test_record_falls_back_to_database(self, mock_publish, mock_create_audit_log, audit_service, mock_session, audit_event):
        """投递失败时改为直接写入数据库"""
        mock_publish.side_effect = RuntimeError("RabbitMQ 审计交换机未就绪")

        await audit_service.record(audit_event)

        mock_create_audit_log.assert_awaited_once_with(mock_session, audit_event)
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    @patch('app.crud.crud_audit_log.create_audit_log', new_callable=AsyncMock)
    @patch('app.service.audit.publish_audit_message', new_callable=AsyncMock)
    async def test_record_never_raises(self, mock_publish, mock_create_audit_log, audit_service, mock_session, audit_event):
        """消息队列和数据库都不可用时，审计失败不影响调用方"""
        mock_publish.side_effect = ConnectionError("broker down")
        mock_create_audit_log.side_effect = ConnectionError("database down")

        await audit_service.record(audit_event)

        mock_session.commit.assert_not_awaited()
