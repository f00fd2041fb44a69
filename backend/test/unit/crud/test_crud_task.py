import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

from sqlalchemy import func
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.compute_backend import BackendSubmissionError
from app.core.exceptions import ApiErrorCode, ApiException
from app.core.security import CurrentUser, UserRole
from app.crud import crud_task
from app.models.model import Model
from app.models.task import Task, TaskStatus, TaskType
from app.schemas.compute_backend import BackendTaskStatus
from app.schemas.task import TaskCreate, TaskCreateDB
from app.service.task import TaskService

MODEL_ID = UUID("11111111-1111-1111-1111-111111111111")
USER_ID = UUID("33333333-3333-3333-3333-333333333333")

# --- Pytest Fixtures ---

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """基于临时 SQLite 文件的异步会话工厂，每个测试一个独立的数据库"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()

@pytest.fixture
def current_user():
    return CurrentUser(id=USER_ID, username="testuser", role=UserRole.USER)

@pytest.fixture
def mock_audit_service():
    audit_service = MagicMock()
    audit_service.record = AsyncMock()
    return audit_service

# --- 辅助函数 ---

async def seed_running_task(session_factory) -> UUID:
    """写入一个已提交到后端的 RUNNING 任务（version=2）"""
    async with session_factory() as session:
        task = await crud_task.create_task(session, TaskCreateDB(
            name="run1",
            type=TaskType.TRAINING,
            model_id=MODEL_ID,
            dataset_id=uuid4(),
            config={"lr": 0.01},
            created_by=USER_ID
        ))
        await crud_task.mark_task_submitted(session, task, "ext-1")
        await session.commit()
        return task.id

async def load_task(session_factory, task_id: UUID) -> Task:
    async with session_factory() as session:
        return await crud_task.get_task_by_id(session, task_id)

async def count_tasks(session_factory) -> int:
    async with session_factory() as session:
        result = await session.exec(select(func.count()).select_from(Task))
        return result.one()


class TestUpdateTaskStatus:

    @pytest.mark.asyncio
    async def test_mark_task_submitted_persists_running(self, session_factory):
        task_id = await seed_running_task(session_factory)

        task = await load_task(session_factory, task_id)

        assert task.status == TaskStatus.RUNNING
        assert task.external_task_id == "ext-1"
        assert task.version == 2
        assert task.config == {"lr": 0.01}

    @pytest.mark.asyncio
    async def test_stale_version_write_is_rejected(self, session_factory):
        """版本号已过期的写入返回 False，数据库中的任务保持不变"""
        task_id = await seed_running_task(session_factory)

        async with session_factory() as session:
            task = await crud_task.get_task_by_id(session, task_id)
            written = await crud_task.update_task_status(session, task, TaskStatus.COMPLETED, expected_version=1)
            await session.commit()

        assert written is False
        stored = await load_task(session_factory, task_id)
        assert stored.status == TaskStatus.RUNNING
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_current_version_write_is_applied(self, session_factory):
        task_id = await seed_running_task(session_factory)

        async with session_factory() as session:
            task = await crud_task.get_task_by_id(session, task_id)
            written = await crud_task.update_task_status(session, task, TaskStatus.COMPLETED, expected_version=2)
            await session.commit()

        assert written is True
        assert task.status == TaskStatus.COMPLETED
        assert task.version == 3
        stored = await load_task(session_factory, task_id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.version == 3


class TestTaskServiceWithDatabase:

    @pytest.mark.asyncio
    async def test_failed_submission_leaves_no_task(self, session_factory, current_user, mock_audit_service):
        """提交到后端失败后数据库中不保留任何任务记录"""
        async with session_factory() as session:
            session.add(Model(id=MODEL_ID, name="resnet"))
            await session.commit()

        backend_client = MagicMock()
        backend_client.submit = AsyncMock(side_effect=BackendSubmissionError("connection refused"))

        async with session_factory() as session:
            service = TaskService(session, backend_client, mock_audit_service)
            with pytest.raises(ApiException) as exc_info:
                await service.create_task_for_user(
                    current_user,
                    TaskCreate(name="run1", type=TaskType.TRAINING, model_id=MODEL_ID)
                )

        assert exc_info.value.error_code == ApiErrorCode.SUBMISSION_FAILED
        assert await count_tasks(session_factory) == 0
        mock_audit_service.record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_poll_after_stop_cannot_overwrite_stopped(self, session_factory, current_user, mock_audit_service):
        """列表轮询期间任务被停止，迟到的轮询结果不能覆盖 STOPPED"""
        task_id = await seed_running_task(session_factory)

        stop_client = MagicMock()
        stop_client.cancel = AsyncMock(return_value=None)

        async def poll_while_stopping(external_task_id):
            # 轮询请求尚未返回时，另一个请求完成了停止
            async with session_factory() as stop_session:
                stop_service = TaskService(stop_session, stop_client, mock_audit_service)
                await stop_service.stop_task(task_id, current_user)
            return BackendTaskStatus(status="completed")

        poll_client = MagicMock()
        poll_client.poll = AsyncMock(side_effect=poll_while_stopping)

        async with session_factory() as session:
            service = TaskService(session, poll_client, mock_audit_service)
            tasks = await service.list_tasks()

        assert [t.status for t in tasks] == [TaskStatus.STOPPED]
        stored = await load_task(session_factory, task_id)
        assert stored.status == TaskStatus.STOPPED
        assert stored.version == 3
        stop_client.cancel.assert_awaited_once_with("ext-1")
