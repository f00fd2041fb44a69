from datetime import datetime, timezone
from typing import Optional
from uuid import UUID
from sqlmodel import select
from sqlalchemy import update
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.models.task import Task, TaskStatus, TaskType
from app.schemas.task import TaskCreateDB

async def create_task(db_session: AsyncSession, task_create_db: TaskCreateDB) -> Task:
    """
    在数据库中创建新的任务（只 flush，不提交）。
    """
    task = Task(**task_create_db.model_dump())
    db_session.add(task)
    await db_session.flush()
    return task

async def get_task_by_id(db_session: AsyncSession, task_id: UUID) -> Optional[Task]:
    """
    根据任务 ID 获取任务。
    """
    statement = select(Task).where(Task.id == task_id)
    result = await db_session.exec(statement)
    return result.one_or_none()

async def get_tasks(
    db_session: AsyncSession,
    status: Optional[TaskStatus] = None,
    task_type: Optional[TaskType] = None
) -> list[Task]:
    """
    按状态和/或类型筛选任务，按创建时间倒序。
    """
    statement = select(Task)
    if status is not None:
        statement = statement.where(Task.status == status)
    if task_type is not None:
        statement = statement.where(Task.type == task_type)
    statement = statement.order_by(Task.created_at.desc())
    result = await db_session.exec(statement)
    return list(result.all())

async def mark_task_submitted(db_session: AsyncSession, task: Task, external_task_id: str) -> Task:
    """
    记录外部任务 ID 并将任务置为 RUNNING。任务必须是本会话中刚创建的对象。
    """
    task.external_task_id = external_task_id
    task.status = TaskStatus.RUNNING
    task.version += 1
    task.updated_at = datetime.now(timezone.utc)
    db_session.add(task)
    await db_session.flush()
    return task

async def update_task_status(
    db_session: AsyncSession,
    task: Task,
    new_status: TaskStatus,
    expected_version: int
) -> bool:
    """
    以版本号做比较并交换（CAS）更新任务状态。

    仅当数据库中的 version 仍等于 expected_version 时写入，并把 version 加一。
    写入成功后同步内存中的 task 对象；返回是否写入成功。
    """
    now = datetime.now(timezone.utc)
    statement = (
        update(Task)
        .where(Task.id == task.id, Task.version == expected_version)
        .values(status=new_status, version=expected_version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db_session.exec(statement)
    if result.rowcount != 1:
        return False
    set_committed_value(task, "status", new_status)
    set_committed_value(task, "version", expected_version + 1)
    set_committed_value(task, "updated_at", now)
    return True
