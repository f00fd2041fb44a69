from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.compute_backend import ComputeBackendClient, get_compute_backend_client
from app.core.config import settings
from app.core.deps import get_db
from app.core.security import CurrentUser, get_current_user
from app.models.task import TaskStatus, TaskType
from app.schemas.task import TaskChartPublic, TaskCreate, TaskMetricsPublic, TaskPublic
from app.service.audit import AuditService
from app.service.task import TaskService

# 创建路由实例
router = APIRouter()

# 依赖注入 TaskService，后端地址等配置在这里显式传入
async def get_task_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    backend_client: Annotated[ComputeBackendClient, Depends(get_compute_backend_client)]
) -> TaskService:
    return TaskService(
        db,
        backend_client,
        AuditService(),
        protect_terminal_status=settings.TASK_PROTECT_TERMINAL_STATUS,
        poll_concurrency=settings.TASK_POLL_CONCURRENCY
    )

@router.post("/", response_model=TaskPublic, summary="创建任务")
async def create_task(
    task_create: TaskCreate,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    task_service: Annotated[TaskService, Depends(get_task_service)]
) -> TaskPublic:
    """
    **创建训练或推理任务**

    创建任务记录并立即提交到计算后端，成功后任务处于 RUNNING 状态。

    **响应:**
    - `200 OK`: 成功创建并提交任务。
    - `403 Forbidden`: 无权使用所请求的 GPU。
    - `404 Not Found`: 模型或数据集不存在。
    - `500 Internal Server Error`: 提交到计算后端失败，任务不会被保存。
    """
    return await task_service.create_task_for_user(current_user, task_create)

@router.get("/", response_model=list[TaskPublic], summary="获取任务列表")
async def list_tasks(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    task_service: Annotated[TaskService, Depends(get_task_service)],
    status: Optional[TaskStatus] = None,
    task_type: Annotated[Optional[TaskType], Query(alias="type")] = None
) -> list[TaskPublic]:
    """
    **按状态和类型筛选任务**

    返回前会向计算后端同步每个任务的最新状态。
    """
    return await task_service.list_tasks(status=status, task_type=task_type)

@router.get("/{task_id}", response_model=TaskPublic, summary="获取任务详情")
async def get_task(
    task_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    task_service: Annotated[TaskService, Depends(get_task_service)]
) -> TaskPublic:
    return await task_service.get_task_by_id(task_id)

@router.post("/{task_id}/stop", response_model=TaskPublic, summary="停止任务")
async def stop_task(
    task_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    task_service: Annotated[TaskService, Depends(get_task_service)]
) -> TaskPublic:
    """
    **停止任务**

    **响应:**
    - `200 OK`: 任务已停止。
    - `404 Not Found`: 任务不存在。
    - `409 Conflict`: 任务已结束，无法停止。
    - `500 Internal Server Error`: 计算后端取消失败，任务状态不变。
    """
    return await task_service.stop_task(task_id, current_user)

@router.get("/{task_id}/metrics", response_model=list[TaskMetricsPublic], summary="获取任务指标")
async def get_task_metrics(
    task_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    task_service: Annotated[TaskService, Depends(get_task_service)]
) -> list[TaskMetricsPublic]:
    return await task_service.get_task_metrics(task_id)

@router.get("/{task_id}/logs", response_class=PlainTextResponse, summary="获取任务日志")
async def get_task_logs(
    task_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    task_service: Annotated[TaskService, Depends(get_task_service)]
) -> str:
    return await task_service.get_task_logs(task_id)

@router.get("/{task_id}/chart", response_model=TaskChartPublic, summary="获取任务图表地址")
async def get_task_chart(
    task_id: UUID,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    task_service: Annotated[TaskService, Depends(get_task_service)]
) -> TaskChartPublic:
    return await task_service.get_task_chart(task_id)
