import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.compute_backend import ComputeBackendClient, ComputeBackendError
from app.core.exceptions import ApiErrorCode, ApiException
from app.core.minio_utils import fetch_task_log_from_minio, get_minio_client
from app.core.security import CurrentUser
from app.core.status_mapper import is_terminal, map_backend_status
from app.crud import crud_dataset, crud_gpu_permission, crud_model, crud_task
from app.models.audit_log import AuditOperationType
from app.models.task import NO_DATASET_ID, Task, TaskStatus, TaskType
from app.schemas.audit_log import AuditEvent
from app.schemas.compute_backend import BackendTaskStatus
from app.schemas.task import TaskChartPublic, TaskCreate, TaskCreateDB, TaskMetricsPublic
from app.service.audit import AuditService

logger = logging.getLogger(__name__)

# 任务配置中保存所请求 GPU 编号的保留键
GPU_IDS_CONFIG_KEY = "gpuIds"
# 停止任务时版本冲突的最大重试次数
STOP_WRITE_ATTEMPTS = 3

class TaskService:
    """
    任务生命周期编排：创建并提交、列表时同步后端状态、停止。

    本地任务记录只是外部计算后端状态的缓存（PENDING 之后的状态以后端为准）。
    所有状态写入都带版本号比较，轮询刷新与停止操作并发时不会互相覆盖。
    """
    def __init__(
        self,
        db_session: AsyncSession,
        backend_client: ComputeBackendClient,
        audit_service: AuditService,
        *,
        protect_terminal_status: bool = True,
        poll_concurrency: int = 1,
    ):
        self.db_session = db_session
        self.backend_client = backend_client
        self.audit_service = audit_service
        self.protect_terminal_status = protect_terminal_status
        self.poll_concurrency = max(1, poll_concurrency)

    async def create_task_for_user(self, user: CurrentUser, task_create: TaskCreate) -> Task:
        """
        创建任务并立即提交到计算后端。
        - 校验模型、数据集是否存在
        - 校验用户是否有权使用所请求的 GPU
        - 以 PENDING 状态写入任务，随后提交到后端
        - 提交成功：记录外部任务 ID，状态置为 RUNNING 并提交事务
        - 提交失败：回滚，不保留任何任务记录
        """
        # 1. 校验引用（在任何写入之前）
        if not await crud_model.model_exists(self.db_session, task_create.model_id):
            raise ApiException(ApiErrorCode.MODEL_NOT_FOUND)

        dataset_id = task_create.dataset_id
        if dataset_id is None or dataset_id == NO_DATASET_ID:
            dataset_id = NO_DATASET_ID
        elif not await crud_dataset.dataset_exists(self.db_session, dataset_id):
            raise ApiException(ApiErrorCode.DATASET_NOT_FOUND)

        gpu_ids = list(task_create.gpu_ids or [])
        if gpu_ids and not user.is_admin:
            allowed_gpu_ids = await crud_gpu_permission.get_gpu_ids_by_user_id(self.db_session, user.id)
            denied = sorted(set(gpu_ids) - allowed_gpu_ids)
            if denied:
                raise ApiException(
                    ApiErrorCode.GPU_NOT_ALLOWED,
                    f"GPU {denied} not allowed for user {user.id}",
                    details={GPU_IDS_CONFIG_KEY: denied}
                )

        # 2. 合并 GPU 编号到配置中
        config = dict(task_create.config or {})
        if gpu_ids:
            config[GPU_IDS_CONFIG_KEY] = gpu_ids

        # 3. 以 PENDING 状态写入（只 flush）
        task = await crud_task.create_task(
            db_session=self.db_session,
            task_create_db=TaskCreateDB(
                name=task_create.name,
                type=task_create.type,
                model_id=task_create.model_id,
                dataset_id=dataset_id,
                config=config,
                created_by=user.id
            )
        )

        # 4. 提交到计算后端，失败则整个创建作废
        job_kind = "train" if task.type == TaskType.TRAINING else "infer"
        try:
            submit_result = await self.backend_client.submit(job_kind, config)
        except ComputeBackendError as e:
            await self.db_session.rollback()
            logger.error(f"提交任务到计算后端失败，已放弃创建: name={task_create.name}, error={e}")
            raise ApiException(ApiErrorCode.SUBMISSION_FAILED) from e

        await crud_task.mark_task_submitted(self.db_session, task, submit_result.external_task_id)
        await self.db_session.commit()
        await self.db_session.refresh(task)

        await self.audit_service.record(AuditEvent(
            operation_type=AuditOperationType.TASK_CREATE,
            user_id=user.id,
            resource_id=str(task.id),
            details={
                "name": task.name,
                "type": task.type.value,
                "modelId": str(task.model_id),
                "datasetId": str(task.dataset_id),
                "externalTaskId": task.external_task_id,
                "status": task.status.value,
            }
        ))
        logger.info(f"任务创建成功: id={task.id}, name={task.name}, type={task.type.value}, external_task_id={task.external_task_id}")
        return task

    async def get_task_by_id(self, task_id: UUID) -> Task:
        task = await crud_task.get_task_by_id(self.db_session, task_id)
        if not task:
            raise ApiException(ApiErrorCode.TASK_NOT_FOUND)
        return task

    async def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        task_type: Optional[TaskType] = None
    ) -> list[Task]:
        """
        按条件获取任务，并逐个向计算后端同步最新状态。
        单个任务轮询失败不影响整体结果，该任务保持原状态。
        """
        tasks = await crud_task.get_tasks(self.db_session, status=status, task_type=task_type)
        if not tasks:
            return []

        # 网络请求并发执行，数据库写入按列表顺序依次进行
        backend_statuses = await self._poll_tasks(tasks)
        changed = False
        for task, backend_status in zip(tasks, backend_statuses):
            if await self._apply_backend_status(task, backend_status):
                changed = True
        if changed:
            await self.db_session.commit()
        return tasks

    async def _poll_tasks(self, tasks: list[Task]) -> list[Optional[BackendTaskStatus]]:
        semaphore = asyncio.Semaphore(self.poll_concurrency)

        async def poll_one(task: Task) -> Optional[BackendTaskStatus]:
            if not task.external_task_id:
                return None
            async with semaphore:
                try:
                    return await self.backend_client.poll(task.external_task_id)
                except ComputeBackendError as e:
                    logger.warning(f"刷新任务状态失败，保持原状态: id={task.id}, external_task_id={task.external_task_id}, error={e}")
                    return None
                except Exception as e:
                    # 单个任务的任何轮询异常都不能让整个列表失败
                    logger.warning(
                        f"刷新任务状态时发生未预期的错误，保持原状态: id={task.id}, "
                        f"external_task_id={task.external_task_id}, error={e!r}"
                    )
                    return None

        return await asyncio.gather(*(poll_one(task) for task in tasks))

    async def _apply_backend_status(self, task: Task, backend_status: Optional[BackendTaskStatus]) -> bool:
        """
        把一次轮询结果写回任务，返回是否产生了写入。
        """
        if backend_status is None:
            return False
        new_status = map_backend_status(backend_status.status)
        if new_status == task.status:
            return False
        if self.protect_terminal_status and is_terminal(task.status):
            logger.warning(
                f"任务已处于终态，忽略后端状态: id={task.id}, local={task.status.value}, "
                f"backend={backend_status.status}"
            )
            return False

        previous_status = task.status
        written = await crud_task.update_task_status(self.db_session, task, new_status, task.version)
        if not written:
            # 其他写入者（通常是停止操作）已更新该任务，丢弃本次轮询结果
            logger.warning(f"任务在刷新期间被并发修改，丢弃轮询结果: id={task.id}")
            await self.db_session.refresh(task)
            return False
        logger.info(f"任务状态已刷新: id={task.id}, {previous_status.value} -> {new_status.value}")
        return True

    async def stop_task(self, task_id: UUID, user: CurrentUser) -> Task:
        """
        停止任务。
        - 已处于终态（COMPLETED/FAILED/STOPPED）的任务不能停止，也不会调用后端
        - 有外部任务 ID 时先调用后端取消，取消失败则整个操作失败，任务保持不变
        - 成功后状态置为 STOPPED 并记录审计日志
        """
        task = await self.get_task_by_id(task_id)
        if is_terminal(task.status):
            raise ApiException(ApiErrorCode.TASK_CANNOT_STOP)

        previous_status = task.status
        if task.external_task_id:
            try:
                await self.backend_client.cancel(task.external_task_id)
            except ComputeBackendError as e:
                logger.error(f"后端取消任务失败: id={task.id}, external_task_id={task.external_task_id}, error={e}")
                raise ApiException(ApiErrorCode.CANCELLATION_FAILED) from e

        applied = await self._write_stopped(task)
        await self.db_session.commit()
        if not applied:
            # 任务已由后端先一步结束，没有发生停止，不记录审计
            return task

        await self.audit_service.record(AuditEvent(
            operation_type=AuditOperationType.TASK_STOP,
            user_id=user.id,
            resource_id=str(task.id),
            details={
                "previousStatus": previous_status.value,
                "externalTaskId": task.external_task_id,
                "status": task.status.value,
            }
        ))
        logger.info(f"任务已停止: id={task.id}, external_task_id={task.external_task_id}")
        return task

    async def _write_stopped(self, task: Task) -> bool:
        """
        写入 STOPPED，返回是否真正写入。任务在此期间已进入其他终态时返回 False。
        """
        for _ in range(STOP_WRITE_ATTEMPTS):
            if await crud_task.update_task_status(self.db_session, task, TaskStatus.STOPPED, task.version):
                return True
            # 版本冲突：重新读取，若已进入终态则以当前状态为准
            await self.db_session.refresh(task)
            if is_terminal(task.status):
                logger.info(f"任务在停止期间已进入终态，未执行停止: id={task.id}, status={task.status.value}")
                return False
        raise ApiException(ApiErrorCode.TASK_CONFLICT)

    async def get_task_metrics(self, task_id: UUID) -> list[TaskMetricsPublic]:
        # 尚未接入真实训练指标，只根据当前状态返回一个示意数据点
        task = await self.get_task_by_id(task_id)
        if task.status == TaskStatus.RUNNING:
            epoch, loss, accuracy = 1, 0.5, 0.8
        else:
            epoch, loss, accuracy = 0, 0.0, 0.0
        return [TaskMetricsPublic(
            task_id=task.id,
            epoch=epoch,
            loss=loss,
            accuracy=accuracy,
            timestamp=datetime.now(timezone.utc)
        )]

    async def get_task_logs(self, task_id: UUID) -> str:
        """
        从 MinIO 日志桶读取任务日志，读取失败时返回提示文本。
        """
        task = await self.get_task_by_id(task_id)
        fallback = f"No logs available for task {task.id}"
        try:
            client = await get_minio_client()
        except ValueError as e:
            logger.warning(f"MinIO 不可用，无法读取任务 {task.id} 的日志: {e}")
            return fallback
        logs = await fetch_task_log_from_minio(client, task.id)
        return logs if logs is not None else fallback

    async def get_task_chart(self, task_id: UUID) -> TaskChartPublic:
        task = await self.get_task_by_id(task_id)
        return TaskChartPublic(
            task_id=task.id,
            chart_url=self.backend_client.chart_url(task.external_task_id)
        )
