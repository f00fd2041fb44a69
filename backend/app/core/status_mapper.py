from typing import Any

from app.models.task import TaskStatus

# 外部计算后端状态词 -> 本地任务状态
_BACKEND_STATUS_MAP: dict[str, TaskStatus] = {
    "pending": TaskStatus.PENDING,
    "running": TaskStatus.RUNNING,
    "in_progress": TaskStatus.RUNNING,
    "completed": TaskStatus.COMPLETED,
    "success": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "error": TaskStatus.FAILED,
    "stopped": TaskStatus.STOPPED,
    "cancelled": TaskStatus.STOPPED,
    "canceled": TaskStatus.STOPPED,
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.STOPPED})

def map_backend_status(backend_status: Any) -> TaskStatus:
    """
    将外部计算后端返回的状态字符串映射为本地 TaskStatus。
    大小写不敏感；None、非字符串或未知值一律视为 PENDING，不会抛出异常。
    """
    if not isinstance(backend_status, str):
        return TaskStatus.PENDING
    return _BACKEND_STATUS_MAP.get(backend_status.strip().lower(), TaskStatus.PENDING)

def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATUSES
