import logging
from enum import Enum
from http import HTTPStatus
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

class ApiErrorCode(Enum):
    """
    API 错误码，每一项携带对应的 HTTP 状态码和默认提示信息。
    """
    UNAUTHORIZED = (status.HTTP_401_UNAUTHORIZED, "Authentication required")
    GPU_NOT_ALLOWED = (status.HTTP_403_FORBIDDEN, "Requested GPUs are not allowed for this user")
    MODEL_NOT_FOUND = (status.HTTP_404_NOT_FOUND, "Model not found")
    DATASET_NOT_FOUND = (status.HTTP_404_NOT_FOUND, "Dataset not found")
    TASK_NOT_FOUND = (status.HTTP_404_NOT_FOUND, "Task not found")
    TASK_CANNOT_STOP = (status.HTTP_409_CONFLICT, "Task is already finished and cannot be stopped")
    TASK_CONFLICT = (status.HTTP_409_CONFLICT, "Task was modified concurrently, please retry")
    SUBMISSION_FAILED = (status.HTTP_500_INTERNAL_SERVER_ERROR, "Submit task to compute backend failed")
    CANCELLATION_FAILED = (status.HTTP_500_INTERNAL_SERVER_ERROR, "Backend cancel failed")
    INTERNAL_SERVER_ERROR = (status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @property
    def http_status(self) -> int:
        return self.value[0]

    @property
    def default_message(self) -> str:
        return self.value[1]


class ApiException(Exception):
    """
    统一的业务异常，所有业务错误都通过 ApiErrorCode 表达。
    """
    def __init__(self, error_code: ApiErrorCode, message: Optional[str] = None, details: Any = None):
        self.error_code = error_code
        self.message = message or error_code.default_message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.error_code.name}: {self.message}"


async def api_exception_handler(request: Request, exc: ApiException) -> JSONResponse:
    """
    把 ApiException 渲染为结构化的 JSON 错误响应。
    """
    error_code = exc.error_code
    logger.warning(f"API Exception: {error_code.name} - {exc.message} at {request.url.path}")
    return JSONResponse(
        status_code=error_code.http_status,
        content={
            "status": error_code.http_status,
            "error": HTTPStatus(error_code.http_status).phrase,
            "code": error_code.name,
            "message": exc.message,
            "path": request.url.path,
            "details": exc.details,
        },
    )
