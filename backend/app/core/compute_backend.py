import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from app.schemas.compute_backend import BackendTaskStatus, BackendTrainResponse, SubmitResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class ComputeBackendError(Exception):
    """外部计算后端调用失败的基类"""


class BackendSubmissionError(ComputeBackendError):
    pass


class BackendPollError(ComputeBackendError):
    pass


class BackendCancellationError(ComputeBackendError):
    pass


class ComputeBackendClient:
    """
    外部计算后端的 HTTP 适配器。

    只负责把提交、轮询、取消三种意图翻译成后端接口调用，不做重试。
    base_url 由调用方显式传入，不依赖全局配置。
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def _url(self, path: str, **params: str) -> str:
        url = f"{self.base_url}/api/{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    async def submit(self, job_kind: str, config: dict[str, Any]) -> SubmitResult:
        """
        提交训练或推理任务。

        Args:
            job_kind (str): "train" 或 "infer"。
            config (dict): 任务配置，原样作为 JSON 请求体发送。

        Returns:
            SubmitResult: 后端分配的任务 ID 以及原始响应。

        Raises:
            BackendSubmissionError: 网络错误、非 2xx 响应或响应中缺少 task_id。
        """
        if job_kind not in ("train", "infer"):
            raise BackendSubmissionError(f"Unknown job kind: {job_kind}")
        url = self._url(job_kind)
        try:
            response = await self._client.post(url, json=config)
        except httpx.HTTPError as exc:
            raise BackendSubmissionError(f"Submit to {url} failed: {exc}") from exc
        if not response.is_success:
            raise BackendSubmissionError(f"Submit to {url} returned HTTP {response.status_code}")
        try:
            payload = response.json()
            train_response = BackendTrainResponse.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise BackendSubmissionError(f"Invalid submit response from {url}: {exc}") from exc

        if train_response.request is None or not train_response.request.task_id:
            raise BackendSubmissionError("Invalid train response: missing task_id")

        logger.info(
            f"任务已提交到计算后端: kind={job_kind}, external_task_id={train_response.request.task_id}, "
            f"gpu_allocated={train_response.gpu_allocated}"
        )
        return SubmitResult(external_task_id=train_response.request.task_id, raw_response=payload)

    async def poll(self, external_task_id: str) -> Optional[BackendTaskStatus]:
        """
        查询单个任务的最新状态。

        后端返回以任务 ID 为键的映射；映射中不包含该 ID 时返回 None，表示没有新信息。

        Raises:
            BackendPollError: 网络错误、非 2xx 响应或响应结构无法解析。
        """
        url = self._url("tasks", task_id=external_task_id)
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise BackendPollError(f"Poll {url} failed: {exc}") from exc
        if not response.is_success:
            raise BackendPollError(f"Poll {url} returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendPollError(f"Invalid poll response from {url}: {exc}") from exc

        if payload is None:
            return None
        if not isinstance(payload, dict):
            raise BackendPollError(f"Invalid poll response from {url}: expected an object")
        item = payload.get(external_task_id)
        if item is None:
            return None
        try:
            return BackendTaskStatus.model_validate(item)
        except ValidationError as exc:
            raise BackendPollError(f"Invalid status entry for {external_task_id}: {exc}") from exc

    async def cancel(self, external_task_id: str) -> None:
        """
        取消后端任务，任何非 2xx 响应都视为失败。

        Raises:
            BackendCancellationError
        """
        url = self._url("tasks/cancel", task_id=external_task_id)
        try:
            response = await self._client.post(url)
        except httpx.HTTPError as exc:
            raise BackendCancellationError(f"Cancel {url} failed: {exc}") from exc
        if not response.is_success:
            raise BackendCancellationError(f"Cancel {url} returned HTTP {response.status_code}")
        logger.info(f"计算后端已确认取消任务: external_task_id={external_task_id}")

    def chart_url(self, external_task_id: Optional[str]) -> str:
        # 仅拼接展示用的 URL，不发起请求
        return self._url("chart", task_id=external_task_id or "")

    async def aclose(self) -> None:
        await self._client.aclose()


compute_backend_client: Optional[ComputeBackendClient] = None

async def init_compute_backend(base_url: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> ComputeBackendClient:
    """创建全局复用的计算后端客户端（连接池在应用生命周期内共享）"""
    global compute_backend_client
    if compute_backend_client is not None:
        logger.info("计算后端客户端已存在，直接返回。")
        return compute_backend_client
    compute_backend_client = ComputeBackendClient(base_url, timeout_seconds=timeout_seconds)
    logger.info(f"计算后端客户端已创建: {compute_backend_client.base_url}")
    return compute_backend_client

async def get_compute_backend_client() -> ComputeBackendClient:
    """提供已创建的计算后端客户端实例"""
    if compute_backend_client is None:
        raise RuntimeError("计算后端客户端未初始化，请先调用 init_compute_backend()")
    return compute_backend_client

async def close_compute_backend() -> None:
    global compute_backend_client
    if compute_backend_client is not None:
        await compute_backend_client.aclose()
        compute_backend_client = None
        logger.info("计算后端客户端已关闭")
