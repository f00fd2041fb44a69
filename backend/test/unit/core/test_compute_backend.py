import json
import httpx
import pytest

from app.core.compute_backend import (
    BackendCancellationError,
    BackendPollError,
    BackendSubmissionError,
    ComputeBackendClient,
)

# --- 辅助函数 ---

def make_client(handler, base_url: str = "http://backend:8000") -> ComputeBackendClient:
    """使用 httpx.MockTransport 构造客户端，不发起真实网络请求"""
    return ComputeBackendClient(base_url, transport=httpx.MockTransport(handler))

class RecordingHandler:
    """记录收到的请求，并返回预设的响应"""
    def __init__(self, status_code: int = 200, payload=None, content: bytes = None):
        self.status_code = status_code
        self.payload = payload
        self.content = content
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content)
        return httpx.Response(self.status_code, json=self.payload)


class TestSubmit:

    @pytest.mark.asyncio
    async def test_submit_train_success(self):
        handler = RecordingHandler(payload={
            "message": "Training started",
            "gpu_allocated": [0, 1],
            "request": {"task_id": "20240101-000000_ab", "gpu_count": 2}
        })
        client = make_client(handler)

        result = await client.submit("train", {"lr": 0.01, "gpuIds": [0, 1]})

        assert result.external_task_id == "20240101-000000_ab"
        assert result.raw_response["gpu_allocated"] == [0, 1]
        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://backend:8000/api/train"
        assert json.loads(request.content) == {"lr": 0.01, "gpuIds": [0, 1]}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_submit_infer_with_trailing_slash_base_url(self):
        """base_url 末尾的斜杠不会产生双斜杠路径"""
        handler = RecordingHandler(payload={"request": {"task_id": "inf-1"}})
        client = make_client(handler, base_url="http://backend:8000/")

        result = await client.submit("infer", {})

        assert result.external_task_id == "inf-1"
        assert str(handler.requests[0].url) == "http://backend:8000/api/infer"
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"message": "ok"},
        {"request": {}},
        {"request": {"task_id": ""}},
    ])
    async def test_submit_missing_task_id(self, payload):
        client = make_client(RecordingHandler(payload=payload))

        with pytest.raises(BackendSubmissionError):
            await client.submit("train", {})
        await client.aclose()

    @pytest.mark.asyncio
    async def test_submit_http_error(self):
        client = make_client(RecordingHandler(status_code=500, payload={"detail": "no free gpu"}))

        with pytest.raises(BackendSubmissionError):
            await client.submit("train", {})
        await client.aclose()

    @pytest.mark.asyncio
    async def test_submit_invalid_json(self):
        client = make_client(RecordingHandler(content=b"<html>oops</html>"))

        with pytest.raises(BackendSubmissionError):
            await client.submit("train", {})
        await client.aclose()

    @pytest.mark.asyncio
    async def test_submit_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)
        client = make_client(handler)

        with pytest.raises(BackendSubmissionError) as exc_info:
            await client.submit("train", {})

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_submit_unknown_job_kind(self):
        handler = RecordingHandler(payload={})
        client = make_client(handler)

        with pytest.raises(BackendSubmissionError):
            await client.submit("evaluate", {})

        assert handler.requests == []
        await client.aclose()


class TestPoll:

    @pytest.mark.asyncio
    async def test_poll_hit(self):
        handler = RecordingHandler(payload={
            "20240101-000000_ab": {"status": "completed", "return_code": 0, "update_time": "2024-01-01 00:10:00"}
        })
        client = make_client(handler)

        status = await client.poll("20240101-000000_ab")

        assert status.status == "completed"
        assert status.return_code == 0
        request = handler.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/tasks"
        assert request.url.params["task_id"] == "20240101-000000_ab"
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"other-task": {"status": "running"}}])
    async def test_poll_miss_returns_none(self, payload):
        """响应中没有该任务时返回 None，表示没有新信息"""
        client = make_client(RecordingHandler(payload=payload))

        assert await client.poll("ext-1") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_poll_http_error(self):
        client = make_client(RecordingHandler(status_code=502, payload={}))

        with pytest.raises(BackendPollError):
            await client.poll("ext-1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_poll_null_body_returns_none(self):
        client = make_client(RecordingHandler(content=b"null"))

        assert await client.poll("ext-1") is None
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [["ext-1"], [], 0, False, "ext-1"])
    async def test_poll_unexpected_payload(self, payload):
        """非对象响应（包括空列表、0、false）都视为轮询错误"""
        client = make_client(RecordingHandler(payload=payload))

        with pytest.raises(BackendPollError):
            await client.poll("ext-1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_poll_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)
        client = make_client(handler)

        with pytest.raises(BackendPollError):
            await client.poll("ext-1")
        await client.aclose()


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_success(self):
        handler = RecordingHandler(payload={"message": "cancelled"})
        client = make_client(handler)

        await client.cancel("ext-1")

        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/tasks/cancel"
        assert request.url.params["task_id"] == "ext-1"
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 404, 500])
    async def test_cancel_non_success_status(self, status_code):
        client = make_client(RecordingHandler(status_code=status_code, payload={}))

        with pytest.raises(BackendCancellationError):
            await client.cancel("ext-1")
        await client.aclose()


def test_chart_url():
    client = ComputeBackendClient("http://backend:8000/")
    assert client.chart_url("20240101-000000_ab") == "http://backend:8000/api/chart?task_id=20240101-000000_ab"
    assert client.chart_url(None) == "http://backend:8000/api/chart?task_id="
