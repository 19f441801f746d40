"""AgentsPro 开放接口适配器。

本模块负责：

1. 把 ChatStreamRequest 转换为流式对话接口的 JSON 请求体。
2. 以 multipart 方式上传文件并解析 {code, msg, data} 响应。
3. 把网络异常与非 2xx 响应包装为统一的 TransportError 子类。

事件流本身不在这里解析，而是原样交给 streaming.decoder。
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from agent_chat.domain.exceptions import ApiError, NetworkError, UploadError
from agent_chat.domain.models import ChatStreamRequest
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.providers.credentials import Credentials


CHAT_STREAM_ENDPOINT = "/openapi/agents/chat/stream/v1"
UPLOAD_ENDPOINT = "/openapi/fs/upload"

# 上传接口视为成功的业务码
_OK_CODES = {0, 1, 200}


class AgentsProClient:
    """默认的传输层实现，同时满足 ChatTransport 与 FileUploader 协议。"""

    name = "agentspro"

    def __init__(
        self,
        credentials: Credentials,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, trust_env=False)

    async def __aenter__(self) -> "AgentsProClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @asynccontextmanager
    async def open_stream(self, req: ChatStreamRequest) -> AsyncIterator[AsyncIterator[bytes]]:
        url = f"{self._base_url}{CHAT_STREAM_ENDPOINT}"
        headers = {**self._credentials.auth_headers(), "Content-Type": "application/json"}
        logger.info(
            "Opening chat stream",
            extra={"extra": {"agent_id": req.agent_id, "chat_id": req.chat_id, "files": len(req.files)}},
        )
        try:
            async with self._client.stream("POST", url, json=req.to_payload(), headers=headers) as resp:
                if not resp.is_success:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise ApiError(
                        code="API_ERROR",
                        message=f"请求失败: {resp.status_code} - {body}",
                        http_status=resp.status_code,
                        body=body,
                    )
                yield resp.aiter_bytes()
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接中断、读取超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    async def upload(self, content: bytes, file_name: str, content_type: Optional[str] = None) -> str:
        url = f"{self._base_url}{UPLOAD_ENDPOINT}"
        files = {"file": (file_name, content, content_type or "application/octet-stream")}
        try:
            resp = await self._client.post(
                url,
                files=files,
                params={"returnType": "id"},
                headers=self._credentials.auth_headers(),
            )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, file_name=file_name)
        if not resp.is_success:
            raise ApiError(
                code="API_ERROR",
                message=f"上传文件失败: {resp.status_code} - {resp.text}",
                http_status=resp.status_code,
                file_name=file_name,
            )
        try:
            data = resp.json()
        except ValueError:
            raise UploadError(code="UPLOAD_REJECTED", message="upload response is not json", file_name=file_name)
        if not isinstance(data, dict) or data.get("code") not in _OK_CODES or not data.get("data"):
            msg = data.get("msg") if isinstance(data, dict) else None
            raise UploadError(
                code="UPLOAD_REJECTED",
                message=f"上传文件失败: {msg or '未知错误'}",
                file_name=file_name,
            )
        return str(data["data"])
