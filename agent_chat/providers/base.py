"""传输层协作方接口。

引擎核心不直接依赖具体的 HTTP 实现，而是依赖以下协议：

- ChatTransport: 发起一次流式对话请求，返回可逐块读取的字节流。
- FileUploader: 上传单个文件，返回服务端文件 ID。

默认实现见 agentspro_client.AgentsProClient；测试中可替换为内存假实现。
"""

from typing import AsyncContextManager, AsyncIterator, Optional, Protocol

from agent_chat.domain.models import ChatStreamRequest


class ChatTransport(Protocol):
    def open_stream(self, req: ChatStreamRequest) -> AsyncContextManager[AsyncIterator[bytes]]:
        """打开流式响应；退出上下文时必须释放底层读取。

        非 2xx 响应在进入上下文时即抛出 ApiError（携带状态码与响应正文）。
        """

        ...


class FileUploader(Protocol):
    async def upload(self, content: bytes, file_name: str, content_type: Optional[str] = None) -> str:
        """上传文件并返回 file_id；对不同文件重复调用互不影响。"""

        ...
