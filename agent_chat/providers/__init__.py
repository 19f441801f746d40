"""传输层集成。

该包下的模块负责：
- 定义传输与上传协作方协议 (base)。
- 认证凭据 (credentials) 与 Agent 路由 (registry)。
- 基于 httpx 的默认实现 (agentspro_client)。
"""

from typing import Optional

from agent_chat.config.settings import settings
from agent_chat.providers.agentspro_client import AgentsProClient
from agent_chat.providers.base import ChatTransport, FileUploader
from agent_chat.providers.credentials import Credentials
from agent_chat.providers.registry import AgentRegistry


def create_client(config=None, credentials: Optional[Credentials] = None) -> AgentsProClient:
    """根据配置创建默认客户端；未传入凭据时从配置读取。"""

    cfg = config or settings
    creds = credentials or Credentials.from_settings(cfg)
    return AgentsProClient(creds, base_url=cfg.base_url, timeout=cfg.http_timeout)


__all__ = [
    "AgentRegistry",
    "AgentsProClient",
    "ChatTransport",
    "Credentials",
    "FileUploader",
    "create_client",
]
