"""Agent Chat 顶层包。

该包提供多 Agent 对话服务的流式会话引擎，
包括配置加载、领域模型、事件流解码、附件上传去重、
界面更新节流、代码块/Artifact 提取以及会话编排等能力。
"""

from agent_chat.api.service import ChatService
from agent_chat.domain.models import SendPhase, SendResult, UploadCandidate
from agent_chat.domain.session import SessionStore
from agent_chat.session.orchestrator import SessionOrchestrator

__all__ = ["ChatService", "SendPhase", "SendResult", "SessionOrchestrator", "SessionStore", "UploadCandidate"]
