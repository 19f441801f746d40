"""对外 API 服务模块。

提供简化的 ChatService 供上层应用（界面层）调用：
按激活的指令选择 Agent，随后交给 SessionOrchestrator 完成上传、流式请求与 Artifact 提取。
"""

from typing import AbstractSet, Any, Callable, Dict, Optional, Sequence

from agent_chat.artifacts.extractor import ArtifactExtractor
from agent_chat.config.settings import Settings, settings as default_settings
from agent_chat.domain.models import ConversationState, SendPhase, SendResult, UploadCandidate
from agent_chat.domain.session import SessionStore
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.providers import create_client
from agent_chat.providers.agentspro_client import AgentsProClient
from agent_chat.providers.registry import COMMAND_PROJECT_RETRIEVAL, AgentRegistry
from agent_chat.session.orchestrator import SessionOrchestrator
from agent_chat.uploads.coordinator import UploadCoordinator, UploadPolicy


class ChatService:
    """界面层使用的聊天服务。

    每个 ChatService 持有独立的 SessionStore，多个实例之间不共享状态。
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        client: Optional[AgentsProClient] = None,
        registry: Optional[AgentRegistry] = None,
        config: Optional[Settings] = None,
    ):
        cfg = config or default_settings
        self._config = cfg
        self._store = store or SessionStore()
        self._client = client or create_client(cfg)
        self._registry = registry or AgentRegistry.from_settings(cfg)
        self._orchestrator = SessionOrchestrator(
            self._store,
            self._client,
            UploadCoordinator(self._client, self._store, UploadPolicy.from_settings(cfg)),
            ArtifactExtractor(),
            event_prefix=cfg.event_prefix,
            coalesce_interval=cfg.coalesce_interval,
            stall_timeout=cfg.stream_stall_timeout,
        )

    @property
    def orchestrator(self) -> SessionOrchestrator:
        return self._orchestrator

    async def __aenter__(self) -> "ChatService":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def agent_for(self, active_commands: AbstractSet[str]) -> str:
        return self._registry.resolve(active_commands)

    def get_chat_state(self, agent_id: str) -> ConversationState:
        return self._store.get_or_create(agent_id)

    async def chat_stream(
        self,
        user_input: str,
        active_commands: AbstractSet[str] = frozenset(),
        files: Optional[Sequence[UploadCandidate]] = None,
        *,
        on_update: Optional[Callable[[str], None]] = None,
        on_phase: Optional[Callable[[str, SendPhase], None]] = None,
        state: Optional[Dict[str, Any]] = None,
    ) -> SendResult:
        """运行一次流式对话。

        Args:
            user_input: 用户输入内容
            active_commands: 当前激活的指令（决定使用哪个 Agent）
            files: 随消息发送的附件（已上传过的同名文件会被复用）
            on_update: 流式期间接收节流后的累积内容
            on_phase: 接收状态机阶段变化
            state: 透传给服务端的环境变量

        Returns:
            SendResult，包含最终文本、提取出的代码块与激活的 Artifact

        Raises:
            各种 domain.exceptions 中定义的异常
        """
        agent_id = self.agent_for(active_commands)
        try:
            return await self._orchestrator.send(
                agent_id,
                user_input,
                files,
                state=state,
                on_update=on_update,
                on_phase=on_phase,
                is_project_retrieval=COMMAND_PROJECT_RETRIEVAL in active_commands,
            )
        except Exception as e:
            logger.error(f"Chat failed: {e}", extra={"extra": {
                "agent_id": agent_id,
                "error": str(e),
            }})
            raise

    def cancel(self, active_commands: AbstractSet[str] = frozenset()) -> bool:
        return self._orchestrator.cancel(self.agent_for(active_commands))
