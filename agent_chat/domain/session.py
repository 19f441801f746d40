"""按 Agent 分区的会话存储。

每个 agent_id 对应一个 ConversationState，首次访问时惰性创建，进程内不再销毁。
同一 agent_id 只允许单写者；需要隔离的调用方应使用不同的 agent_id，
或各自创建独立的 SessionStore 实例。
"""

from typing import Dict, Iterable, List, Optional, Union

from agent_chat.domain.models import ConversationState, UploadedFile
from agent_chat.infrastructure.logging.logger import logger


class SessionStore:
    def __init__(self) -> None:
        self._states: Dict[str, ConversationState] = {}

    def get_or_create(self, agent_id: str) -> ConversationState:
        """返回已有状态，或创建一个空状态（无 chat_id、无文件）。"""
        state = self._states.get(agent_id)
        if state is None:
            state = ConversationState(agent_id=agent_id)
            self._states[agent_id] = state
            logger.info("Created conversation state", extra={"extra": {"agent_id": agent_id}})
        return state

    def record_chat_id(self, state: ConversationState, chat_id: Optional[Union[int, str]]) -> bool:
        """仅当 chat_id 尚未设置时写入；返回是否发生了修改。"""
        if chat_id is None or chat_id == "":
            return False
        if state.chat_id is not None:
            if state.chat_id != chat_id:
                logger.warning(
                    "Ignored conflicting chat id",
                    extra={"extra": {
                        "agent_id": state.agent_id,
                        "chat_id": state.chat_id,
                        "ignored_chat_id": chat_id,
                    }},
                )
            return False
        state.chat_id = chat_id
        return True

    def append_files(self, state: ConversationState, files: Iterable[UploadedFile]) -> List[UploadedFile]:
        """合并新文件，跳过 file_name 已存在的条目；返回实际新增的文件。"""
        added: List[UploadedFile] = []
        known = {f.file_name for f in state.files}
        for f in files:
            if f.file_name in known:
                continue
            state.files.append(f)
            known.add(f.file_name)
            added.append(f)
        return added

    def __len__(self) -> int:
        return len(self._states)
