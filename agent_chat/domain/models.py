"""统一的会话、事件与 Artifact 数据模型。

本模块定义了流式对话引擎内部共享的标准数据结构：

- ConversationState: 单个 Agent 的会话连续性（chatId + 已上传文件 + 消息）。
- UploadedFile / UploadCandidate: 已上传文件与待上传文件。
- StreamEvent: 解码器产出的事件（ContentDelta / ChatIdAssigned / Finish / MalformedLine）。
- CodeBlock / Artifact: 从助手输出中提取的结构化内容块。

Provider 适配层只负责在服务端 JSON 与这些模型之间做转换。
"""

import enum
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import uuid4


Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class UploadedFile:
    """服务端已接收的文件；在同一 ConversationState 内 file_name 唯一。"""

    file_id: str
    file_name: str

    def to_payload(self) -> Dict[str, str]:
        return {"fileId": self.file_id, "fileName": self.file_name}


@dataclass
class UploadCandidate:
    """调用方请求随消息发送的文件（尚未上传）。"""

    file_name: str
    content: bytes
    content_type: Optional[str] = None

    def __post_init__(self) -> None:
        if self.content_type is None:
            guessed, _ = mimetypes.guess_type(self.file_name)
            self.content_type = guessed or "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return PurePath(self.file_name).suffix.lower()


@dataclass
class CodeBlock:
    """助手回复中一个带语言标记的围栏内容块。"""

    language: str
    content: str
    title: str
    is_project_retrieval: bool = False


@dataclass
class Artifact:
    """可单独渲染的内容单元（代码、表格或文档），由 CodeBlock 派生，不持久化。"""

    id: str
    language: str
    title: str
    content: str
    source_message_id: str
    is_project_retrieval: bool = False


@dataclass
class ChatMessage:
    """会话中的一条消息。

    - id: 消息 ID；助手占位消息在流式期间使用同一个 ID。
    - content: 文本内容；助手消息在完成后为去除代码块后的正文。
    - code_blocks: 完成后从回复中提取出的代码块。
    """

    role: Role
    content: str
    id: str = field(default_factory=lambda: f"msg-{uuid4().hex}")
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    code_blocks: List[CodeBlock] = field(default_factory=list)
    pending: bool = False


@dataclass
class ConversationState:
    """单个 Agent 的会话状态，只由 SessionStore 创建与持有。

    chat_id 一旦被设为非空值，在整个生命周期内不再改变。
    """

    agent_id: str
    chat_id: Optional[Union[int, str]] = None
    files: List[UploadedFile] = field(default_factory=list)
    messages: List[ChatMessage] = field(default_factory=list)

    def find_file(self, file_name: str) -> Optional[UploadedFile]:
        for f in self.files:
            if f.file_name == file_name:
                return f
        return None


# ---- 流事件（解析时一次性确定类型） ----


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ChatIdAssigned:
    chat_id: Union[int, str]


@dataclass(frozen=True)
class Finish:
    pass


@dataclass(frozen=True)
class MalformedLine:
    """无法解析的事件行，仅供记录，不会中断解码。"""

    raw: str
    reason: str = ""


StreamEvent = Union[ContentDelta, ChatIdAssigned, Finish, MalformedLine]


@dataclass
class ChatStreamRequest:
    """发给传输层的一次流式对话请求。"""

    agent_id: str
    user_input: str
    chat_id: Optional[Union[int, str]] = None
    files: List[UploadedFile] = field(default_factory=list)
    state: Dict[str, Any] = field(default_factory=dict)
    images: List[Any] = field(default_factory=list)
    debug: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "chatId": str(self.chat_id) if self.chat_id is not None else None,
            "userChatInput": self.user_input,
            "state": self.state,
            "images": self.images,
            "files": [f.to_payload() for f in self.files],
            "debug": self.debug,
        }


class SendPhase(str, enum.Enum):
    """一次发送的状态机阶段。"""

    IDLE = "idle"
    UPLOADING = "uploading"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass
class SendResult:
    """一次成功发送的最终结果。"""

    agent_id: str
    message_id: str
    final_text: str
    cleaned_text: str
    blocks: List[CodeBlock]
    artifacts: List[Artifact]
    active_artifact: Optional[Artifact]
    chat_id: Optional[Union[int, str]]
    files: List[UploadedFile]
