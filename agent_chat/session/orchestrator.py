"""会话编排核心模块。

一次发送的状态机：

    Idle → Uploading → Requesting → Streaming → Finished
                  ↘︎          ↘︎           ↘︎
                              Failed

- Uploading: 校验并上传附件（已上传的同名文件直接复用）。
- Requesting: 追加用户消息与助手占位消息，发起流式请求。
- Streaming: 解码事件流，增量写入占位消息并经 UpdateCoalescer 推送给界面。
- Finished: 提取代码块/Artifact，返回 SendResult。
- Failed: 任何传输、上传、协议错误或取消；移除占位消息，不回滚已提交的上传进度。

同一 agent_id 同时只允许一次发送；不同 agent_id 之间互不影响。
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from agent_chat.artifacts.extractor import ArtifactExtractor
from agent_chat.domain.exceptions import BusinessError, SessionBusyError, ValidationError
from agent_chat.domain.models import (
    ChatIdAssigned,
    ChatMessage,
    ChatStreamRequest,
    ContentDelta,
    ConversationState,
    Finish,
    MalformedLine,
    SendPhase,
    SendResult,
    UploadCandidate,
)
from agent_chat.domain.session import SessionStore
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.providers.base import ChatTransport
from agent_chat.streaming.coalescer import Sink, UpdateCoalescer
from agent_chat.streaming.decoder import decode_stream, with_stall_timeout
from agent_chat.uploads.coordinator import UploadCoordinator


PhaseCallback = Callable[[str, SendPhase], None]

_TRANSITIONS: Dict[SendPhase, frozenset] = {
    SendPhase.IDLE: frozenset({SendPhase.UPLOADING, SendPhase.FAILED}),
    SendPhase.UPLOADING: frozenset({SendPhase.REQUESTING, SendPhase.FAILED}),
    SendPhase.REQUESTING: frozenset({SendPhase.STREAMING, SendPhase.FAILED}),
    SendPhase.STREAMING: frozenset({SendPhase.FINISHED, SendPhase.FAILED}),
    SendPhase.FINISHED: frozenset(),
    SendPhase.FAILED: frozenset(),
}


class _SendContext:
    """单次发送的运行期状态。"""

    def __init__(self, agent_id: str, on_phase: Optional[PhaseCallback], is_project_retrieval: bool = False):
        self.agent_id = agent_id
        self.trace_id = f"tr-{uuid4().hex}"
        self.phase = SendPhase.IDLE
        self.on_phase = on_phase
        self.is_project_retrieval = is_project_retrieval
        self.task: Optional[asyncio.Task] = None
        self.placeholder: Optional[ChatMessage] = None
        self.coalescer: Optional[UpdateCoalescer] = None
        self.malformed = 0
        self.deltas = 0

    @property
    def log_ctx(self) -> Dict[str, Any]:
        return {"trace_id": self.trace_id, "agent_id": self.agent_id, "phase": self.phase.value}


class SessionOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        transport: ChatTransport,
        uploads: UploadCoordinator,
        extractor: Optional[ArtifactExtractor] = None,
        *,
        event_prefix: str = "data:",
        coalesce_interval: float = 0.1,
        stall_timeout: Optional[float] = None,
    ):
        self._store = store
        self._transport = transport
        self._uploads = uploads
        self._extractor = extractor or ArtifactExtractor()
        self._event_prefix = event_prefix
        self._coalesce_interval = coalesce_interval
        self._stall_timeout = stall_timeout
        self._inflight: Dict[str, _SendContext] = {}

    def phase(self, agent_id: str) -> SendPhase:
        ctx = self._inflight.get(agent_id)
        return ctx.phase if ctx else SendPhase.IDLE

    def is_busy(self, agent_id: str) -> bool:
        return agent_id in self._inflight

    def submit(
        self,
        agent_id: str,
        user_input: str,
        files: Optional[Sequence[UploadCandidate]] = None,
        *,
        state: Optional[Dict[str, Any]] = None,
        on_update: Optional[Sink] = None,
        on_phase: Optional[PhaseCallback] = None,
        is_project_retrieval: bool = False,
    ) -> "asyncio.Task[SendResult]":
        """以后台任务方式发送；返回的 Task 可直接 cancel()。

        占用在调用时同步完成，因此紧接着的第二次 submit 会立即抛出 SessionBusyError。
        """
        ctx, user_input = self._reserve(agent_id, user_input, on_phase, is_project_retrieval)
        task = asyncio.create_task(self._execute(ctx, user_input, files, state, on_update))
        ctx.task = task
        # 任务在开始运行前就被取消时，协程体不会执行，需在这里释放占用
        task.add_done_callback(lambda _t: self._release(ctx))
        return task

    def cancel(self, agent_id: str) -> bool:
        """取消该 Agent 正在进行的发送；返回是否确有发送被取消。"""
        ctx = self._inflight.get(agent_id)
        if ctx is None or ctx.task is None or ctx.task.done():
            return False
        return ctx.task.cancel()

    async def send(
        self,
        agent_id: str,
        user_input: str,
        files: Optional[Sequence[UploadCandidate]] = None,
        *,
        state: Optional[Dict[str, Any]] = None,
        on_update: Optional[Sink] = None,
        on_phase: Optional[PhaseCallback] = None,
        is_project_retrieval: bool = False,
    ) -> SendResult:
        """执行一次完整发送并返回最终文本与 Artifact。

        Raises:
            ValidationError / UploadError / TransportError / ProtocolError / SessionBusyError
            asyncio.CancelledError: 发送被取消（此时已转入 Failed）。
        """
        ctx, user_input = self._reserve(agent_id, user_input, on_phase, is_project_retrieval)
        ctx.task = asyncio.current_task()
        return await self._execute(ctx, user_input, files, state, on_update)

    def _reserve(
        self,
        agent_id: str,
        user_input: str,
        on_phase: Optional[PhaseCallback],
        is_project_retrieval: bool,
    ) -> Tuple[_SendContext, str]:
        if self.is_busy(agent_id):
            raise SessionBusyError(code="SESSION_BUSY", message=f"agent {agent_id} is busy", agent_id=agent_id)
        user_input = (user_input or "").strip()
        if not user_input:
            raise ValidationError(code="EMPTY_INPUT", message="user input is empty")
        ctx = _SendContext(agent_id, on_phase, is_project_retrieval)
        self._inflight[agent_id] = ctx
        return ctx, user_input

    def _release(self, ctx: _SendContext) -> None:
        if self._inflight.get(ctx.agent_id) is ctx:
            del self._inflight[ctx.agent_id]

    async def _execute(
        self,
        ctx: _SendContext,
        user_input: str,
        files: Optional[Sequence[UploadCandidate]],
        state: Optional[Dict[str, Any]],
        on_update: Optional[Sink],
    ) -> SendResult:
        conv = self._store.get_or_create(ctx.agent_id)
        try:
            return await self._run(ctx, conv, user_input, list(files or []), state or {}, on_update)
        except asyncio.CancelledError:
            self._fail(ctx, conv, "cancelled", "send cancelled by caller")
            raise
        except BusinessError as e:
            self._fail(ctx, conv, e.code, e.message)
            raise
        except Exception as e:
            self._fail(ctx, conv, type(e).__name__, str(e))
            raise
        finally:
            if ctx.coalescer is not None and not ctx.coalescer.closed:
                ctx.coalescer.cancel()
            self._release(ctx)

    async def _run(
        self,
        ctx: _SendContext,
        conv: ConversationState,
        user_input: str,
        files: List[UploadCandidate],
        extra_state: Dict[str, Any],
        on_update: Optional[Sink],
    ) -> SendResult:
        self._transition(ctx, SendPhase.UPLOADING)
        await self._uploads.ensure_uploaded(files, conv)

        self._transition(ctx, SendPhase.REQUESTING)
        conv.messages.append(ChatMessage(role="user", content=user_input))
        ctx.placeholder = ChatMessage(role="assistant", content="", pending=True)
        conv.messages.append(ctx.placeholder)
        ctx.coalescer = UpdateCoalescer(on_update, interval=self._coalesce_interval)

        req = ChatStreamRequest(
            agent_id=conv.agent_id,
            user_input=user_input,
            chat_id=conv.chat_id,
            # 始终携带会话内全部已上传文件
            files=list(conv.files),
            state=extra_state,
        )
        async with self._transport.open_stream(req) as chunks:
            self._transition(ctx, SendPhase.STREAMING)
            events = decode_stream(with_stall_timeout(chunks, self._stall_timeout), self._event_prefix)
            async for event in events:
                self._apply_event(ctx, conv, event)

        final_text = ctx.coalescer.finish()
        return self._finalize(ctx, conv, final_text)

    def _apply_event(self, ctx: _SendContext, conv: ConversationState, event) -> None:
        if isinstance(event, ContentDelta):
            ctx.deltas += 1
            ctx.placeholder.content += event.text
            ctx.coalescer.apply(event.text)
        elif isinstance(event, ChatIdAssigned):
            if self._store.record_chat_id(conv, event.chat_id):
                logger.info("Recorded chat id", extra={"extra": {**ctx.log_ctx, "chat_id": event.chat_id}})
        elif isinstance(event, MalformedLine):
            ctx.malformed += 1
        elif isinstance(event, Finish):
            logger.info(
                "Stream finished",
                extra={"extra": {**ctx.log_ctx, "deltas": ctx.deltas, "malformed": ctx.malformed}},
            )

    def _finalize(self, ctx: _SendContext, conv: ConversationState, final_text: str) -> SendResult:
        message = ctx.placeholder
        scan = self._extractor.scan(final_text, ctx.is_project_retrieval)
        active = self._extractor.promote(scan, message.id)
        artifacts = [active] if active else []
        artifacts.extend(self._extractor.create_artifact(b, message.id) for b in scan.blocks[1:])

        message.content = scan.cleaned_text
        message.code_blocks = list(scan.blocks)
        message.pending = False
        self._transition(ctx, SendPhase.FINISHED)
        logger.info(
            "Send completed",
            extra={"extra": {**ctx.log_ctx, "message_id": message.id, "blocks": len(scan.blocks)}},
        )
        return SendResult(
            agent_id=conv.agent_id,
            message_id=message.id,
            final_text=final_text,
            cleaned_text=scan.cleaned_text,
            blocks=list(scan.blocks),
            artifacts=artifacts,
            active_artifact=active,
            chat_id=conv.chat_id,
            files=list(conv.files),
        )

    def _fail(self, ctx: _SendContext, conv: ConversationState, code: str, message: str) -> None:
        if ctx.placeholder is not None:
            conv.messages = [m for m in conv.messages if m is not ctx.placeholder]
            ctx.placeholder = None
        if ctx.coalescer is not None:
            ctx.coalescer.cancel()
        failed_in = ctx.phase
        self._transition(ctx, SendPhase.FAILED)
        logger.error(
            "Send failed",
            extra={"extra": {**ctx.log_ctx, "failed_in": failed_in.value, "code": code, "error": message}},
        )

    def _transition(self, ctx: _SendContext, target: SendPhase) -> None:
        if target not in _TRANSITIONS[ctx.phase]:
            raise RuntimeError(f"illegal phase transition {ctx.phase.value} -> {target.value}")
        ctx.phase = target
        logger.log(logging.INFO, "Phase changed", extra={"extra": ctx.log_ctx})
        if ctx.on_phase is not None:
            ctx.on_phase(ctx.agent_id, target)
