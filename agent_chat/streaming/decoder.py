"""事件流解码器。

服务端返回按行分隔的文本流，携带事件的行以固定前缀（默认 "data:"）开头，
后接一个 JSON 对象，可选字段：

- content: 文本片段；
- chatId: 服务端分配的会话 ID（数字）；
- finish: 本轮回复结束标记。

网络分块不保证按行对齐：解码器会缓存末尾不完整的行，直到后续分块补齐。
每次 feed 都会先取出缓冲区内所有完整的行再返回，不做递归。
"""

import asyncio
import codecs
import json
from typing import AsyncIterable, AsyncIterator, List, Optional, Union

from agent_chat.domain.exceptions import ParseError, ProtocolError, TransportError
from agent_chat.domain.models import (
    ChatIdAssigned,
    ContentDelta,
    Finish,
    MalformedLine,
    StreamEvent,
)
from agent_chat.infrastructure.logging.logger import logger


Chunk = Union[bytes, str]


class StreamDecoder:
    """增量解码器：输入任意切分的分块，按到达顺序产出 StreamEvent。

    收到 Finish 后解码器进入完成状态，之后的输入全部忽略。
    """

    def __init__(self, prefix: str = "data:"):
        self._prefix = prefix
        self._buffer = ""
        self._finished = False
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: Chunk) -> List[StreamEvent]:
        if self._finished:
            return []
        if isinstance(chunk, bytes):
            chunk = self._text_decoder.decode(chunk)
        self._buffer += chunk

        events: List[StreamEvent] = []
        while not self._finished:
            idx = self._buffer.find("\n")
            if idx < 0:
                break
            line = self._buffer[:idx]
            self._buffer = self._buffer[idx + 1:]
            self._collect(line, events)
        return events

    def flush(self) -> List[StreamEvent]:
        """输入结束：把缓冲区剩余内容当作最后一行处理。"""
        if self._finished:
            return []
        tail = self._text_decoder.decode(b"", final=True)
        rest = self._buffer + tail
        self._buffer = ""
        events: List[StreamEvent] = []
        if rest:
            self._collect(rest, events)
        return events

    def _collect(self, line: str, events: List[StreamEvent]) -> None:
        line = line.rstrip("\r")
        if not line.startswith(self._prefix):
            return
        raw = line[len(self._prefix):].strip()
        if not raw:
            return
        try:
            frame = self.parse_frame(raw)
        except ParseError as e:
            logger.warning(
                "Skipped malformed event line",
                extra={"extra": {"code": e.code, "reason": e.message, "raw": raw[:200]}},
            )
            events.append(MalformedLine(raw=line, reason=e.message))
            return
        for event in frame:
            events.append(event)
            if isinstance(event, Finish):
                self._finished = True
                self._buffer = ""
                return

    @staticmethod
    def parse_frame(raw: str) -> List[StreamEvent]:
        """把一行事件载荷解析为事件列表（顺序：内容、会话 ID、结束）。"""

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(code="MALFORMED_EVENT", message=f"invalid json: {e.msg}")
        if not isinstance(data, dict):
            raise ParseError(code="MALFORMED_EVENT", message="event payload is not an object")

        events: List[StreamEvent] = []
        content = data.get("content")
        if content is not None and not isinstance(content, str):
            raise ParseError(code="MALFORMED_EVENT", message="content is not a string")
        if content:
            events.append(ContentDelta(text=content))

        chat_id = data.get("chatId")
        if isinstance(chat_id, bool) or not isinstance(chat_id, (int, str, type(None))):
            raise ParseError(code="MALFORMED_EVENT", message="chatId has unexpected type")
        # 0 与空串都视为未分配
        if chat_id:
            events.append(ChatIdAssigned(chat_id=chat_id))

        if data.get("finish") is True:
            events.append(Finish())
        return events


async def decode_stream(
    chunks: AsyncIterable[Chunk],
    prefix: str = "data:",
) -> AsyncIterator[StreamEvent]:
    """把分块序列解码为事件序列。

    产出恰好一个 Finish 后停止；若分块耗尽仍未收到 Finish，抛出 ProtocolError。
    """

    decoder = StreamDecoder(prefix)
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.finished:
            return
    for event in decoder.flush():
        yield event
    if not decoder.finished:
        raise ProtocolError(
            code="STREAM_ENDED_WITHOUT_FINISH",
            message="event stream ended before finish marker",
        )


async def with_stall_timeout(
    chunks: AsyncIterable[Chunk],
    timeout: Optional[float],
) -> AsyncIterator[Chunk]:
    """为每次分块读取加上停顿超时；超时按传输错误处理。"""

    iterator = chunks.__aiter__()
    while True:
        try:
            if timeout is None:
                chunk = await iterator.__anext__()
            else:
                chunk = await asyncio.wait_for(iterator.__anext__(), timeout)
        except StopAsyncIteration:
            return
        except asyncio.TimeoutError:
            raise TransportError(
                code="STREAM_STALLED",
                message=f"no data received for {timeout} seconds",
            )
        yield chunk
