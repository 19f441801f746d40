"""界面更新节流。

流式期间每个增量都可能触发界面刷新；UpdateCoalescer 把增量合并成快照，
按固定间隔最多推送一次最新累积内容，并在结束或取消时无条件推送最终内容。
"""

import asyncio
from typing import Callable, Optional

from agent_chat.infrastructure.logging.logger import logger


Sink = Callable[[str], None]


class Ticker:
    """单次定时器，封装 loop.call_later，并提供显式的取消句柄。"""

    def __init__(self, interval: float, callback: Callable[[], None]):
        self._interval = interval
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> bool:
        """若当前没有待触发的定时器则安排一次；返回是否新安排。"""
        if self._handle is not None:
            return False
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval, self._fire)
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class UpdateCoalescer:
    """把单条在途消息的增量合并后按限定频率推送给 sink。

    - 每次 tick 推送的都是当时最新的累积内容，不会推送比最近一次增量更旧的快照。
    - finish/cancel 会停止定时器、推送最终内容并释放对 sink 的引用。
    """

    def __init__(self, sink: Optional[Sink], interval: float = 0.1):
        self._sink = sink
        self._text = ""
        self._delivered: Optional[str] = None
        self._closed = False
        self._ticker = Ticker(interval, self._on_tick)

    @property
    def text(self) -> str:
        return self._text

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def tick_pending(self) -> bool:
        return self._ticker.pending

    def apply(self, delta: str) -> None:
        if self._closed:
            raise RuntimeError("coalescer already closed")
        if not delta:
            return
        self._text += delta
        if self._sink is not None:
            self._ticker.schedule()

    def finish(self) -> str:
        """流结束：推送最终内容并关闭。"""
        return self._close()

    def cancel(self) -> str:
        """发送被取消或失败：同样推送当前累积内容后关闭。"""
        return self._close()

    def _close(self) -> str:
        if self._closed:
            return self._text
        self._closed = True
        self._ticker.cancel()
        sink, self._sink = self._sink, None
        if sink is not None:
            self._delivered = self._text
            try:
                sink(self._text)
            except Exception:
                logger.exception("Update sink failed on final flush")
        return self._text

    def _on_tick(self) -> None:
        if self._closed or self._sink is None:
            return
        if self._delivered == self._text:
            return
        self._delivered = self._text
        try:
            self._sink(self._text)
        except Exception:
            logger.exception("Update sink failed")
