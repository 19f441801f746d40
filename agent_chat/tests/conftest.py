import asyncio
import json
from contextlib import asynccontextmanager
from typing import List, Optional

import pytest

from agent_chat.domain.exceptions import ApiError
from agent_chat.domain.session import SessionStore


def frame(**payload) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n".encode("utf-8")


class FakeUploader:
    def __init__(self, fail_on: Optional[set] = None, delay: float = 0.0, hang_on: Optional[set] = None):
        self.calls: List[str] = []
        self.fail_on = fail_on or set()
        self.hang_on = hang_on or set()
        self.delay = delay

    async def upload(self, content, file_name, content_type=None):
        self.calls.append(file_name)
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if file_name in self.hang_on:
            await asyncio.Event().wait()
        if file_name in self.fail_on:
            raise ApiError(code="API_ERROR", message="boom", http_status=500)
        return f"id-{file_name}"


class FakeTransport:
    """按预设分块回放事件流；hang=True 时在最后一个分块后无限等待。"""

    def __init__(self, chunks=(), error: Optional[Exception] = None, hang: bool = False):
        self.chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.requests = []
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def open_stream(self, req):
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        self.opened += 1
        try:
            yield self._iter()
        finally:
            self.closed += 1

    async def _iter(self):
        for chunk in self.chunks:
            await asyncio.sleep(0)
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk
        if self.hang:
            await asyncio.Event().wait()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def uploader():
    return FakeUploader()
