import asyncio

import pytest

from agent_chat.domain.exceptions import ProtocolError, TransportError
from agent_chat.domain.models import ChatIdAssigned, ContentDelta, Finish, MalformedLine
from agent_chat.streaming.decoder import StreamDecoder, decode_stream, with_stall_timeout


STREAM = (
    'data: {"content": "你好", "chatId": 42}\n'
    "\n"
    ": keep-alive\n"
    'data: {"content": ", world"}\n'
    "data: {not json}\n"
    'data: {"content": "!", "finish": true}\n'
    'data: {"content": "ignored"}\n'
)


def _collect(chunks):
    decoder = StreamDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return decoder, events


def _text(events):
    return "".join(e.text for e in events if isinstance(e, ContentDelta))


def test_decode_single_chunk():
    decoder, events = _collect([STREAM])
    assert events[0] == ContentDelta("你好")
    assert events[1] == ChatIdAssigned(42)
    assert isinstance(events[3], MalformedLine)
    assert events[-1] == Finish()
    assert _text(events) == "你好, world!"
    assert decoder.finished


def test_any_split_yields_same_events():
    _, expected = _collect([STREAM])
    data = STREAM.encode("utf-8")
    for size in (1, 2, 3, 5, 7, 13):
        chunks = [data[i:i + size] for i in range(0, len(data), size)]
        _, events = _collect(chunks)
        assert [type(e) for e in events] == [type(e) for e in expected]
        assert _text(events) == _text(expected)


def test_multibyte_char_split_across_chunks():
    data = 'data: {"content": "中文"}\ndata: {"finish": true}\n'.encode("utf-8")
    idx = data.index("中".encode("utf-8")) + 1
    _, events = _collect([data[:idx], data[idx:]])
    assert _text(events) == "中文"


def test_crlf_lines():
    _, events = _collect(['data: {"content": "a"}\r\ndata: {"finish": true}\r\n'])
    assert events == [ContentDelta("a"), Finish()]


def test_trailing_line_without_newline_is_flushed():
    _, events = _collect(['data: {"content": "a"}\ndata: {"finish": true}'])
    assert events[-1] == Finish()


def test_non_object_payload_is_malformed():
    _, events = _collect(['data: [1, 2]\n', 'data: {"content": 5}\n'])
    assert all(isinstance(e, MalformedLine) for e in events)
    assert len(events) == 2


def test_falsy_chat_id_is_treated_as_absent():
    _, events = _collect(['data: {"content": "a", "chatId": 0}\n', 'data: {"chatId": ""}\n'])
    assert events == [ContentDelta("a")]
    assert StreamDecoder.parse_frame('{"chatId": "0"}') == [ChatIdAssigned("0")]


def test_custom_prefix():
    decoder = StreamDecoder(prefix="event:")
    events = decoder.feed('data: {"content": "x"}\nevent: {"content": "y"}\n')
    assert events == [ContentDelta("y")]


async def _agen(items):
    for item in items:
        await asyncio.sleep(0)
        yield item


@pytest.mark.asyncio
async def test_decode_stream_stops_after_finish():
    events = [e async for e in decode_stream(_agen([STREAM[:10], STREAM[10:]]))]
    assert sum(isinstance(e, Finish) for e in events) == 1
    assert "ignored" not in _text(events)


@pytest.mark.asyncio
async def test_decode_stream_without_finish_raises():
    received = []
    with pytest.raises(ProtocolError) as exc:
        async for event in decode_stream(_agen(['data: {"content": "partial"}\n'])):
            received.append(event)
    assert exc.value.code == "STREAM_ENDED_WITHOUT_FINISH"
    assert received == [ContentDelta("partial")]


@pytest.mark.asyncio
async def test_stall_timeout_raises_transport_error():
    async def stalled():
        yield b'data: {"content": "a"}\n'
        await asyncio.sleep(10)
        yield b""

    received = []
    with pytest.raises(TransportError) as exc:
        async for chunk in with_stall_timeout(stalled(), 0.05):
            received.append(chunk)
    assert exc.value.code == "STREAM_STALLED"
    assert len(received) == 1


@pytest.mark.asyncio
async def test_stall_timeout_disabled_passes_through():
    chunks = [c async for c in with_stall_timeout(_agen([b"a", b"b"]), None)]
    assert chunks == [b"a", b"b"]
