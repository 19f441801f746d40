"""流式处理：事件流解码与界面更新节流。"""

from agent_chat.streaming.coalescer import Ticker, UpdateCoalescer
from agent_chat.streaming.decoder import StreamDecoder, decode_stream, with_stall_timeout

__all__ = ["StreamDecoder", "Ticker", "UpdateCoalescer", "decode_stream", "with_stall_timeout"]
