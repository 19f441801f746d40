"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。
除 ParseError（单行解析失败，由解码器就地恢复）外，
其余异常都会终止当前发送，并以 kind + message 的形式交给调用方重试。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "UPLOAD_FAILED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 file_name、agent_id 等）。
    """

    kind = "business"

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.kind}:{self.code}] {self.message}"


class ValidationError(BusinessError):
    """参数或附件校验失败，发生在任何网络调用之前。"""

    kind = "validation"


class TransportError(BusinessError):
    """传输层错误：非 2xx 响应、网络故障或流式读取超时。"""

    kind = "transport"


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(TransportError):
    """服务端返回非 2xx 错误时抛出，message 为响应正文。"""


class ProtocolError(BusinessError):
    """事件流在收到结束标记前就已终止。"""

    kind = "protocol"


class ParseError(BusinessError):
    """单条事件行无法解析；不会中断事件流。"""

    kind = "parse"


class UploadError(BusinessError):
    """单个文件上传失败，整批上传随之失败。"""

    kind = "upload"


class SessionBusyError(BusinessError):
    """同一个 Agent 已有进行中的发送。"""

    kind = "busy"
