"""认证凭据。

核心只把 (key, secret) 当作不透明的凭据对，认证头由此处统一构造。
"""

from dataclasses import dataclass
from typing import Dict, Optional

from agent_chat.domain.exceptions import ValidationError


@dataclass(frozen=True)
class Credentials:
    key: str
    secret: str

    def __repr__(self) -> str:
        return f"Credentials(key={self.key!r}, secret='***')"

    def bearer_token(self) -> str:
        return f"{self.key}.{self.secret}"

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.bearer_token()}"}

    @classmethod
    def from_settings(cls, settings) -> "Credentials":
        key: Optional[str] = getattr(settings, "auth_key", None)
        secret: Optional[str] = getattr(settings, "auth_secret", None)
        if not key or not secret:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_CREDENTIALS", message="AUTH_KEY / AUTH_SECRET not set")
        return cls(key=key, secret=secret)
