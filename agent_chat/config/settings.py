"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。
各组件均可通过显式参数覆盖这里的默认值，便于测试或在同一进程内运行多个引擎实例。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# 各环境对应的 API 主机
API_HOSTS: Dict[str, str] = {
    "test": "test.agentspro.cn",
    "uat": "uat.agentspro.cn",
    "prod": "lingda.agentspro.cn",
}

DEFAULT_ALLOWED_EXTENSIONS = [
    ".pdf", ".doc", ".docx", ".txt", ".md", ".csv",
    ".xls", ".xlsx", ".ppt", ".pptx", ".json",
    ".png", ".jpg", ".jpeg",
]


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AGENT_CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 服务端与认证 ----
    api_env: Literal["test", "uat", "prod"] = Field(default="uat", description="目标环境")
    api_base_url: Optional[str] = Field(
        default=None,
        description="显式指定 API 基础URL；为空时按 api_env 取 API_HOSTS",
    )
    auth_key: Optional[str] = Field(default=None, description="个人秘钥 authKey")
    auth_secret: Optional[str] = Field(default=None, description="个人秘钥 authSecret")

    # ---- Agent 标识 ----
    agent_normal_qa: str = Field(default="normal-qa", description="普通问答 Agent ID")
    agent_project_recommend: str = Field(default="project-recommend", description="项目检索 Agent ID")
    agent_report_writing: str = Field(default="report-writing", description="报告撰写 Agent ID")

    # ---- 流式与传输 ----
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    stream_stall_timeout: Optional[float] = Field(
        default=60.0,
        description="流式响应中两次数据之间允许的最长间隔（秒），None 表示不限制",
    )
    event_prefix: str = Field(default="data:", description="事件行前缀")
    coalesce_interval: float = Field(default=0.1, gt=0.0, description="界面刷新节流间隔（秒）")

    # ---- 文件上传 ----
    upload_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1, description="单个文件大小上限")
    upload_max_files: int = Field(default=10, ge=1, description="单次发送的最大文件数")
    upload_allowed_extensions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS),
        description="允许上传的扩展名（小写，带点）",
    )
    upload_concurrency: int = Field(default=3, ge=1, le=16, description="并行上传数")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("upload_allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized

    @field_validator("stream_stall_timeout")
    @classmethod
    def validate_stall_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            return None
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )

    @property
    def base_url(self) -> str:
        """返回带协议的 API 基础URL。"""
        if self.api_base_url:
            return self.api_base_url.rstrip("/")
        return f"https://{API_HOSTS[self.api_env]}"


settings = Settings()
