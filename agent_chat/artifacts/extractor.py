"""Artifact 提取。

从助手回复中识别围栏内容块：

    ```<language> [title="标题"]
    ...内容...
    ```

逐行扫描并跟踪“是否处于围栏内”的状态；围栏内出现的第一行纯 ``` 即为结束标记。
没有语言标记的围栏、或直到文本末尾都未闭合的围栏不视为内容块，原样保留在正文中。
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import uuid4

from agent_chat.domain.models import Artifact, CodeBlock


FENCE = "```"

_OPEN_FENCE = re.compile(r'^```(\w+)(?:\s+title="([^"]*)")?\s*$')

DEFAULT_TITLES: Dict[str, str] = {
    "report": "报告文档",
    "markdown": "Markdown 文档",
    "latex": "LaTeX 文档",
    "json": "JSON 数据",
    "javascript": "JavaScript 代码",
    "typescript": "TypeScript 代码",
    "python": "Python 代码",
    "html": "HTML 文档",
    "css": "CSS 样式",
    "table": "数据表格",
}


def default_title(language: str) -> str:
    return DEFAULT_TITLES.get(language) or f"{language.upper()} 文档"


@dataclass
class ScanResult:
    cleaned_text: str
    blocks: List[CodeBlock] = field(default_factory=list)


class ArtifactExtractor:
    """纯函数式的内容块提取器，相同输入总得到相同输出。"""

    def scan(self, text: str, is_project_retrieval: bool = False) -> ScanResult:
        """is_project_retrieval 标记这些内容块来自项目检索指令下的回复。"""
        lines = text.split("\n")
        kept: List[str] = []
        blocks: List[CodeBlock] = []

        i = 0
        while i < len(lines):
            match = _OPEN_FENCE.match(lines[i].rstrip("\r"))
            if match is None:
                kept.append(lines[i])
                i += 1
                continue
            close = self._find_close(lines, i + 1)
            if close is None:
                # 未闭合：剩余内容全部按正文保留
                kept.extend(lines[i:])
                break
            language, title = match.group(1), match.group(2)
            body = "\n".join(lines[i + 1:close]).strip()
            blocks.append(
                CodeBlock(
                    language=language,
                    content=body,
                    title=title or default_title(language),
                    is_project_retrieval=is_project_retrieval,
                )
            )
            kept.append("")
            i = close + 1

        return ScanResult(cleaned_text=self._join(kept), blocks=blocks)

    @staticmethod
    def _find_close(lines: List[str], start: int) -> Optional[int]:
        for j in range(start, len(lines)):
            if lines[j].strip() == FENCE:
                return j
        return None

    @staticmethod
    def _join(kept: List[str]) -> str:
        return "\n".join(kept).strip()

    def create_artifact(self, block: CodeBlock, message_id: str) -> Artifact:
        """为任意内容块构造 Artifact（手动激活时使用）。"""
        return Artifact(
            id=f"artifact-{uuid4().hex}",
            language=block.language,
            title=block.title or default_title(block.language),
            content=block.content,
            source_message_id=message_id,
            is_project_retrieval=block.is_project_retrieval,
        )

    def promote(self, result: ScanResult, message_id: str) -> Optional[Artifact]:
        """把第一个内容块提升为当前激活的 Artifact；没有内容块时返回 None。"""
        if not result.blocks:
            return None
        return self.create_artifact(result.blocks[0], message_id)
