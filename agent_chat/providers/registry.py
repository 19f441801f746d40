"""Agent 配置与路由。

把界面上的“指令”映射到具体的 Agent：

- report: 报告撰写 Agent；
- project-retrieval: 项目检索 Agent；
- 其他情况: 普通问答 Agent。

每个 Agent 各自维护一份会话状态（chatId 与已上传文件）。
"""

from dataclasses import dataclass
from typing import AbstractSet


COMMAND_REPORT = "report"
COMMAND_PROJECT_RETRIEVAL = "project-retrieval"


@dataclass(frozen=True)
class AgentRegistry:
    normal_qa: str
    project_recommend: str
    report_writing: str

    @classmethod
    def from_settings(cls, settings) -> "AgentRegistry":
        return cls(
            normal_qa=settings.agent_normal_qa,
            project_recommend=settings.agent_project_recommend,
            report_writing=settings.agent_report_writing,
        )

    def resolve(self, active_commands: AbstractSet[str]) -> str:
        """根据当前激活的指令选择 Agent，报告指令优先。"""
        if COMMAND_REPORT in active_commands:
            return self.report_writing
        if COMMAND_PROJECT_RETRIEVAL in active_commands:
            return self.project_recommend
        return self.normal_qa

