"""领域层模型与协议。

包含：
- models: 会话状态、上传文件、流事件、代码块与 Artifact 等数据结构。
- session: 按 Agent 分区的 SessionStore。
- exceptions: 业务异常类型定义。
"""
