"""领域层模型与协议。

包含：
- models: ConversationTurn / ChatMessage / ChatRequest / ChatResponse 等统一模型。
- conversation: 已保存会话的模型及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
