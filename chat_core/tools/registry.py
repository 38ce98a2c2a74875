"""工具目录。

界面侧可选的工具面板（代码执行、图像生成、UI 生成等）在这里登记元数据。
这些工具目前只是占位，目录只负责展示与查询，不负责执行。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple

ToolCategory = Literal["code", "image", "ui", "collaboration", "analysis"]


@dataclass(frozen=True)
class ToolDescriptor:
    """一个可在界面中启用的工具。"""

    id: str
    name: str
    description: str
    category: ToolCategory
    enabled: bool = True
    requires_api_key: bool = False
    api_key_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "enabled": self.enabled,
            "requiresApiKey": self.requires_api_key,
            "apiKeyName": self.api_key_name,
        }


AVAILABLE_TOOLS: Tuple[ToolDescriptor, ...] = (
    ToolDescriptor(
        id="code-execution",
        name="Code Execution",
        description="Execute Python, JavaScript, and other code safely in a sandboxed environment",
        category="code",
    ),
    ToolDescriptor(
        id="image-generation",
        name="Image Generation",
        description="Generate images using DALL-E, Stable Diffusion, and other AI models",
        category="image",
        requires_api_key=True,
        api_key_name="OPENAI_API_KEY",
    ),
    ToolDescriptor(
        id="ui-generation",
        name="UI Generation",
        description="Generate React components, HTML pages, and UI elements from descriptions",
        category="ui",
    ),
    ToolDescriptor(
        id="multi-agent-collaboration",
        name="Multi-Agent Collaboration",
        description="Coordinate multiple AI models to work together on complex tasks",
        category="collaboration",
    ),
    ToolDescriptor(
        id="data-analysis",
        name="Data Analysis",
        description="Analyze CSV files, create visualizations, and generate insights",
        category="analysis",
    ),
)


def get_tool_by_id(tool_id: str) -> Optional[ToolDescriptor]:
    return next((t for t in AVAILABLE_TOOLS if t.id == tool_id), None)


def get_tools_by_category(category: str) -> List[ToolDescriptor]:
    return [t for t in AVAILABLE_TOOLS if t.category == category]


def get_enabled_tools() -> List[ToolDescriptor]:
    return [t for t in AVAILABLE_TOOLS if t.enabled]
