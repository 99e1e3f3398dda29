"""Uniform tool result envelope and its MCP text rendering."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from mcp.types import TextContent


@dataclass
class ToolResult:
    """Human-readable summary plus optional structured result."""

    summary: str
    result: Any = None

    def to_content(self) -> List[TextContent]:
        content = [TextContent(type="text", text=self.summary)]
        if self.result is not None:
            payload = json.dumps(self.result, indent=2, default=str)
            content.append(TextContent(type="text", text=f"\n\nResult:\n{payload}"))
        return content

    def to_dict(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {"summary": self.summary}
        if self.result is not None:
            envelope["result"] = self.result
        return envelope
