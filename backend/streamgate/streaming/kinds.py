"""
Closed sets of artifact kinds and tool names understood by the engine.
"""

from enum import Enum
from typing import Optional


class ArtifactType(str, Enum):
    HTML = "html"
    CODE = "code"
    SVG = "svg"
    MARKDOWN = "markdown"
    REACT = "react"
    VUE = "vue"
    JSON = "json"
    CSV = "csv"
    MERMAID = "mermaid"
    PRESENTATION = "presentation"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ArtifactType"]:
        """Return the matching member, or None for unknown kinds."""
        if not isinstance(value, str) or not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class ToolName(str, Enum):
    SEARCH_WEB = "search_web"
    CREATE_ARTIFACT = "create_artifact"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ToolName"]:
        try:
            return cls(value)
        except ValueError:
            return None
