"""
Streaming engine: marker scanning, channel routing, tool calls and wire framing.
"""

from .events import ArtifactDraft, EventLog, StreamEvent
from .kinds import ArtifactType, ToolName
from .multiplexer import ChannelMultiplexer, Mode

__all__ = [
    "ArtifactDraft",
    "ArtifactType",
    "ChannelMultiplexer",
    "EventLog",
    "Mode",
    "StreamEvent",
    "ToolName",
]
