"""
Exception types raised by the generation engine and its collaborators.
"""


class StreamGateError(Exception):
    """Base exception for StreamGate errors."""

    pass


class ProviderError(StreamGateError):
    """Raised when the model provider cannot be reached or fails mid-stream."""

    def __init__(self, message: str, model_id: str = ""):
        self.model_id = model_id
        super().__init__(message)


class ProviderTimeoutError(ProviderError):
    """Raised when a model call exceeds the configured hard ceiling."""

    def __init__(self, timeout_seconds: float, model_id: str = ""):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Model call timed out after {timeout_seconds:g}s", model_id)


class ToolExecutionError(StreamGateError):
    """Raised when a tool invocation cannot be completed."""

    def __init__(self, tool: str, message: str):
        self.tool = tool
        super().__init__(f"{tool}: {message}")


class SearchError(ToolExecutionError):
    """Raised when the search collaborator fails."""

    def __init__(self, message: str):
        super().__init__("search_web", message)


class ConversationBusyError(StreamGateError):
    """Raised when a conversation already has a generation in flight."""

    def __init__(self, conversation_id: int):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} already has a response in progress")
