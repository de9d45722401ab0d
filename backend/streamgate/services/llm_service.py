"""
LLM service for streaming completions from an OpenAI-compatible API.
"""

from openai import AsyncOpenAI, APIError, APITimeoutError
from dataclasses import dataclass
from typing import AsyncGenerator, List, Optional, Dict, Any, Union
import logging
import math

from ..config import settings
from ..exceptions import ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallDelta:
    """Fragment of a tool invocation; fragments with the same index belong together."""

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


@dataclass
class StreamEnd:
    token_count: int


ProviderEvent = Union[TextDelta, ToolCallDelta, StreamEnd]


def estimate_tokens(text: str) -> int:
    """Rough token count used when the provider reports no usage."""
    return math.ceil(len(text) / 4) if text else 0


class LLMService:
    """Streaming chat completions with tool-call support."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        model_id: Optional[str] = None,
        api_key: Optional[str] = None
    ):
        self.api_base = api_base or settings.DEFAULT_API_BASE
        self.model_id = model_id or settings.DEFAULT_MODEL_ID
        self.api_key = api_key or settings.DEFAULT_API_KEY

        self.client = AsyncOpenAI(
            base_url=self.api_base,
            api_key=self.api_key,
            timeout=settings.MODEL_TIMEOUT_SECONDS
        )

    async def stream_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> AsyncGenerator[ProviderEvent, None]:
        """Yield text and tool-call deltas, then a terminal token count."""
        params: Dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "temperature": settings.TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or settings.MAX_TOKENS,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"

        try:
            stream = await self.client.chat.completions.create(**params)
        except APITimeoutError as e:
            raise ProviderTimeoutError(settings.MODEL_TIMEOUT_SECONDS, self.model_id) from e
        except APIError as e:
            raise ProviderError(f"Model provider request failed: {e}", self.model_id) from e

        produced = []
        usage_tokens = None
        try:
            async for chunk in stream:
                if chunk.usage is not None:
                    usage_tokens = chunk.usage.completion_tokens
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    produced.append(delta.content)
                    yield TextDelta(delta.content)
                for call in delta.tool_calls or []:
                    yield ToolCallDelta(
                        index=call.index,
                        id=call.id,
                        name=call.function.name if call.function else None,
                        arguments=(call.function.arguments or "") if call.function else "",
                    )
        except APITimeoutError as e:
            raise ProviderTimeoutError(settings.MODEL_TIMEOUT_SECONDS, self.model_id) from e
        except APIError as e:
            raise ProviderError(f"Model stream failed: {e}", self.model_id) from e
        finally:
            await stream.close()

        if usage_tokens is None:
            usage_tokens = estimate_tokens("".join(produced))
        yield StreamEnd(usage_tokens)


def get_llm_service(model_id: Optional[str] = None) -> LLMService:
    """Default provider factory stored on the application state."""
    return LLMService(model_id=model_id)
