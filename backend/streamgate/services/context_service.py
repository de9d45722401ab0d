"""
Builds the message list sent to the model for one turn.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..config import (
    settings,
    ARTIFACT_INSTRUCTIONS,
    FORCE_ARTIFACT_INSTRUCTIONS,
    PRO_SEARCH_INSTRUCTIONS,
)
from ..models import Message
from ..streaming.tags import strip_thinking


class RegenerateDirective(str, Enum):
    TRY_AGAIN = "try_again"
    ADD_DETAILS = "add_details"
    MORE_CONCISE = "more_concise"
    SEARCH_WEB = "search_web"
    ANSWER_IN_CHAT = "answer_in_chat"


_REJECTED = "The user rejected your previous answer."

_DIRECTIVE_TEXT = {
    RegenerateDirective.TRY_AGAIN: f"{_REJECTED} Please provide a different response.",
    RegenerateDirective.ADD_DETAILS: f"{_REJECTED} Please revise it with more detail and depth.",
    RegenerateDirective.MORE_CONCISE: f"{_REJECTED} Please rewrite it to be more concise.",
    RegenerateDirective.SEARCH_WEB: (
        f"{_REJECTED} You MUST perform a mandatory web search before responding and incorporate the findings."
        "\n\nYou MUST use the search_web tool to find current information before responding."
    ),
    RegenerateDirective.ANSWER_IN_CHAT: (
        f"{_REJECTED} Answer directly in the chat this time instead of creating an artifact."
    ),
}


def parse_directive(value: Optional[str]) -> Optional[RegenerateDirective]:
    if not value:
        return None
    try:
        return RegenerateDirective(value)
    except ValueError:
        return RegenerateDirective.TRY_AGAIN


def build_regenerate_prompt(rejected_response: str, directive: Optional[RegenerateDirective]) -> str:
    """Show the model its rejected answer and what the user wants changed."""
    text = _DIRECTIVE_TEXT[directive or RegenerateDirective.TRY_AGAIN]
    return f"\n\n[Previous Response (Rejected by User)]:\n{rejected_response}\n\n{text}"


def inline_attachments(content: str, attached_files: Optional[Sequence[Dict[str, Any]]]) -> str:
    """Append attached file text as labelled blocks."""
    if not attached_files:
        return content
    blocks = []
    for attachment in attached_files:
        name = attachment.get("name") or "attachment"
        body = attachment.get("content") or ""
        blocks.append(f"[File: {name}]\n{body}")
    return (content + "\n\n" if content else "") + "\n\n".join(blocks)


@dataclass
class PromptOptions:
    tier: Optional[str] = None
    project_instructions: Optional[str] = None
    retrieval_context: str = ""
    pro_search: bool = False
    force_artifact: bool = False
    directive: Optional[RegenerateDirective] = None
    custom_additions: str = ""


class ContextAssembler:
    """System prompt plus a trailing window of the active branch plus the new turn."""

    def __init__(
        self,
        window_size: Optional[int] = None,
        master_prompt: Optional[str] = None,
        tier_instructions: Optional[Dict[str, str]] = None
    ):
        self.window_size = settings.CONTEXT_WINDOW_SIZE if window_size is None else window_size
        self.master_prompt = master_prompt or settings.MASTER_SYSTEM_PROMPT
        self.tier_instructions = settings.TIER_INSTRUCTIONS if tier_instructions is None else tier_instructions

    def system_prompt(self, options: PromptOptions) -> str:
        parts = [self.master_prompt]

        skip_artifacts = options.directive is RegenerateDirective.ANSWER_IN_CHAT and not options.force_artifact
        if not skip_artifacts:
            parts.append(ARTIFACT_INSTRUCTIONS)
        if options.force_artifact:
            parts.append(FORCE_ARTIFACT_INSTRUCTIONS)

        tier_text = self.tier_instructions.get(options.tier) if options.tier else None
        if tier_text:
            parts.append(f"\n\n{tier_text}")
        if options.project_instructions:
            parts.append(f"\n\n## PROJECT INSTRUCTIONS\n\n{options.project_instructions}")
        if options.retrieval_context:
            parts.append(options.retrieval_context)
        if options.pro_search:
            parts.append(PRO_SEARCH_INSTRUCTIONS)
        if options.custom_additions:
            parts.append(options.custom_additions)
        return "".join(parts)

    def history(self, path: Sequence[Message]) -> List[Dict[str, str]]:
        """Role/content pairs for the last window_size messages on the path."""
        turns = [m for m in path if m.role in ("user", "assistant")]
        if self.window_size <= 0:
            return []
        window = turns[-self.window_size:]

        history = []
        for message in window:
            content = message.content or ""
            if message.role == "assistant":
                content = strip_thinking(content)
            else:
                content = inline_attachments(content, message.attached_files)
            history.append({"role": message.role, "content": content})
        return history

    def build(
        self,
        options: PromptOptions,
        path: Sequence[Message],
        user_content: str,
        attached_files: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.system_prompt(options)}]
        messages.extend(self.history(path))
        messages.append({"role": "user", "content": inline_attachments(user_content, attached_files)})
        return messages
