"""
Two-phase deep research workflow.

Phase one asks clarifying questions and remembers the original request.
Phase two folds the questions and the user's answers back into one prompt
and requires the result as artifacts.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..models import Conversation
from ..streaming.tags import strip_thinking

QUESTIONS_PHASE = "questions"

CLARIFYING_QUESTIONS_PROMPT = """

You are starting a Deep Research session.

STEP 1: Use the search_web tool for 2-3 exploratory searches on the user's query (num_results 20).
STEP 2: Based on what you found, ask 3-5 specific clarifying questions so the research can be personalised.
Format the questions clearly. Do not write the report yet.
"""

DEEP_RESEARCH_PROMPT = """

You are in Deep Research mode with artifact creation enabled.

1. Create a markdown artifact titled "Research Plan" listing targeted search queries grouped by theme.
2. Run the searches with search_web and reflect on gaps inside <think> tags between batches.
3. Create a final markdown artifact titled "Research Report" with an executive summary, key findings,
   detailed analysis and numbered citations [1][2][3]. Every claim must be cited.
"""


@dataclass
class WorkflowStep:
    user_content: str
    custom_additions: str = ""
    force_artifact: bool = False
    conversation_updates: Dict[str, Any] = field(default_factory=dict)


def plan_deep_research(
    conversation: Conversation,
    content: str,
    requested: bool,
    last_assistant_content: Optional[str] = None,
) -> WorkflowStep:
    if requested and not conversation.deep_research_active:
        return WorkflowStep(
            user_content=content,
            custom_additions=CLARIFYING_QUESTIONS_PROMPT,
            conversation_updates={
                "deep_research_active": True,
                "deep_research_phase": QUESTIONS_PHASE,
                "deep_research_data": {"originalMessage": content},
            },
        )

    if conversation.deep_research_active and conversation.deep_research_phase == QUESTIONS_PHASE:
        data = conversation.deep_research_data or {}
        questions = strip_thinking(last_assistant_content or "")
        combined = f"{data.get('originalMessage', '')}\n\nAI Questions:\n{questions}\n\nUser Answers:\n{content}"
        return WorkflowStep(
            user_content=combined,
            custom_additions=DEEP_RESEARCH_PROMPT,
            force_artifact=True,
            conversation_updates={
                "deep_research_active": False,
                "deep_research_phase": None,
                "deep_research_data": None,
            },
        )

    return WorkflowStep(user_content=content)
