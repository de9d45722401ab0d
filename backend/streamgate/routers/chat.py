"""
Chat routes with streaming support.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional, Tuple
import logging

from ..config import settings
from ..database import get_db
from ..exceptions import ConversationBusyError
from ..models import Conversation, Message
from ..schemas.message import ChatRequest, EditMessageRequest, RegenerateRequest
from ..schemas.user import TokenData
from ..services.branch_service import BranchService, ancestor_chain, next_branch_index
from ..services.chat_service import ChatOrchestrator, GenerationPlan
from ..services.context_service import (
    PromptOptions,
    RegenerateDirective,
    build_regenerate_prompt,
    parse_directive,
)
from ..services.conversation_store import ConversationStore
from ..services.workflow_service import plan_deep_research
from ..streaming import events as ev
from ..streaming.events import StreamEvent
from ..streaming.tags import strip_thinking
from ..streaming.wire import SSE_HEADERS
from ..utils.locks import GenerationLocks
from ..utils.security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])


def get_locks(request: Request) -> GenerationLocks:
    return request.app.state.locks


def get_orchestrator(request: Request) -> ChatOrchestrator:
    """Orchestrator wired to the collaborators on the application state."""
    state = request.app.state
    return ChatOrchestrator(
        session_factory=state.session_factory,
        llm_factory=state.llm_factory,
        search_service=state.search_service,
        retrieval_service=state.retrieval_service,
        locks=state.locks,
    )


def select_model(requested: Optional[str], conversation: Conversation, pro_search: bool) -> Tuple[str, List[StreamEvent]]:
    """Pick the model for this turn; search mode moves to the configured thinking model."""
    model_id = requested or conversation.current_model or settings.DEFAULT_MODEL_ID
    if (
        pro_search
        and settings.PRO_SEARCH_MODEL_ID
        and model_id != settings.PRO_SEARCH_MODEL_ID
        and model_id not in settings.THINKING_MODEL_IDS
    ):
        name = settings.PRO_SEARCH_MODEL_NAME or settings.PRO_SEARCH_MODEL_ID
        logger.info("Switching conversation %s from %s to %s for search mode", conversation.id, model_id, name)
        switched = StreamEvent(
            ev.MODEL_SWITCHED,
            {
                "modelId": settings.PRO_SEARCH_MODEL_ID,
                "modelName": name,
                "message": f"Switched to {name} for Pro Search",
            },
        )
        return settings.PRO_SEARCH_MODEL_ID, [switched]
    return model_id, []


def streaming_response(orchestrator: ChatOrchestrator, plan: GenerationPlan) -> StreamingResponse:
    return StreamingResponse(
        orchestrator.stream(plan),
        media_type="text/event-stream",
        headers=SSE_HEADERS
    )


async def get_owned_conversation(store: ConversationStore, conversation_id: int, user: TokenData) -> Conversation:
    conversation = await store.get_conversation(conversation_id, user.user_id)
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )
    return conversation


async def get_target_message(store: ConversationStore, conversation_id: int, message_id: int, role: str) -> Message:
    message = await store.get_message(conversation_id, message_id)
    if not message:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )
    if message.role != role:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only {role} messages can be targeted here"
        )
    return message


def claim_or_409(locks: GenerationLocks, conversation_id: int) -> None:
    try:
        locks.claim(conversation_id)
    except ConversationBusyError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )


@router.post("")
async def send_message(
    chat_request: ChatRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: GenerationLocks = Depends(get_locks),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator)
):
    """Send a chat message and stream the response."""
    store = ConversationStore(db)

    if chat_request.conversation_id:
        conversation = await get_owned_conversation(store, chat_request.conversation_id, current_user)
    else:
        conversation = await store.create_conversation(current_user.user_id)

    claim_or_409(locks, conversation.id)
    try:
        messages = await store.list_messages(conversation.id)
        if chat_request.parent_message_id is not None:
            if not any(m.id == chat_request.parent_message_id for m in messages):
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Parent message not found"
                )
            parent_id = chat_request.parent_message_id
        else:
            parent_id = messages[-1].id if messages else None

        path = ancestor_chain(messages, parent_id)
        last_assistant = next((m for m in reversed(path) if m.role == "assistant"), None)
        step = plan_deep_research(
            conversation,
            chat_request.content,
            chat_request.deep_research,
            last_assistant.content if last_assistant else None
        )
        if step.conversation_updates:
            await store.update_conversation(conversation, **step.conversation_updates)

        attached = [f.model_dump() for f in chat_request.attached_files]
        user_message = await store.add_message(
            conversation_id=conversation.id,
            role="user",
            content=chat_request.content,
            parent_message_id=parent_id,
            branch_index=next_branch_index(messages, "user", parent_id),
            attached_files=attached or None,
            token_count=0
        )
        await store.update_conversation(conversation, message_count=len(messages) + 1)
        await store.commit()

        model_id, prelude = select_model(chat_request.model_id, conversation, chat_request.pro_search)
        plan = GenerationPlan(
            conversation_id=conversation.id,
            user_id=current_user.user_id,
            model_id=model_id,
            user_content=step.user_content,
            parent_message_id=user_message.id,
            branch_index=0,
            context_leaf_id=parent_id,
            user_message_id=user_message.id,
            attached_files=attached,
            options=PromptOptions(
                tier=current_user.tier,
                project_instructions=conversation.instructions,
                pro_search=chat_request.pro_search,
                force_artifact=chat_request.force_artifact or step.force_artifact,
                custom_additions=step.custom_additions
            ),
            prelude=prelude,
            title_source=chat_request.content
        )
    except BaseException:
        locks.release(conversation.id)
        raise

    return streaming_response(orchestrator, plan)


@router.post("/conversations/{conversation_id}/regenerate/{message_id}")
async def regenerate_message(
    conversation_id: int,
    message_id: int,
    regenerate_request: Optional[RegenerateRequest] = None,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: GenerationLocks = Depends(get_locks),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator)
):
    """Regenerate an assistant message as a new sibling, pruning everything below it."""
    regenerate_request = regenerate_request or RegenerateRequest()
    store = ConversationStore(db)
    conversation = await get_owned_conversation(store, conversation_id, current_user)
    target = await get_target_message(store, conversation_id, message_id, "assistant")

    user_message = None
    if target.parent_message_id is not None:
        user_message = await store.get_message(conversation_id, target.parent_message_id)
    if user_message is None or user_message.role != "user":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The message has no user prompt to regenerate from"
        )

    claim_or_409(locks, conversation_id)
    try:
        pruned = await BranchService(store).prune_for_regenerate(conversation_id, target)
        await store.update_conversation(
            conversation,
            message_count=await store.count_messages(conversation_id)
        )
        await store.commit()

        directive = parse_directive(regenerate_request.directive)
        pro_search = regenerate_request.pro_search or directive is RegenerateDirective.SEARCH_WEB
        model_id, prelude = select_model(regenerate_request.model_id, conversation, pro_search)
        if pruned.removed_user_ids:
            prelude.insert(0, StreamEvent(
                ev.PRUNED_DESCENDANTS,
                {"parentMessageId": user_message.id, "removedUserMessageIds": pruned.removed_user_ids}
            ))

        plan = GenerationPlan(
            conversation_id=conversation_id,
            user_id=current_user.user_id,
            model_id=model_id,
            user_content=user_message.content or "",
            parent_message_id=user_message.id,
            branch_index=pruned.branch_index,
            context_leaf_id=user_message.parent_message_id,
            attached_files=user_message.attached_files or [],
            options=PromptOptions(
                tier=current_user.tier,
                project_instructions=conversation.instructions,
                pro_search=pro_search,
                directive=directive,
                custom_additions=build_regenerate_prompt(strip_thinking(target.content or ""), directive)
            ),
            prelude=prelude,
            include_branch_metadata=True
        )
    except BaseException:
        locks.release(conversation_id)
        raise

    return streaming_response(orchestrator, plan)


@router.post("/conversations/{conversation_id}/edit-message/{message_id}")
async def edit_message(
    conversation_id: int,
    message_id: int,
    edit_request: EditMessageRequest,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: GenerationLocks = Depends(get_locks),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator)
):
    """Edit a user message by branching beside it, then stream the new answer."""
    store = ConversationStore(db)
    conversation = await get_owned_conversation(store, conversation_id, current_user)
    target = await get_target_message(store, conversation_id, message_id, "user")

    claim_or_409(locks, conversation_id)
    try:
        attached = [f.model_dump() for f in edit_request.attached_files]
        new_message = await BranchService(store).create_user_branch(
            conversation_id, target, edit_request.content, attached or None
        )
        await store.update_conversation(
            conversation,
            message_count=await store.count_messages(conversation_id)
        )
        await store.commit()

        model_id, prelude = select_model(edit_request.model_id, conversation, edit_request.pro_search)
        prelude.insert(0, StreamEvent(
            ev.USER_BRANCH_CREATED,
            {
                "userMessage": {
                    "role": "user",
                    "content": new_message.content,
                    "messageId": new_message.id,
                    "parentMessageId": new_message.parent_message_id,
                    "branchIndex": new_message.branch_index,
                },
                "branchMetadata": {
                    "currentBranchIndex": new_message.branch_index,
                    "totalBranches": new_message.branch_index + 1,
                    "parentMessageId": new_message.parent_message_id,
                },
            }
        ))

        plan = GenerationPlan(
            conversation_id=conversation_id,
            user_id=current_user.user_id,
            model_id=model_id,
            user_content=edit_request.content,
            parent_message_id=new_message.id,
            branch_index=0,
            context_leaf_id=target.parent_message_id,
            user_message_id=new_message.id,
            attached_files=attached,
            options=PromptOptions(
                tier=current_user.tier,
                project_instructions=conversation.instructions,
                pro_search=edit_request.pro_search
            ),
            prelude=prelude,
            include_branch_metadata=True,
            branch_metadata_message_id=new_message.id
        )
    except BaseException:
        locks.release(conversation_id)
        raise

    return streaming_response(orchestrator, plan)
