"""
Artifact routes. Edits never overwrite: each one is stored as a new version.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import Artifact
from ..schemas.artifact import ArtifactResponse, ArtifactUpdate, ArtifactVersionsResponse
from ..schemas.user import TokenData
from ..services.conversation_store import ConversationStore
from ..utils.security import get_current_user


router = APIRouter(prefix="/api/artifacts", tags=["Artifacts"])


async def owned_artifact(store: ConversationStore, artifact_id: int, user: TokenData) -> Artifact:
    artifact = await store.get_artifact(artifact_id, user.user_id)
    if not artifact:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Artifact not found"
        )
    return artifact


@router.get("/{artifact_id}", response_model=ArtifactResponse)
async def get_artifact(
    artifact_id: int,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await owned_artifact(ConversationStore(db), artifact_id, current_user)


@router.get("/{artifact_id}/versions", response_model=ArtifactVersionsResponse)
async def list_artifact_versions(
    artifact_id: int,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The whole version chain the artifact belongs to, oldest first."""
    store = ConversationStore(db)
    artifact = await owned_artifact(store, artifact_id, current_user)
    versions = await store.artifact_versions(artifact)
    return ArtifactVersionsResponse(
        artifact_id=artifact.id,
        versions=[ArtifactResponse.model_validate(v) for v in versions]
    )


@router.patch("/{artifact_id}", response_model=ArtifactResponse)
async def update_artifact(
    artifact_id: int,
    updates: ArtifactUpdate,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Store an edited copy as the next version."""
    store = ConversationStore(db)
    artifact = await owned_artifact(store, artifact_id, current_user)

    new_version = await store.add_artifact(
        conversation_id=artifact.conversation_id,
        message_id=artifact.message_id,
        user_id=artifact.user_id,
        type=artifact.type,
        title=updates.title or artifact.title,
        language=updates.language if updates.language is not None else artifact.language,
        content=updates.content,
        version=artifact.version + 1,
        parent_artifact_id=artifact.id,
        artifact_metadata=artifact.artifact_metadata
    )
    await store.commit()
    await db.refresh(new_version)
    return new_version


@router.delete("/{artifact_id}")
async def delete_artifact(
    artifact_id: int,
    current_user: TokenData = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    store = ConversationStore(db)
    await owned_artifact(store, artifact_id, current_user)
    await store.delete_artifact(artifact_id)
    await store.commit()
    return {"message": "Artifact deleted"}
