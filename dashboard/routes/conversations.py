"""
Conversation API routes.

Lists, transcripts and audio for the caller's ElevenLabs agent
conversations.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.responses import Response
from sqlalchemy.orm import Session

from dashboard.auth.identity import bearer_scheme, get_current_identity
from dashboard.database import get_db
from dashboard.schemas import AudioLocator, ConversationPage, ConversationRef, Identity
from dashboard.services import conversations
from dashboard.services.elevenlabs import ElevenLabsClient, get_elevenlabs_client

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("", response_model=ConversationPage)
async def list_conversations(
    search: Optional[str] = None,
    agent_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_db),
    client: ElevenLabsClient = Depends(get_elevenlabs_client),
    current: Identity = Depends(get_current_identity),
):
    return await conversations.list_conversations(
        db, current, client,
        agent_filter=agent_id,
        search_text=search,
        page=page,
        page_size=page_size,
    )


@router.get("/{conversation_id}", response_model=ConversationRef)
async def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    client: ElevenLabsClient = Depends(get_elevenlabs_client),
    current: Identity = Depends(get_current_identity),
):
    return await conversations.get_conversation(db, current, client, conversation_id)


@router.get("/{conversation_id}/audio-locator", response_model=AudioLocator)
async def get_audio_locator(
    conversation_id: str,
    request: Request,
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    current: Identity = Depends(get_current_identity),
):
    """
    URL and headers a client can use to stream the audio.

    The URL is this service's `/audio` proxy; the provider key is never
    part of the response.
    """
    proxy_url = str(request.url_for("download_audio", conversation_id=conversation_id))
    return await conversations.proxy_audio_locator(db, current, proxy_url, credentials.credentials)


@router.get("/{conversation_id}/audio")
async def download_audio(
    conversation_id: str,
    db: Session = Depends(get_db),
    client: ElevenLabsClient = Depends(get_elevenlabs_client),
    current: Identity = Depends(get_current_identity),
):
    content, media_type = await conversations.download_audio(db, current, client, conversation_id)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="conversation-{conversation_id}.mp3"'},
    )
