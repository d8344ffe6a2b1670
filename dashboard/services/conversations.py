"""
Conversation accessor.

Reads the caller's ElevenLabs conversational-AI history with the caller's
own key. The provider list endpoint has no server-side paging, so search
and paging are applied here over the full list.
"""
import math
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session
import structlog

from dashboard.config import get_config
from dashboard.schemas import (
    AudioLocator, ConversationMessage, ConversationPage, ConversationRef, Identity
)
from dashboard.services.credential_store import require_credential
from dashboard.services.elevenlabs import API_KEY_HEADER, ElevenLabsClient

logger = structlog.get_logger()

UNTITLED = 'Untitled Conversation'
DEFAULT_AGENT_PARTICIPANT = 'AI Agent'
DEFAULT_AGENT_SENDER = 'AI Assistant'


def _from_unix(value) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.utcfromtimestamp(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _offset(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _participants(agent_name: Optional[str]) -> List[str]:
    return ['User', agent_name or DEFAULT_AGENT_PARTICIPANT]


def map_conversation_summary(raw: dict) -> ConversationRef:
    """Map one entry of the provider list response."""
    agent_name = raw.get('agent_name')
    return ConversationRef(
        external_id=raw.get('conversation_id', ''),
        title=agent_name or UNTITLED,
        start_time=_from_unix(raw.get('start_time_unix_secs')),
        duration_seconds=int(raw.get('call_duration_secs') or 0),
        participants=_participants(agent_name),
        agent_id=raw.get('agent_id'),
        status=raw.get('status'),
    )


def map_transcript(raw: dict) -> List[ConversationMessage]:
    """
    Map provider transcript entries to ordered messages.

    Entries without a message (tool calls) are dropped. Each message's
    timestamp is the call start plus its `time_in_call_secs` offset.
    """
    metadata = raw.get('metadata') or {}
    start = _from_unix(metadata.get('start_time_unix_secs'))
    agent_sender = raw.get('agent_name') or DEFAULT_AGENT_SENDER

    messages = []
    for index, entry in enumerate(raw.get('transcript') or []):
        text = entry.get('message')
        if text is None:
            continue
        offset = _offset(entry.get('time_in_call_secs'))
        role = entry.get('role') or 'user'
        messages.append(ConversationMessage(
            id=f"msg-{index}-{entry.get('time_in_call_secs')}",
            text=text,
            sender=agent_sender if role == 'agent' else 'User',
            role=role,
            offset_seconds=offset,
            timestamp=start + timedelta(seconds=offset) if start else None,
        ))
    return messages


def map_conversation_detail(raw: dict) -> ConversationRef:
    metadata = raw.get('metadata') or {}
    agent_name = raw.get('agent_name')
    return ConversationRef(
        external_id=raw.get('conversation_id', ''),
        title=agent_name or UNTITLED,
        start_time=_from_unix(metadata.get('start_time_unix_secs')),
        duration_seconds=int(metadata.get('call_duration_secs') or 0),
        participants=_participants(agent_name),
        agent_id=raw.get('agent_id'),
        status=raw.get('status'),
        transcript=map_transcript(raw),
    )


def filter_conversations(conversations: List[ConversationRef], search_text: Optional[str]) -> List[ConversationRef]:
    """Case-insensitive substring match on title or any participant."""
    query = (search_text or '').strip().lower()
    if not query:
        return list(conversations)
    return [
        c for c in conversations
        if query in c.title.lower() or any(query in p.lower() for p in c.participants)
    ]


def paginate(items: list, page: int, page_size: int) -> Tuple[list, int, int]:
    """
    Slice one page out of `items`.

    Returns (page_items, page, total_pages). Out-of-range pages clamp to the
    nearest valid page; an empty list still has one (empty) page.
    """
    total_pages = max(1, math.ceil(len(items) / page_size))
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    return items[start:start + page_size], page, total_pages


async def list_conversations(
    db: Session,
    caller: Identity,
    client: ElevenLabsClient,
    agent_filter: Optional[str] = None,
    search_text: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> ConversationPage:
    """One page of the caller's conversations, newest provider order kept."""
    page_size = page_size or get_config().conversations_page_size
    credential = await require_credential(db, caller, caller.id)

    agent_id = agent_filter or caller.agent_id_filter
    raw = await client.list_conversations(credential.plaintext, agent_id=agent_id)
    conversations = [map_conversation_summary(item) for item in raw]

    matched = filter_conversations(conversations, search_text)
    items, page, total_pages = paginate(matched, page, page_size)

    logger.info("conversations_listed", user_id=caller.id, fetched=len(conversations),
                matched=len(matched), page=page)
    return ConversationPage(
        items=items,
        total_count=len(matched),
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


async def get_conversation(
    db: Session,
    caller: Identity,
    client: ElevenLabsClient,
    external_id: str,
) -> ConversationRef:
    """A single conversation with its transcript."""
    credential = await require_credential(db, caller, caller.id)
    raw = await client.get_conversation(credential.plaintext, external_id)
    conversation = map_conversation_detail(raw)
    if not conversation.external_id:
        conversation.external_id = external_id
    return conversation


async def get_audio_locator(
    db: Session,
    caller: Identity,
    client: ElevenLabsClient,
    external_id: str,
) -> AudioLocator:
    """URL and headers for fetching a conversation's audio. No bytes are fetched."""
    credential = await require_credential(db, caller, caller.id)
    return AudioLocator(
        url=client.audio_url(external_id),
        auth_headers={API_KEY_HEADER: credential.plaintext},
    )


async def download_audio(
    db: Session,
    caller: Identity,
    client: ElevenLabsClient,
    external_id: str,
) -> Tuple[bytes, str]:
    """Audio bytes and media type, proxied so the key stays server-side."""
    credential = await require_credential(db, caller, caller.id)
    content, media_type = await client.get_audio(credential.plaintext, external_id)
    logger.info("conversation_audio_downloaded", user_id=caller.id, conversation_id=external_id,
                size=len(content))
    return content, media_type


async def proxy_audio_locator(
    db: Session,
    caller: Identity,
    proxy_url: str,
    session_token: str,
) -> AudioLocator:
    """
    Locator pointing at this service's audio proxy.

    The caller authorizes with their own session token, so the provider key
    stays server-side. Raises CredentialMissing when no key is stored.
    """
    await require_credential(db, caller, caller.id)
    return AudioLocator(url=proxy_url, auth_headers={"Authorization": f"Bearer {session_token}"})
