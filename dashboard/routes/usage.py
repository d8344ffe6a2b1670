"""
Usage API routes.

GET endpoints return stored snapshots; the refresh endpoints call
ElevenLabs and append a history entry. PUT lets an admin correct the
stored figures.
"""
from typing import List
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from dashboard.auth.identity import get_client_ip, get_current_identity
from dashboard.database import get_db
from dashboard.schemas import Identity, UsageRecord, UsageUpdate
from dashboard.services import usage
from dashboard.services.elevenlabs import ElevenLabsClient, get_elevenlabs_client

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("", response_model=List[UsageRecord])
async def list_all_usage(
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    """Stored usage for all active users (admin only)."""
    return await usage.fetch_all_users(db, current)


@router.get("/me", response_model=UsageRecord)
async def get_my_usage(
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await usage.get_stored_usage(db, current, current.id)


@router.post("/me/refresh", response_model=UsageRecord)
async def refresh_my_usage(
    db: Session = Depends(get_db),
    client: ElevenLabsClient = Depends(get_elevenlabs_client),
    current: Identity = Depends(get_current_identity),
):
    return await usage.fetch_for_self(db, current, client)


@router.get("/{user_id}", response_model=UsageRecord)
async def get_user_usage(
    user_id: str,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await usage.get_stored_usage(db, current, user_id)


@router.post("/{user_id}/refresh", response_model=UsageRecord)
async def refresh_user_usage(
    user_id: str,
    db: Session = Depends(get_db),
    client: ElevenLabsClient = Depends(get_elevenlabs_client),
    current: Identity = Depends(get_current_identity),
):
    """Refresh another user's usage with their stored key (admin only)."""
    return await usage.fetch_for_user(db, current, user_id, client)


@router.put("/{user_id}", response_model=UsageRecord)
async def update_user_usage(
    user_id: str,
    body: UsageUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    """Correct a user's stored minutes or credits (admin only)."""
    return await usage.update_usage(db, current, user_id, body, ip_address=get_client_ip(request))
