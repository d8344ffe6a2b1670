"""
ElevenLabs API key routes.

Keys are write-only over HTTP: reads return the masked form.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from dashboard.auth.identity import get_client_ip, get_current_identity
from dashboard.database import get_db
from dashboard.schemas import CredentialInfo, Identity
from dashboard.services import credential_store
from shared.errors import CredentialMissing

router = APIRouter(prefix="/api/api-keys", tags=["api-keys"])


class ApiKeyUpdate(BaseModel):
    api_key: str = Field(..., min_length=1)


async def _describe_or_404(db: Session, current: Identity, owner_id: str) -> CredentialInfo:
    info = await credential_store.describe_credential(db, current, owner_id)
    if info is None:
        raise CredentialMissing(owner_id)
    return info


@router.get("/me", response_model=CredentialInfo)
async def get_my_key(
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await _describe_or_404(db, current, current.id)


@router.put("/me", response_model=CredentialInfo)
async def set_my_key(
    body: ApiKeyUpdate,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    return await credential_store.set_credential(db, current, current.id, body.api_key)


@router.get("/{user_id}", response_model=CredentialInfo)
async def get_user_key(
    user_id: str,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    """Masked key of another user (admin only)."""
    return await _describe_or_404(db, current, user_id)


@router.put("/{user_id}", response_model=CredentialInfo)
async def set_user_key(
    user_id: str,
    body: ApiKeyUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
):
    """Replace another user's key (admin only, audited)."""
    return await credential_store.set_credential(
        db, current, user_id, body.api_key, ip_address=get_client_ip(request)
    )
