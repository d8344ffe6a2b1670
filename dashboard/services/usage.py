"""
Usage aggregator.

Turns the ElevenLabs subscription counters (characters used and the
character limit) into minutes and credits, stores the latest snapshot per
user and keeps a capped, chronological history of snapshots.
"""
import math
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session
import structlog

from dashboard.auth.permissions import require_admin, require_self_or_admin
from dashboard.config import get_config
from dashboard.models import UsageData, User
from dashboard.schemas import Identity, UsageRecord, UsageUpdate
from dashboard.services.audit import record_admin_action
from dashboard.services.credential_store import require_credential
from dashboard.services.elevenlabs import ElevenLabsClient
from shared.errors import NotFoundError, ProviderError

logger = structlog.get_logger()


def compute_usage(
    character_count: int,
    character_limit: int,
    chars_per_minute: Optional[int] = None,
    minutes_per_credit: Optional[int] = None,
) -> Tuple[float, float, int]:
    """
    Convert provider character counters to (total_minutes_used,
    minutes_remaining, credits_left).

    Example:
        >>> compute_usage(5000, 10000, 1000, 10)
        (5.0, 5.0, 0)
    """
    config = get_config()
    cpm = chars_per_minute or config.chars_per_minute
    per_credit = minutes_per_credit or config.minutes_per_credit

    total_minutes_used = character_count / cpm
    minutes_remaining = (character_limit - character_count) / cpm
    credits_left = math.floor(minutes_remaining / per_credit)
    return total_minutes_used, minutes_remaining, credits_left


def append_history(history: List[dict], entry: dict, limit: Optional[int] = None) -> List[dict]:
    """Return a new history list with `entry` appended, oldest entries dropped past `limit`."""
    limit = limit or get_config().usage_history_limit
    updated = list(history or []) + [entry]
    return updated[-limit:]


def create_usage_record(db: Session, owner_id: str) -> UsageData:
    """Insert an empty usage record (no commit)."""
    record = UsageData(
        owner_id=owner_id,
        total_minutes_used=0.0,
        minutes_remaining=0.0,
        credits_left=0,
        history=[],
    )
    db.add(record)
    return record


def _parse_subscription(info: dict) -> Tuple[int, int]:
    subscription = info.get("subscription") if isinstance(info, dict) else None
    try:
        return int(subscription["character_count"]), int(subscription["character_limit"])
    except (TypeError, KeyError, ValueError):
        logger.error("provider_usage_response_malformed")
        raise ProviderError(200, "Unexpected usage response from ElevenLabs",
                            detail="subscription.character_count/character_limit missing")


async def _refresh(db: Session, caller: Identity, owner_id: str, client: ElevenLabsClient) -> UsageRecord:
    credential = await require_credential(db, caller, owner_id)
    info = await client.get_user_info(credential.plaintext)
    character_count, character_limit = _parse_subscription(info)

    total, remaining, credits = compute_usage(character_count, character_limit)
    now = datetime.utcnow()

    record = db.get(UsageData, owner_id)
    if record is None:
        record = create_usage_record(db, owner_id)

    record.total_minutes_used = total
    record.minutes_remaining = remaining
    record.credits_left = credits
    record.last_updated = now
    # Reassign rather than mutate so the JSON column is flagged dirty
    record.history = append_history(record.history, {
        'date': now.isoformat(),
        'minutes_used': total,
        'credits_used': credits,
    })
    db.commit()

    logger.info("usage_refreshed", owner_id=owner_id, requested_by=caller.id,
                minutes_remaining=remaining, credits_left=credits,
                history_length=len(record.history))
    return UsageRecord.model_validate(record)


async def fetch_for_self(db: Session, caller: Identity, client: ElevenLabsClient) -> UsageRecord:
    """Refresh the caller's own usage from ElevenLabs."""
    return await _refresh(db, caller, caller.id, client)


async def fetch_for_user(db: Session, caller: Identity, target_id: str, client: ElevenLabsClient) -> UsageRecord:
    """Refresh another user's usage with that user's key (admin only)."""
    require_admin(caller)
    if db.get(User, target_id) is None:
        raise NotFoundError("User not found")
    return await _refresh(db, caller, target_id, client)


async def fetch_all_users(db: Session, caller: Identity) -> List[UsageRecord]:
    """
    Stored usage for every active user (admin only).

    Reads persisted records only; ElevenLabs is not called, so an admin
    view cannot fan out into one provider request per user.
    """
    require_admin(caller)

    rows = (
        db.query(UsageData)
        .join(User, User.id == UsageData.owner_id)
        .filter(User.is_active.is_(True))
        .order_by(User.email)
        .all()
    )
    return [UsageRecord.model_validate(row) for row in rows]


async def get_stored_usage(db: Session, caller: Identity, owner_id: str) -> UsageRecord:
    """Last stored snapshot for one user, without calling ElevenLabs."""
    require_self_or_admin(caller, owner_id)

    record = db.get(UsageData, owner_id)
    if record is None:
        raise NotFoundError("No usage data recorded for this user")
    return UsageRecord.model_validate(record)


async def update_usage(
    db: Session,
    caller: Identity,
    owner_id: str,
    fields: UsageUpdate,
    ip_address: Optional[str] = None,
) -> UsageRecord:
    """
    Overwrite stored usage figures for one user (admin only).

    Only the supplied fields change; history is left alone. A user without
    a usage record gets one.
    """
    require_admin(caller)
    if db.get(User, owner_id) is None:
        raise NotFoundError("User not found")

    changes = {k: v for k, v in fields.model_dump(exclude_unset=True).items() if v is not None}

    record = db.get(UsageData, owner_id)
    if record is None:
        record = create_usage_record(db, owner_id)
    for name, value in changes.items():
        setattr(record, name, value)
    record.last_updated = datetime.utcnow()
    db.commit()

    record_admin_action(
        db, caller.id, 'update_usage', owner_id,
        details={'updated_fields': sorted(changes), **changes},
        ip_address=ip_address,
    )

    logger.info("usage_updated", owner_id=owner_id, updated_fields=sorted(changes), modified_by=caller.id)
    return UsageRecord.model_validate(record)
