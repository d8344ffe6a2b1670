"""
Database models for the Voice Usage Dashboard.

One table per stored collection:
    users              directory profile and role for each login
    api_keys           encrypted ElevenLabs API key, one per user
    usage_data         last computed usage snapshot plus capped history
    admin_logs         append-only log of privileged mutations
    identity_accounts  login records owned by the local identity backend

DEV_MODE Compatibility:
    When DEV_MODE=true, SQLite is used instead of PostgreSQL, so JSON is
    used in place of JSONB.
"""
import os
from datetime import datetime

from sqlalchemy import (
    Column, String, Boolean, DateTime, Text, Float, Integer, ForeignKey, Index, JSON
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"

if DEV_MODE:
    JSONB = JSON
else:
    from sqlalchemy.dialects.postgresql import JSONB

Base = declarative_base()

ROLE_USER = 'user'
ROLE_ADMIN = 'admin'


class User(Base):
    """Directory record for one login identity."""
    __tablename__ = 'users'

    id = Column(String(64), primary_key=True)  # issued by the identity backend
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=False, default='')
    phone_number = Column(String(64), nullable=False, default='')
    business_name = Column(String(255), nullable=False, default='')
    role = Column(String(16), nullable=False, default=ROLE_USER)
    is_active = Column(Boolean, nullable=False, default=True)
    agent_id_filter = Column(String(255))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_by = Column(String(64))
    last_login = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))
    updated_by = Column(String(64))
    deactivated_at = Column(DateTime(timezone=True))
    deactivated_by = Column(String(64))

    # Relationships
    api_key = relationship('ApiKey', back_populates='owner', uselist=False,
                           foreign_keys='ApiKey.owner_id')
    usage = relationship('UsageData', back_populates='owner', uselist=False)

    __table_args__ = (
        Index('idx_users_role', 'role'),
        Index('idx_users_is_active', 'is_active'),
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


class ApiKey(Base):
    """
    Encrypted ElevenLabs API key for one user.

    Only Fernet ciphertext is stored; the plaintext never reaches the
    database.
    """
    __tablename__ = 'api_keys'

    owner_id = Column(String(64), ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    ciphertext = Column(Text, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False)
    updated_by = Column(String(64), nullable=False)

    owner = relationship('User', back_populates='api_key', foreign_keys=[owner_id])

    def __repr__(self):
        return f"<ApiKey(owner_id={self.owner_id}, last_updated={self.last_updated})>"


class UsageData(Base):
    """Usage snapshot for one user with a capped, chronological history."""
    __tablename__ = 'usage_data'

    owner_id = Column(String(64), ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    total_minutes_used = Column(Float, nullable=False, default=0.0)
    minutes_remaining = Column(Float, nullable=False, default=0.0)
    credits_left = Column(Integer, nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True))
    history = Column(JSONB, nullable=False, default=list)  # [{date, minutes_used, credits_used}]

    owner = relationship('User', back_populates='usage')

    def __repr__(self):
        return f"<UsageData(owner_id={self.owner_id}, minutes_remaining={self.minutes_remaining})>"


class AdminLog(Base):
    """
    Append-only record of a privileged mutation.

    Primary key follows the '{timestamp_ms}-{admin_id}' convention.
    """
    __tablename__ = 'admin_logs'

    id = Column(String(128), primary_key=True)
    admin_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    target_user_id = Column(String(64))
    timestamp = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    details = Column(JSONB)
    ip_address = Column(String(45))

    __table_args__ = (
        Index('idx_admin_logs_timestamp', 'timestamp'),
        Index('idx_admin_logs_admin_id', 'admin_id'),
        Index('idx_admin_logs_action', 'action'),
        Index('idx_admin_logs_target_user_id', 'target_user_id'),
    )


class IdentityAccount(Base):
    """
    Login record owned by the local identity backend.

    Passwords and reset tokens are stored as hashes only.
    """
    __tablename__ = 'identity_accounts'

    id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    reset_token_hash = Column(String(64), index=True)
    reset_token_expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    password_updated_at = Column(DateTime(timezone=True))
