"""
Typed records exchanged between the services and the HTTP layer.

Database rows are converted to these models before they leave a service,
so callers never handle ORM objects or loosely typed dictionaries.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal['user', 'admin']


class Identity(BaseModel):
    """A resolved, authenticated caller."""
    id: str
    email: str
    role: Role
    display_name: str = ''
    phone_number: str = ''
    business_name: str = ''
    agent_id_filter: Optional[str] = None
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == 'admin'

    class Config:
        from_attributes = True


class UserAccount(BaseModel):
    id: str
    email: str
    display_name: str = ''
    phone_number: str = ''
    business_name: str = ''
    role: Role
    is_active: bool
    agent_id_filter: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    last_login: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[str] = None

    class Config:
        from_attributes = True


class UserCreated(UserAccount):
    """A freshly provisioned user and whether the welcome email went out."""
    welcome_email_sent: bool = False


class UserCreate(BaseModel):
    """Fields an admin supplies when provisioning a user."""
    email: str
    display_name: str = Field(..., min_length=1)
    phone_number: str = ''
    business_name: str = ''
    role: Role = 'user'
    agent_id_filter: Optional[str] = None


class UserUpdate(BaseModel):
    """Partial update applied by an admin; unset fields are left alone."""
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    business_name: Optional[str] = None
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    agent_id_filter: Optional[str] = None


class ProfileUpdate(BaseModel):
    """Self-service profile fields (role and status are admin-only)."""
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    business_name: Optional[str] = None
    agent_id_filter: Optional[str] = None


class Credential(BaseModel):
    """Decrypted API key. Never returned by the HTTP layer."""
    owner_id: str
    plaintext: str
    last_updated: datetime
    updated_by: str


class CredentialInfo(BaseModel):
    """Display-safe view of a stored API key."""
    owner_id: str
    masked_key: str
    last_updated: datetime
    updated_by: str


class HistoryEntry(BaseModel):
    date: datetime
    minutes_used: float
    credits_used: int


class UsageRecord(BaseModel):
    owner_id: str
    total_minutes_used: float = 0.0
    minutes_remaining: float = 0.0
    credits_left: int = 0
    last_updated: Optional[datetime] = None
    history: List[HistoryEntry] = []

    class Config:
        from_attributes = True


class UsageUpdate(BaseModel):
    """Admin correction of stored usage figures; unset fields are left alone."""
    total_minutes_used: Optional[float] = None
    minutes_remaining: Optional[float] = None
    credits_left: Optional[int] = None


class ConversationMessage(BaseModel):
    id: str
    text: str
    sender: str
    role: str
    offset_seconds: float = 0.0
    timestamp: Optional[datetime] = None


class ConversationRef(BaseModel):
    external_id: str
    title: str
    start_time: Optional[datetime] = None
    duration_seconds: int = 0
    participants: List[str] = []
    agent_id: Optional[str] = None
    status: Optional[str] = None
    transcript: Optional[List[ConversationMessage]] = None


class ConversationPage(BaseModel):
    items: List[ConversationRef]
    total_count: int
    page: int
    page_size: int
    total_pages: int


class AudioLocator(BaseModel):
    url: str
    auth_headers: Dict[str, str]


class AdminAuditEntry(BaseModel):
    id: str
    admin_id: str
    action: str
    target_user_id: Optional[str] = None
    timestamp: datetime
    details: Optional[dict] = None
    ip_address: Optional[str] = None

    class Config:
        from_attributes = True
