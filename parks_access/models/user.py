"""Back-office users; the role links a user to the permission matrix."""
from datetime import datetime

from beanie import Document, Indexed
from pydantic import BaseModel, EmailStr, Field

from parks_access.rbac import SystemRole


class User(Document):
    email: Indexed(EmailStr, unique=True)
    hashed_password: str
    role: SystemRole
    full_name: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
        use_state_management = True


class UserOut(BaseModel):
    id: str
    email: str
    role: SystemRole
    full_name: str
    is_active: bool
