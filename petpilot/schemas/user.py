from enum import Enum
from datetime import datetime
from typing import Optional

from .common import CamelModel


class Role(str, Enum):
    owner = "owner"
    pilot = "pilot"
    admin = "admin"


class UserOut(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: Role
    is_active: bool = True
    created_at: Optional[datetime] = None


class UserEnvelope(CamelModel):
    message: str
    user: UserOut
