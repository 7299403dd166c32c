from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class MemberCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fullName: str
    email: Optional[str] = None
    role: Literal["Admin", "Member"] = "Member"
    membershipExpiry: date


class RenewMembershipRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    months: int = 12
    amount: float = 0
