from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class PaymentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    memberID: int
    amount: float
    method: Literal["cash", "card", "transfer", "check"]
    description: Optional[str] = None


class ChargeCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    memberID: int
    amount: float
    type: Literal["MembershipFee", "Repair"]
    description: Optional[str] = None


class MarkPaidRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    method: Optional[Literal["cash", "card", "transfer", "check"]] = None
