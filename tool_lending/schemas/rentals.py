from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    toolID: int
    memberID: int
    startDate: date
    endDate: date
    totalPrice: Optional[float] = None


class RejectRentalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    comment: Optional[str] = None


class ReturnRentalRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    actualEndDate: Optional[date] = None
    comment: Optional[str] = None
