from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class ToolCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    toolName: str
    description: Optional[str] = None
    weeklyPrice: float
    status: Literal["available", "maintenance", "unavailable"] = "available"
    maintenanceImportance: Literal["low", "medium", "high"] = "low"
    maintenanceInterval: Optional[int] = None
    lastMaintenanceDate: Optional[date] = None


class ToolConditionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    statusAtTime: Literal["available", "maintenance", "unavailable"]
    comment: Optional[str] = None
    cost: Optional[float] = None
