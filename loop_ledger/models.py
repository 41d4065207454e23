from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, conint


class IdentityReq(BaseModel):
    model_config = ConfigDict(extra="ignore")
    device_id: Optional[str] = None
    user_id: Optional[str] = None


class AdminSetCreditsReq(IdentityReq):
    free_used: conint(ge=0) = 0
    donation_credits: conint(ge=0) = 0
    credits: conint(ge=0) = 0


class CheckoutReq(IdentityReq):
    amount: Optional[conint(ge=0)] = Field(default=None, description="Amount in cents")


class SaveSetupReq(BaseModel):
    model_config = ConfigDict(extra="ignore")
    device_id: str
    loop_point: Optional[Any] = None
    distance: Optional[float] = None
    unit: Optional[str] = None
    terrain: Optional[str] = None
    surface: Optional[str] = None
    vibe: Optional[str] = None
