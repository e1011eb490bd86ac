from typing import Any, Dict, Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from .common_schemas import ActionKind, ActionState

# Request bodies keep every field optional: presence is checked by the
# gateways so that authentication is decided before field validation.

class CapitalLoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None

class MT5LoginRequest(BaseModel):
    login: Optional[Union[int, str]] = None
    server: Optional[str] = None
    password: Optional[str] = None

    @field_validator("login")
    @classmethod
    def login_as_text(cls, v):
        if v is None:
            return None
        return str(v).strip()

class TradeRequest(BaseModel):
    symbol: Optional[str] = None
    type: Optional[str] = None
    volume: Optional[float] = None
    price: Optional[float] = None
    stopLoss: Optional[float] = None
    takeProfit: Optional[float] = None

    @field_validator("type")
    @classmethod
    def normalize_type(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

class MT5TradeRequest(TradeRequest):
    stopLimitPrice: Optional[float] = None
    comment: Optional[str] = None
    magic: Optional[int] = None
    expiration: Optional[datetime] = None

class ModifyPositionRequest(BaseModel):
    stopLoss: Optional[float] = None
    takeProfit: Optional[float] = None

class ActionRecord(BaseModel):
    """Outcome of a brokerage action the vendor models as several calls."""
    id: str
    identity: str
    kind: ActionKind
    state: ActionState
    dealReference: Optional[str] = None
    dealId: Optional[str] = None
    error: Optional[Any] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updatedAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
