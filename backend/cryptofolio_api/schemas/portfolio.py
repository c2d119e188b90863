from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PortfolioOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    name: str
    created_at: datetime
    updated_at: datetime


class HoldingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    portfolio_id: str
    symbol: str
    quantity: float
    created_at: datetime
    updated_at: datetime


class HoldingRequest(BaseModel):
    symbol: str = Field(min_length=1, max_length=20)
    amount: float = Field(gt=0, allow_inf_nan=False)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("Symbol is required")
        return value


class UpdateHoldingRequest(HoldingRequest):
    amount: float = Field(ge=0, allow_inf_nan=False)


class HoldingMutationResponse(BaseModel):
    symbol: str
    holding: Optional[HoldingOut] = None
    message: str


class PortfolioResponse(BaseModel):
    portfolio: PortfolioOut
    holdings: List[HoldingOut]


class ValuedHolding(HoldingOut):
    current_price: float
    total_value: float
    price_change_24h: float


class PortfolioSummary(BaseModel):
    portfolio: PortfolioOut
    holdings: List[ValuedHolding]
    total_value: float
    total_change_24h: float
    currency: str
