from typing import Optional

from pydantic import BaseModel, ConfigDict


class PriceQuote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    symbol: str
    name: str = ""
    current_price: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    price_change_percentage_1h_in_currency: Optional[float] = None
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None


class CoinSearchResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    symbol: str
    market_cap_rank: Optional[int] = None
