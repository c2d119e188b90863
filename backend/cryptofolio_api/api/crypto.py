from typing import List

from fastapi import APIRouter, HTTPException, Depends, Query, Request

from cryptofolio_api.schemas.crypto import CoinSearchResult, PriceQuote
from cryptofolio_api.services.coingecko_service import CoinGeckoService
from cryptofolio_shared.config import settings

router = APIRouter(prefix="/api/crypto")

MAX_COIN_IDS = 50
MAX_SYMBOLS = 20


def get_coingecko_service(request: Request) -> CoinGeckoService:
    return request.app.state.coingecko_service


def _split_param(value: str, upper: bool = False) -> List[str]:
    items = [item.strip() for item in value.split(",") if item.strip()]
    return [item.upper() for item in items] if upper else items


@router.get("/top", response_model=List[PriceQuote])
async def get_top_coins(
    limit: int = Query(10, ge=1, le=100),
    currency: str = settings.DEFAULT_CURRENCY,
    coingecko_service: CoinGeckoService = Depends(get_coingecko_service),
) -> List[PriceQuote]:
    return await coingecko_service.get_top_coins(limit, currency)


@router.get("/prices", response_model=List[PriceQuote])
async def get_prices(
    coins: str,
    currency: str = settings.DEFAULT_CURRENCY,
    coingecko_service: CoinGeckoService = Depends(get_coingecko_service),
) -> List[PriceQuote]:
    coin_ids = _split_param(coins)
    if not coin_ids:
        raise HTTPException(status_code=400, detail="At least one coin ID is required")
    if len(coin_ids) > MAX_COIN_IDS:
        raise HTTPException(
            status_code=400, detail=f"Maximum {MAX_COIN_IDS} coins allowed per request"
        )
    return await coingecko_service.get_market_data(coin_ids, currency)


@router.get("/prices/symbols", response_model=List[PriceQuote])
async def get_prices_by_symbols(
    symbols: str,
    currency: str = settings.DEFAULT_CURRENCY,
    coingecko_service: CoinGeckoService = Depends(get_coingecko_service),
) -> List[PriceQuote]:
    symbol_list = _split_param(symbols, upper=True)
    if not symbol_list:
        raise HTTPException(status_code=400, detail="At least one symbol is required")
    if len(symbol_list) > MAX_SYMBOLS:
        raise HTTPException(
            status_code=400, detail=f"Maximum {MAX_SYMBOLS} symbols allowed per request"
        )
    return await coingecko_service.get_prices_by_symbols(symbol_list, currency)


@router.get("/price/{coin_id}", response_model=PriceQuote)
async def get_coin_price(
    coin_id: str,
    currency: str = settings.DEFAULT_CURRENCY,
    coingecko_service: CoinGeckoService = Depends(get_coingecko_service),
) -> PriceQuote:
    quote = await coingecko_service.get_coin_price(coin_id, currency)
    if quote is None:
        raise HTTPException(status_code=404, detail=f"Coin not found: {coin_id}")
    return quote


@router.get("/search", response_model=List[CoinSearchResult])
async def search_coins(
    q: str = Query(..., min_length=2),
    coingecko_service: CoinGeckoService = Depends(get_coingecko_service),
) -> List[CoinSearchResult]:
    return await coingecko_service.search_coins(q)


@router.get("/supported-currencies", response_model=List[str])
async def get_supported_currencies(
    coingecko_service: CoinGeckoService = Depends(get_coingecko_service),
) -> List[str]:
    return await coingecko_service.get_supported_currencies()
