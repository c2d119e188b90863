from typing import Any, Dict, Iterable, List, Optional
import asyncio

import httpx

from cryptofolio_api.schemas.crypto import CoinSearchResult, PriceQuote
from cryptofolio_api.services.exceptions import PriceSourceError, QuoteUnavailable
from cryptofolio_shared.config import settings
from cryptofolio_shared.logging_config import get_logger

logger = get_logger("coingecko_service")

PRICE_CHANGE_WINDOWS = "1h,24h"


class CoinGeckoService:
    """
    Client for the CoinGecko public API.

    CoinGecko keys market data by coin id rather than ticker, so symbol
    lookups go through the search endpoint first. The public endpoints raise
    PriceSourceError on upstream failure; fetch_quotes never raises and
    simply omits whatever it could not price.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.COINGECKO_API_URL).rstrip("/")
        self.timeout = timeout or settings.COINGECKO_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    @staticmethod
    async def _get(client: httpx.AsyncClient, path: str, params: Optional[Dict] = None) -> Any:
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"CoinGecko API error on {path}: {e.response.status_code}")
            raise PriceSourceError(
                f"CoinGecko API error: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error calling CoinGecko {path}: {str(e)}")
            raise PriceSourceError("Failed to reach CoinGecko") from e

    async def _market_data(
        self, client: httpx.AsyncClient, coin_ids: List[str], currency: str
    ) -> List[PriceQuote]:
        data = await self._get(
            client,
            "/coins/markets",
            params={
                "vs_currency": currency.lower(),
                "ids": ",".join(coin_ids),
                "order": "market_cap_desc",
                "sparkline": "false",
                "price_change_percentage": PRICE_CHANGE_WINDOWS,
            },
        )
        return self._to_quotes(data)

    @staticmethod
    def _to_quotes(data: Any) -> List[PriceQuote]:
        try:
            return [PriceQuote.model_validate(item) for item in data]
        except (TypeError, ValueError) as e:
            logger.error(f"Unexpected market data payload: {str(e)}")
            raise PriceSourceError("Unexpected market data payload from CoinGecko") from e

    async def _search(self, client: httpx.AsyncClient, query: str) -> List[CoinSearchResult]:
        data = await self._get(client, "/search", params={"query": query})
        try:
            return [CoinSearchResult.model_validate(coin) for coin in data.get("coins", [])]
        except (AttributeError, TypeError, ValueError) as e:
            logger.error(f"Unexpected search payload for {query}: {str(e)}")
            raise PriceSourceError("Unexpected search payload from CoinGecko") from e

    async def _resolve_symbol(self, client: httpx.AsyncClient, symbol: str) -> str:
        try:
            results = await self._search(client, symbol)
        except PriceSourceError as e:
            raise QuoteUnavailable(f"Search failed for {symbol}") from e

        matches = [coin for coin in results if coin.symbol.lower() == symbol.lower()]
        if not matches:
            raise QuoteUnavailable(f"No coin matches symbol {symbol}")
        if len(matches) > 1:
            # Ambiguous ticker: the first search hit wins, which may not be
            # the asset the user meant.
            logger.warning(
                f"Symbol {symbol} matches {len(matches)} coins, using {matches[0].id}"
            )
        return matches[0].id

    async def get_market_data(
        self, coin_ids: List[str], currency: str = settings.DEFAULT_CURRENCY
    ) -> List[PriceQuote]:
        async with self._client() as client:
            return await self._market_data(client, coin_ids, currency)

    async def get_coin_price(
        self, coin_id: str, currency: str = settings.DEFAULT_CURRENCY
    ) -> Optional[PriceQuote]:
        quotes = await self.get_market_data([coin_id], currency)
        return quotes[0] if quotes else None

    async def get_top_coins(
        self, limit: int = 10, currency: str = settings.DEFAULT_CURRENCY
    ) -> List[PriceQuote]:
        async with self._client() as client:
            data = await self._get(
                client,
                "/coins/markets",
                params={
                    "vs_currency": currency.lower(),
                    "order": "market_cap_desc",
                    "per_page": limit,
                    "page": 1,
                    "sparkline": "false",
                    "price_change_percentage": PRICE_CHANGE_WINDOWS,
                },
            )
        return self._to_quotes(data)

    async def get_supported_currencies(self) -> List[str]:
        async with self._client() as client:
            return await self._get(client, "/simple/supported_vs_currencies")

    async def search_coins(self, query: str) -> List[CoinSearchResult]:
        async with self._client() as client:
            return await self._search(client, query)

    async def get_prices_by_symbols(
        self, symbols: Iterable[str], currency: str = settings.DEFAULT_CURRENCY
    ) -> List[PriceQuote]:
        quotes = await self.fetch_quotes(symbols, currency)
        return list(quotes.values())

    async def fetch_quotes(
        self, symbols: Iterable[str], currency: str = settings.DEFAULT_CURRENCY
    ) -> Dict[str, PriceQuote]:
        """
        Price a set of ticker symbols.

        Returns a mapping keyed by uppercase symbol. Symbols that cannot be
        resolved or priced (unknown ticker, upstream error, timeout) are left
        out of the mapping instead of failing the whole request.
        """
        unique_symbols = sorted({s.strip().upper() for s in symbols if s and s.strip()})
        if not unique_symbols:
            return {}

        async with self._client() as client:
            outcomes = await asyncio.gather(
                *[self._resolve_symbol(client, symbol) for symbol in unique_symbols],
                return_exceptions=True,
            )

            symbol_by_id: Dict[str, str] = {}
            for symbol, outcome in zip(unique_symbols, outcomes):
                if isinstance(outcome, QuoteUnavailable):
                    logger.warning(f"Quote unavailable for {symbol}: {outcome.detail}")
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome
                symbol_by_id.setdefault(outcome, symbol)

            if not symbol_by_id:
                return {}

            try:
                quotes = await self._market_data(client, list(symbol_by_id), currency)
            except PriceSourceError as e:
                logger.warning(f"Market data unavailable for {list(symbol_by_id.values())}: {e.detail}")
                return {}

        priced = {}
        for quote in quotes:
            symbol = symbol_by_id.get(quote.id)
            if symbol is not None:
                priced[symbol] = quote
        logger.info(f"Priced {len(priced)} of {len(unique_symbols)} symbols in {currency}")
        return priced
