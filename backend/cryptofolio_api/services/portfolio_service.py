from typing import Dict, List, Optional, Sequence

from cryptofolio_api.models.portfolio import Holding, Portfolio
from cryptofolio_api.schemas.crypto import PriceQuote
from cryptofolio_api.schemas.portfolio import (
    HoldingOut,
    PortfolioOut,
    PortfolioResponse,
    PortfolioSummary,
    ValuedHolding,
)
from cryptofolio_api.services.coingecko_service import CoinGeckoService
from cryptofolio_api.services.holding_store import HoldingStore
from cryptofolio_api.services.ledger import Ledger
from cryptofolio_shared.config import settings
from cryptofolio_shared.logging_config import get_logger

logger = get_logger("portfolio_service")


class PortfolioService:
    def __init__(self, store: HoldingStore, coingecko_service: CoinGeckoService):
        self.store = store
        self.ledger = Ledger(store)
        self.coingecko_service = coingecko_service

    async def get_or_create_portfolio(self, owner_id: str) -> Portfolio:
        return await self.store.get_or_create_portfolio(owner_id)

    async def list_holdings(self, owner_id: str) -> List[Holding]:
        portfolio = await self.store.get_or_create_portfolio(owner_id)
        return await self.store.list_holdings(portfolio.id)

    async def get_portfolio(self, owner_id: str) -> PortfolioResponse:
        portfolio = await self.store.get_or_create_portfolio(owner_id)
        holdings = await self.store.list_holdings(portfolio.id)
        return PortfolioResponse(
            portfolio=PortfolioOut.model_validate(portfolio),
            holdings=[HoldingOut.model_validate(h) for h in holdings],
        )

    async def add_holding(self, owner_id: str, symbol: str, amount: float) -> Holding:
        portfolio = await self.store.get_or_create_portfolio(owner_id)
        return await self.ledger.add_holding(portfolio.id, symbol, amount)

    async def remove_holding(
        self, owner_id: str, symbol: str, amount: float
    ) -> Optional[Holding]:
        portfolio = await self.store.get_or_create_portfolio(owner_id)
        return await self.ledger.remove_holding(portfolio.id, symbol, amount)

    async def update_holding(
        self, owner_id: str, symbol: str, amount: float
    ) -> Optional[Holding]:
        portfolio = await self.store.get_or_create_portfolio(owner_id)
        return await self.ledger.update_holding(portfolio.id, symbol, amount)

    async def delete_holding(self, owner_id: str, symbol: str) -> bool:
        portfolio = await self.store.get_or_create_portfolio(owner_id)
        return await self.ledger.delete_holding(portfolio.id, symbol)

    async def get_portfolio_summary(
        self, owner_id: str, currency: str = settings.DEFAULT_CURRENCY
    ) -> PortfolioSummary:
        currency = currency.lower()
        portfolio = await self.store.get_or_create_portfolio(owner_id)
        holdings = await self.store.list_holdings(portfolio.id)

        quotes: Dict[str, PriceQuote] = {}
        if holdings:
            quotes = await self.coingecko_service.fetch_quotes(
                [holding.symbol for holding in holdings], currency
            )

        summary = self.build_summary(portfolio, holdings, quotes, currency)
        logger.info(
            f"Valued portfolio {portfolio.id}: {len(holdings)} holdings, "
            f"total_value={summary.total_value:.2f} {currency}"
        )
        return summary

    @staticmethod
    def build_summary(
        portfolio: Portfolio,
        holdings: Sequence[Holding],
        quotes: Dict[str, PriceQuote],
        currency: str = settings.DEFAULT_CURRENCY,
    ) -> PortfolioSummary:
        """
        Join holdings with quotes and fold them into totals.

        Holdings without a quote stay in the output valued at zero. The 24h
        change is the plain mean of the per-holding percentages, not weighted
        by value, which overstates small positions.
        """
        valued = []
        for holding in holdings:
            quote = quotes.get(holding.symbol)
            current_price = (quote.current_price if quote else None) or 0.0
            change_24h = (quote.price_change_percentage_24h if quote else None) or 0.0
            if quote is None:
                logger.warning(f"No quote for {holding.symbol}, valuing at zero")

            valued.append(
                ValuedHolding(
                    **HoldingOut.model_validate(holding).model_dump(),
                    current_price=current_price,
                    total_value=holding.quantity * current_price,
                    price_change_24h=change_24h,
                )
            )

        total_value = sum(h.total_value for h in valued)
        total_change_24h = (
            sum(h.price_change_24h for h in valued) / len(valued) if valued else 0.0
        )

        return PortfolioSummary(
            portfolio=PortfolioOut.model_validate(portfolio),
            holdings=valued,
            total_value=total_value,
            total_change_24h=total_change_24h,
            currency=currency,
        )
