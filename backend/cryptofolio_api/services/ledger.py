from typing import Optional
import math

from cryptofolio_api.models.portfolio import Holding
from cryptofolio_api.services.exceptions import (
    HoldingNotFound,
    InsufficientBalance,
    InvalidAmount,
    InvalidSymbol,
)
from cryptofolio_api.services.holding_store import HoldingStore
from cryptofolio_shared.logging_config import get_logger

logger = get_logger("ledger")


def normalize_symbol(symbol: str) -> str:
    normalized = (symbol or "").strip().upper()
    if not normalized:
        raise InvalidSymbol("Symbol is required")
    return normalized


def _check_amount(amount: float, allow_zero: bool = False) -> float:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidAmount(f"Amount must be a number, got {amount!r}")
    amount = float(amount)
    if not math.isfinite(amount):
        raise InvalidAmount("Amount must be finite")
    if allow_zero and amount < 0:
        raise InvalidAmount("Amount cannot be negative")
    if not allow_zero and amount <= 0:
        raise InvalidAmount("Amount must be positive")
    return amount


class Ledger:
    """
    Business rules for changing holding quantities.

    Holdings move between ABSENT and PRESENT(quantity > 0); no operation
    leaves a persisted row at zero or below.
    """

    def __init__(self, store: HoldingStore):
        self.store = store

    async def add_holding(self, portfolio_id: str, symbol: str, delta: float) -> Holding:
        delta = _check_amount(delta)
        symbol = normalize_symbol(symbol)
        try:
            holding = await self.store.increment_quantity(portfolio_id, symbol, delta)
        except InvalidAmount as e:
            logger.warning(f"Rejected add to portfolio {portfolio_id}: {e.detail}")
            raise
        logger.info(
            f"Added {delta} {symbol} to portfolio {portfolio_id}, now {holding.quantity}"
        )
        return holding

    async def remove_holding(
        self, portfolio_id: str, symbol: str, delta: float
    ) -> Optional[Holding]:
        delta = _check_amount(delta)
        symbol = normalize_symbol(symbol)
        try:
            holding = await self.store.decrement_quantity(portfolio_id, symbol, delta)
        except HoldingNotFound:
            logger.warning(f"Rejected removal of {delta} {symbol}: no holding in portfolio {portfolio_id}")
            raise
        except InsufficientBalance as e:
            logger.warning(
                f"Rejected removal of {delta} {symbol} from portfolio {portfolio_id}: {str(e)}"
            )
            raise
        if holding is None:
            logger.info(f"Removed all {symbol} from portfolio {portfolio_id}")
        else:
            logger.info(
                f"Removed {delta} {symbol} from portfolio {portfolio_id}, now {holding.quantity}"
            )
        return holding

    async def update_holding(
        self, portfolio_id: str, symbol: str, quantity: float
    ) -> Optional[Holding]:
        """
        Set a holding to an absolute quantity.

        Zero deletes the holding (succeeding even if it is already absent);
        a positive quantity overwrites it, creating the row when missing.
        """
        quantity = _check_amount(quantity, allow_zero=True)
        symbol = normalize_symbol(symbol)
        if quantity == 0:
            await self.delete_holding(portfolio_id, symbol)
            return None
        holding = await self.store.upsert_quantity(portfolio_id, symbol, quantity)
        logger.info(f"Set {symbol} in portfolio {portfolio_id} to {quantity}")
        return holding

    async def delete_holding(self, portfolio_id: str, symbol: str) -> bool:
        symbol = normalize_symbol(symbol)
        deleted = await self.store.delete_holding(portfolio_id, symbol)
        if deleted:
            logger.info(f"Deleted {symbol} from portfolio {portfolio_id}")
        else:
            logger.info(f"No {symbol} holding to delete in portfolio {portfolio_id}")
        return deleted
