from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional
import math
import sys

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cryptofolio_api.db.database import Database
from cryptofolio_api.models.base import new_id
from cryptofolio_api.models.portfolio import Holding, Portfolio
from cryptofolio_api.services.exceptions import (
    HoldingNotFound,
    InsufficientBalance,
    InvalidAmount,
    StoreUnavailable,
)
from cryptofolio_shared.config import settings
from cryptofolio_shared.logging_config import get_logger

logger = get_logger("holding_store")

MAX_QUANTITY = sys.float_info.max


class HoldingStore:
    """
    Durable (portfolio, symbol) -> quantity mapping.

    Every mutation runs in its own transaction and writes through a single
    SQL statement, so concurrent writers on the same key are serialized by
    the database row lock instead of an application-level check-then-act.
    Symbols are expected to be normalized by the caller.
    """

    def __init__(self, database: Database):
        self.database = database

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        async with self.database.session() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Store failure during {action}: {str(e)}")
                raise StoreUnavailable(f"Portfolio store unavailable during {action}") from e
            except Exception:
                await session.rollback()
                raise

    def _insert(self):
        if self.database.dialect == "postgresql":
            return postgresql.insert
        return sqlite.insert

    @staticmethod
    async def _select_holding(
        session: AsyncSession, portfolio_id: str, symbol: str
    ) -> Optional[Holding]:
        stmt = (
            select(Holding)
            .filter(Holding.portfolio_id == portfolio_id, Holding.symbol == symbol)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_portfolio(self, owner_id: str) -> Optional[Portfolio]:
        async with self._session("get_portfolio") as session:
            stmt = select(Portfolio).filter(Portfolio.owner_id == owner_id)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_or_create_portfolio(self, owner_id: str) -> Portfolio:
        portfolio = await self.get_portfolio(owner_id)
        if portfolio is not None:
            return portfolio

        async with self.database.session() as session:
            portfolio = Portfolio(owner_id=owner_id, name=settings.DEFAULT_PORTFOLIO_NAME)
            session.add(portfolio)
            try:
                await session.commit()
                logger.info(f"Created portfolio {portfolio.id} for owner {owner_id}")
                return portfolio
            except IntegrityError:
                # Another request created it first; the unique owner_id wins.
                await session.rollback()
                logger.info(f"Portfolio for owner {owner_id} created concurrently, re-reading")
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Error creating portfolio for owner {owner_id}: {str(e)}")
                raise StoreUnavailable("Portfolio store unavailable during get_or_create_portfolio") from e

        portfolio = await self.get_portfolio(owner_id)
        if portfolio is None:
            raise StoreUnavailable(f"Portfolio for owner {owner_id} could not be created")
        return portfolio

    async def list_holdings(self, portfolio_id: str) -> List[Holding]:
        async with self._session("list_holdings") as session:
            stmt = (
                select(Holding)
                .filter(Holding.portfolio_id == portfolio_id)
                .order_by(Holding.symbol.asc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_holding(self, portfolio_id: str, symbol: str) -> Optional[Holding]:
        async with self._session("get_holding") as session:
            return await self._select_holding(session, portfolio_id, symbol)

    async def upsert_quantity(
        self, portfolio_id: str, symbol: str, quantity: float
    ) -> Holding:
        if not quantity > 0:
            raise InvalidAmount("Quantity must be positive; delete the holding instead")
        if not math.isfinite(quantity):
            raise InvalidAmount("Quantity must be finite")

        now = datetime.utcnow()
        async with self._session("upsert_quantity") as session:
            stmt = self._insert()(Holding).values(
                id=new_id(),
                portfolio_id=portfolio_id,
                symbol=symbol,
                quantity=quantity,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["portfolio_id", "symbol"],
                set_={"quantity": stmt.excluded.quantity, "updated_at": now},
            )
            await session.execute(stmt)
            return await self._select_holding(session, portfolio_id, symbol)

    async def increment_quantity(
        self, portfolio_id: str, symbol: str, delta: float
    ) -> Holding:
        now = datetime.utcnow()
        async with self._session("increment_quantity") as session:
            stmt = self._insert()(Holding).values(
                id=new_id(),
                portfolio_id=portfolio_id,
                symbol=symbol,
                quantity=delta,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["portfolio_id", "symbol"],
                set_={
                    "quantity": Holding.quantity + stmt.excluded.quantity,
                    "updated_at": now,
                },
                # The sum must stay a finite float.
                where=Holding.quantity <= MAX_QUANTITY - stmt.excluded.quantity,
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise InvalidAmount(f"Adding {delta} {symbol} would overflow the holding quantity")
            return await self._select_holding(session, portfolio_id, symbol)

    async def decrement_quantity(
        self, portfolio_id: str, symbol: str, delta: float
    ) -> Optional[Holding]:
        """
        Subtract delta from a holding in one conditional UPDATE.

        Returns the remaining holding, or None when it reached exactly zero
        and was deleted. Raises HoldingNotFound when no row exists and
        InsufficientBalance when the row holds less than delta; the store is
        unchanged in both cases.
        """
        now = datetime.utcnow()
        async with self._session("decrement_quantity") as session:
            stmt = (
                update(Holding)
                .where(
                    Holding.portfolio_id == portfolio_id,
                    Holding.symbol == symbol,
                    Holding.quantity >= delta,
                )
                .values(quantity=Holding.quantity - delta, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)

            if result.rowcount == 0:
                existing = await self._select_holding(session, portfolio_id, symbol)
                if existing is None:
                    raise HoldingNotFound(f"Holding not found: {symbol}")
                raise InsufficientBalance(
                    f"Insufficient {symbol} balance: have {existing.quantity}, tried to remove {delta}"
                )

            holding = await self._select_holding(session, portfolio_id, symbol)
            if holding.quantity == 0:
                await session.execute(
                    delete(Holding)
                    .where(Holding.id == holding.id, Holding.quantity == 0)
                    .execution_options(synchronize_session=False)
                )
                return None
            return holding

    async def delete_holding(self, portfolio_id: str, symbol: str) -> bool:
        async with self._session("delete_holding") as session:
            stmt = (
                delete(Holding)
                .where(Holding.portfolio_id == portfolio_id, Holding.symbol == symbol)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount > 0
