from sqlalchemy import Column, Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from cryptofolio_api.models.base import Base, IdMixin, TimestampMixin


class Portfolio(Base, IdMixin, TimestampMixin):
    """
    One owner's set of holdings. The unique owner_id enforces a single
    portfolio per owner even when creation races.
    """

    __tablename__ = "portfolios"

    owner_id = Column(String(36), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    holdings = relationship(
        "Holding", back_populates="portfolio", order_by="Holding.symbol"
    )


class Holding(Base, IdMixin, TimestampMixin):
    """
    Quantity of one symbol inside a portfolio. Rows only exist while
    quantity > 0.
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol", name="uq_holding_portfolio_symbol"),
    )

    portfolio_id = Column(String(36), ForeignKey("portfolios.id"), nullable=False)
    symbol = Column(String(20), nullable=False)
    quantity = Column(Float, nullable=False)
    portfolio = relationship("Portfolio", back_populates="holdings")
