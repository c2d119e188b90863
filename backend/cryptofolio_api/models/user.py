from sqlalchemy import Column, String

from cryptofolio_api.models.base import Base, IdMixin, TimestampMixin


class User(Base, IdMixin, TimestampMixin):
    __tablename__ = "users"

    username = Column(String(50), unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
