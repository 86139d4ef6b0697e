from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base

TRANSACTION_TYPES = ("income", "expense")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DATETIME column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, unique=True, nullable=False)
    email = Column(String, unique=True, nullable=False)
    password = Column(String, nullable=False)
    initial_balance = Column(Float, default=0)
    created_at = Column(DateTime, default=utcnow)
    last_login = Column(DateTime)
    transactions = relationship("Transaction", back_populates="owner", cascade="all, delete", passive_deletes=True)
    refresh_tokens = relationship("RefreshToken", back_populates="owner", cascade="all, delete", passive_deletes=True)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (CheckConstraint("type IN ('income', 'expense')", name="ck_transactions_type"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    comment = Column(Text)
    category = Column(String)
    date = Column(DateTime, default=utcnow, index=True)
    owner = relationship("User", back_populates="transactions")


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String, unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    owner = relationship("User", back_populates="refresh_tokens")
