from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import TRANSACTION_TYPES, Transaction, User

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ---------------- HELPERS ----------------
def parse_number(value: Any, field: str) -> float:
    # bool is an int subclass; true/false are not amounts
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be a number")
    if number != number or number in (float("inf"), float("-inf")):
        raise ValidationError(f"{field} must be a number")
    return number


def format_date(value: Optional[datetime], tz: str = "UTC") -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz)).strftime(DATE_FORMAT)


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def serialize_transaction(tx: Transaction, tz: str) -> Dict[str, Any]:
    return {
        "_id": tx.id,
        "type": tx.type,
        "amount": tx.amount,
        "comment": tx.comment,
        "category": tx.category,
        "date": format_date(tx.date, tz),
    }


# ---------------- USER ----------------
def get_profile(db: Session, user_id: int, tz: str = "UTC") -> Dict[str, Any]:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return {
        "_id": user.id,
        "username": user.username,
        "email": user.email,
        "initialBalance": user.initial_balance,
        "createdAt": format_date(user.created_at, tz),
        "lastLogin": format_date(user.last_login, tz),
    }


def update_balance(db: Session, user_id: int, initial_balance: Any) -> None:
    if initial_balance is None or initial_balance == "":
        raise ValidationError("initialBalance is required")
    value = parse_number(initial_balance, "initialBalance")
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    user.initial_balance = value
    db.commit()


def balance_summary(db: Session, user_id: int) -> Dict[str, float]:
    """Totals derived from the stored rows; nothing is written back."""
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    totals = dict(
        db.query(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0.0))
        .filter(Transaction.user_id == user_id)
        .group_by(Transaction.type)
        .all()
    )
    income = float(totals.get("income", 0.0))
    expense = float(totals.get("expense", 0.0))
    initial = float(user.initial_balance or 0.0)
    return {
        "initialBalance": initial,
        "income": round(income, 2),
        "expense": round(expense, 2),
        "balance": round(initial + income - abs(expense), 2),
    }


# ---------------- TRANSACTIONS ----------------
def list_transactions(db: Session, user_id: int, tz: str = "UTC") -> List[Dict[str, Any]]:
    rows = (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
        .all()
    )
    return [serialize_transaction(tx, tz) for tx in rows]


def create_transaction(db: Session, user_id: int, payload: Dict[str, Any], tz: str = "UTC") -> Dict[str, Any]:
    tx_type = payload.get("type")
    amount = payload.get("amount")
    if tx_type not in TRANSACTION_TYPES:
        raise ValidationError("type must be 'income' or 'expense'")
    if amount is None or amount == "":
        raise ValidationError("amount is required")
    amount = parse_number(amount, "amount")
    if amount == 0:
        raise ValidationError("amount must not be zero")

    tx = Transaction(
        user_id=user_id,
        type=tx_type,
        amount=amount,
        comment=_optional_text(payload.get("comment")),
        category=_optional_text(payload.get("category")),
    )
    db.add(tx)
    db.commit()
    db.refresh(tx)
    return serialize_transaction(tx, tz)


def delete_transaction(db: Session, user_id: int, transaction_id: int) -> None:
    # a row owned by someone else is indistinguishable from a missing one
    db.query(Transaction).filter(Transaction.id == transaction_id, Transaction.user_id == user_id).delete()
    db.commit()
