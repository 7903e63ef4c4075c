from datetime import date, timedelta
from typing import Any, Optional

from pydantic import TypeAdapter
from sqlalchemy import CheckConstraint, Index, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from database import Base
from schemas import Alloc

EPOCH = date(1970, 1, 1)

BLOB_VERSION = 1


class BlobVersionError(ValueError):
    pass


def to_epoch_day(value: date) -> int:
    return (value - EPOCH).days


def from_epoch_day(value: int) -> date:
    return EPOCH + timedelta(days=value)


class EpochDay(TypeDecorator):
    """A calendar date stored as whole days since 1970-01-01."""

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value: Optional[date], dialect) -> Optional[int]:
        if value is None:
            return None
        return to_epoch_day(value)

    def process_result_value(self, value: Optional[int], dialect) -> Optional[date]:
        if value is None:
            return None
        return from_epoch_day(int(value))


def encode_blob(adapter: TypeAdapter, value: Any) -> bytes:
    return bytes([BLOB_VERSION]) + adapter.dump_json(value)


def decode_blob(adapter: TypeAdapter, raw: bytes) -> Any:
    if not raw:
        raise BlobVersionError("Empty blob")
    version = raw[0]
    if version != BLOB_VERSION:
        raise BlobVersionError(
            f"Unsupported blob version {version} (expected {BLOB_VERSION})"
        )
    return adapter.validate_json(raw[1:])


class VersionedBlob(TypeDecorator):
    """Nested values serialized as one version byte followed by JSON.

    The store never looks inside these columns, so the nested shapes can
    change without touching the table definitions.
    """

    impl = LargeBinary
    cache_ok = True

    def __init__(self, value_type: Any, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.value_type = value_type
        self.adapter = TypeAdapter(value_type)

    def process_bind_param(self, value, dialect) -> Optional[bytes]:
        if value is None:
            return None
        return encode_blob(self.adapter, value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decode_blob(self.adapter, bytes(value))


ALLOC_BLOB = VersionedBlob(Alloc)
CATEGORY_ALLOCS_BLOB = VersionedBlob(dict[str, Alloc])


class ExpenseRow(Base):
    __tablename__ = "expense"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    detail: Mapped[str] = mapped_column(Text, nullable=False)
    day: Mapped[date] = mapped_column(EpochDay, nullable=False)

    __table_args__ = (
        CheckConstraint("cost >= 0", name="ck_expense_cost_positive"),
    )


class IncomeRow(Base):
    __tablename__ = "income"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    day: Mapped[date] = mapped_column(EpochDay, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_income_amount_positive"),
    )


class BudgetRow(Base):
    __tablename__ = "budget"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    start: Mapped[date] = mapped_column(EpochDay, nullable=False)
    savings: Mapped[Alloc] = mapped_column(ALLOC_BLOB, nullable=False)
    expenditure: Mapped[Alloc] = mapped_column(ALLOC_BLOB, nullable=False)
    spend_categories: Mapped[dict[str, Alloc]] = mapped_column(
        CATEGORY_ALLOCS_BLOB, nullable=False
    )


class CheckpointRow(Base):
    __tablename__ = "checkpoint"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assets: Mapped[int] = mapped_column(Integer, nullable=False)
    day: Mapped[date] = mapped_column(EpochDay, nullable=False)

    __table_args__ = (
        CheckConstraint("assets >= 0", name="ck_checkpoint_assets_positive"),
    )


# Reads always want the most recent rows first.
Index("ix_expense_day", ExpenseRow.day.desc())
Index("ix_income_day", IncomeRow.day.desc())
Index("ix_budget_start", BudgetRow.start.desc())
Index("ix_checkpoint_day", CheckpointRow.day.desc())
