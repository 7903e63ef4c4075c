from datetime import date
from typing import Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Amounts are stored in SQLite INTEGER columns, which are signed 64-bit.
MAX_CENTS = 2**63 - 1


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


# Scalar fields are strict: a quoted number, a boolean or a float is not an
# amount, and a quoted date is not a date.
def _cents(**kwargs):
    return Field(..., ge=0, le=MAX_CENTS, strict=True, **kwargs)


def _strict():
    return Field(..., strict=True)


class Alloc(_Record):
    """An allocation of money. Min or max depends on where it is nested."""

    rate: float = Field(..., strict=True, allow_inf_nan=False)
    flat: int = _cents()


class Expense(_Record):
    kind: Literal["expense"] = Field(default="expense", exclude=True)
    amount: int = _cents()
    category: str = _strict()
    detail: str = _strict()
    day: date = _strict()


class Income(_Record):
    kind: Literal["income"] = Field(default="income", exclude=True)
    amount: int = _cents(validation_alias=AliasChoices("amount", "income"))
    category: str = _strict()
    day: date = _strict()


class Budget(_Record):
    """Budget targets effective from ``start`` until a later budget supersedes it."""

    kind: Literal["budget"] = Field(default="budget", exclude=True)
    start: date = _strict()
    savings: Alloc
    expenditure: Alloc
    spend_categories: dict[str, Alloc]


class Checkpoint(_Record):
    """Exact liquid assets on ``day``; anchors the report."""

    kind: Literal["checkpoint"] = Field(default="checkpoint", exclude=True)
    assets: int = _cents()
    day: date = _strict()


Record = Union[Expense, Income, Budget, Checkpoint]

# Fallback discrimination order for documents without a ``kind`` field.
RECORD_PRIORITY: tuple[type[_Record], ...] = (Expense, Income, Budget, Checkpoint)
