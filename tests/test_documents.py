from datetime import date

import pytest

from documents import DocumentDecodeError, NoMatchingSchema, parse_document
from schemas import Alloc, Budget, Checkpoint, Expense, Income

BUDGET_DOC = b"""
start = 2022-01-01
savings = { rate = 0.2, flat = 10000 }
expenditure = { rate = 0.8, flat = 0 }

[spend_categories]
groceries = { rate = 0.1, flat = 0 }
rent = { rate = 0.3, flat = 120000 }
"""


def test_expense_document() -> None:
    record = parse_document(
        b'amount = 1299\ncategory = "food"\ndetail = "Lunch"\nday = 2024-03-02\n'
    )
    assert record == Expense(
        amount=1299, category="food", detail="Lunch", day=date(2024, 3, 2)
    )


def test_income_amount_field_is_normalized() -> None:
    legacy = parse_document(b'income = 500000\ncategory = "salary"\nday = 2024-03-01\n')
    current = parse_document(b'amount = 500000\ncategory = "salary"\nday = 2024-03-01\n')
    assert isinstance(legacy, Income)
    assert legacy == current
    assert legacy.amount == 500_000


def test_budget_document_with_nested_allocations() -> None:
    record = parse_document(BUDGET_DOC)
    assert isinstance(record, Budget)
    assert record.start == date(2022, 1, 1)
    assert record.savings == Alloc(rate=0.2, flat=10_000)
    assert record.spend_categories["rent"] == Alloc(rate=0.3, flat=120_000)
    assert set(record.spend_categories) == {"groceries", "rent"}


def test_checkpoint_document_is_not_a_budget() -> None:
    record = parse_document(b"assets = 1000000\nday = 2024-01-01\n")
    assert record == Checkpoint(assets=1_000_000, day=date(2024, 1, 1))


def test_budget_document_is_not_a_checkpoint() -> None:
    assert not isinstance(parse_document(BUDGET_DOC), Checkpoint)


def test_expense_wins_over_income_when_both_match() -> None:
    record = parse_document(
        b'amount = 10\ncategory = "misc"\ndetail = "x"\nday = 2024-01-01\n'
    )
    assert isinstance(record, Expense)


def test_budget_wins_over_checkpoint_when_both_match() -> None:
    record = parse_document(b"assets = 5\nday = 2024-01-01\n" + BUDGET_DOC)
    assert isinstance(record, Budget)


def test_explicit_kind_overrides_priority() -> None:
    record = parse_document(
        b'kind = "checkpoint"\nassets = 5\nday = 2024-01-01\n' + BUDGET_DOC
    )
    assert record == Checkpoint(assets=5, day=date(2024, 1, 1))


def test_explicit_kind_must_match_its_shape() -> None:
    with pytest.raises(NoMatchingSchema) as excinfo:
        parse_document(b'kind = "income"\nassets = 5\nday = 2024-01-01\n')
    assert list(excinfo.value.errors) == ["Income"]


def test_unknown_kind_is_rejected() -> None:
    with pytest.raises(NoMatchingSchema, match="unknown record kind"):
        parse_document(b'kind = "transfer"\namount = 5\n')


def test_no_matching_shape_reports_every_attempt() -> None:
    with pytest.raises(NoMatchingSchema) as excinfo:
        parse_document(b'amount = 5\nnote = "no date"\n')
    assert list(excinfo.value.errors) == ["Expense", "Income", "Budget", "Checkpoint"]
    assert "day" in excinfo.value.errors["Expense"]


def test_negative_amount_matches_nothing() -> None:
    with pytest.raises(NoMatchingSchema):
        parse_document(b"assets = -1\nday = 2024-01-01\n")


def test_invalid_toml() -> None:
    with pytest.raises(DocumentDecodeError):
        parse_document(b"amount = = 3")


def test_non_utf8_bytes() -> None:
    with pytest.raises(DocumentDecodeError):
        parse_document(b"\xff\xfe\x00")


@pytest.mark.parametrize("rate", ["nan", "inf", "-inf"])
def test_non_finite_rate_matches_nothing(rate: str) -> None:
    doc = BUDGET_DOC.replace(b"rate = 0.2", f"rate = {rate}".encode())
    with pytest.raises(NoMatchingSchema) as excinfo:
        parse_document(doc)
    assert "savings.rate" in excinfo.value.errors["Budget"]


def test_integer_rate_is_accepted() -> None:
    doc = BUDGET_DOC.replace(b"rate = 0.8", b"rate = 1")
    record = parse_document(doc)
    assert record.expenditure == Alloc(rate=1.0, flat=0)


@pytest.mark.parametrize(
    "amount",
    ['"1299"', "true", "12.0"],
)
def test_loosely_typed_amount_matches_nothing(amount: str) -> None:
    doc = f'amount = {amount}\ncategory = "food"\ndetail = "x"\nday = 2024-03-02\n'
    with pytest.raises(NoMatchingSchema) as excinfo:
        parse_document(doc.encode())
    assert "amount" in excinfo.value.errors["Expense"]


def test_quoted_date_matches_nothing() -> None:
    with pytest.raises(NoMatchingSchema):
        parse_document(
            b'amount = 1299\ncategory = "food"\ndetail = "x"\nday = "2024-03-02"\n'
        )


def test_quoted_assets_are_not_a_checkpoint() -> None:
    with pytest.raises(NoMatchingSchema):
        parse_document(b'assets = "100"\nday = 2024-01-01\n')
