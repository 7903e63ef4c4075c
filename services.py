from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence
from zoneinfo import ZoneInfo

from pydantic import ValidationError
from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import RecordRejected, StorageError
from documents import ParseError, parse_document
from models import BlobVersionError, BudgetRow, CheckpointRow, ExpenseRow, IncomeRow
from schemas import Alloc, Budget, Checkpoint, Expense, Income, Record

logger = logging.getLogger(__name__)

UNBUDGETED = "(unbudgeted)"


class ReportDataMissing(ValueError):
    pass


def today_local() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def format_major(cents: int) -> str:
    """Whole major units; fractional cents are dropped toward zero."""
    sign = "-" if cents < 0 else ""
    return f"{sign}{abs(cents) // 100}"


def savings_rate(income_cents: int, expense_cents: int) -> Optional[int]:
    """Integer percentage of income kept, truncated toward zero.

    Returns None when there is no income to divide by.
    """
    if income_cents == 0:
        return None
    saved = income_cents - expense_cents
    pct = abs(saved) * 100 // income_cents
    return -pct if saved < 0 else pct


class LedgerService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _commit(self, row: object) -> None:
        try:
            self.session.add(row)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise RecordRejected(f"Store rejected record: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Could not store record: {exc}") from exc

    def insert(self, record: Record) -> None:
        match record:
            case Expense():
                row = ExpenseRow(
                    cost=record.amount,
                    category=record.category,
                    detail=record.detail,
                    day=record.day,
                )
            case Income():
                row = IncomeRow(
                    amount=record.amount, category=record.category, day=record.day
                )
            case Budget():
                row = BudgetRow(
                    start=record.start,
                    savings=record.savings,
                    expenditure=record.expenditure,
                    spend_categories=dict(record.spend_categories),
                )
            case Checkpoint():
                row = CheckpointRow(assets=record.assets, day=record.day)
            case _:
                raise TypeError(f"Unsupported record type: {type(record).__name__}")
        self._commit(row)

    def _query(self, stmt):
        try:
            return self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"Ledger query failed: {exc}") from exc

    def _load_budgets(self, stmt) -> list[Budget]:
        # Blob columns decode while rows are fetched, after the statement ran.
        try:
            rows = self._query(stmt).scalars().all()
            return [
                Budget(
                    start=row.start,
                    savings=row.savings,
                    expenditure=row.expenditure,
                    spend_categories=row.spend_categories,
                )
                for row in rows
            ]
        except (BlobVersionError, ValidationError, SQLAlchemyError) as exc:
            raise StorageError(f"Stored budget could not be decoded: {exc}") from exc

    def latest_budget(self) -> Budget:
        stmt = (
            select(BudgetRow)
            .order_by(BudgetRow.start.desc(), BudgetRow.id.desc())
            .limit(1)
        )
        budgets = self._load_budgets(stmt)
        if not budgets:
            raise ReportDataMissing("No budget has been recorded yet")
        return budgets[0]

    def latest_checkpoint(self) -> Checkpoint:
        stmt = (
            select(CheckpointRow)
            .order_by(CheckpointRow.day.desc(), CheckpointRow.id.desc())
            .limit(1)
        )
        row = self._query(stmt).scalar_one_or_none()
        if row is None:
            raise ReportDataMissing("No checkpoint has been recorded yet")
        return Checkpoint(assets=row.assets, day=row.day)

    def list_budgets(self) -> list[Budget]:
        stmt = select(BudgetRow).order_by(BudgetRow.start.desc(), BudgetRow.id.desc())
        return self._load_budgets(stmt)

    def list_checkpoints(self) -> list[Checkpoint]:
        stmt = select(CheckpointRow).order_by(
            CheckpointRow.day.desc(), CheckpointRow.id.desc()
        )
        return [
            Checkpoint(assets=row.assets, day=row.day)
            for row in self._query(stmt).scalars()
        ]

    def list_expenses(self) -> list[Expense]:
        stmt = select(ExpenseRow).order_by(ExpenseRow.day.desc(), ExpenseRow.id.desc())
        return [
            Expense(amount=r.cost, category=r.category, detail=r.detail, day=r.day)
            for r in self._query(stmt).scalars()
        ]

    def list_income(self) -> list[Income]:
        stmt = select(IncomeRow).order_by(IncomeRow.day.desc(), IncomeRow.id.desc())
        return [
            Income(amount=r.amount, category=r.category, day=r.day)
            for r in self._query(stmt).scalars()
        ]

    def sum_income_since(self, day: date, until: Optional[date] = None) -> int:
        until = until or today_local()
        stmt = select(func.coalesce(func.sum(IncomeRow.amount), 0)).where(
            IncomeRow.day.between(day, until)
        )
        return int(self._query(stmt).scalar_one())

    def sum_expense_since(self, day: date, until: Optional[date] = None) -> int:
        until = until or today_local()
        stmt = select(func.coalesce(func.sum(ExpenseRow.cost), 0)).where(
            ExpenseRow.day.between(day, until)
        )
        return int(self._query(stmt).scalar_one())

    def expense_by_category_since(
        self, day: date, until: Optional[date] = None
    ) -> dict[str, int]:
        until = until or today_local()
        stmt = (
            select(ExpenseRow.category, func.sum(ExpenseRow.cost))
            .where(ExpenseRow.day.between(day, until))
            .group_by(ExpenseRow.category)
            .order_by(ExpenseRow.category)
        )
        return {category: int(total) for category, total in self._query(stmt).all()}


@dataclass(frozen=True)
class CategorySpend:
    name: str
    spent_cents: int
    alloc: Optional[Alloc]


@dataclass(frozen=True)
class SolvencyReport:
    today: date
    checkpoint: Checkpoint
    budget: Budget
    income_cents: int
    expense_cents: int
    savings_rate: Optional[int]
    projected_balance_cents: int
    categories: list[CategorySpend] = field(default_factory=list)


def match_budget_category(name: str, budget_names: Iterable[str]) -> Optional[str]:
    """Budget category an expense category counts against, if any.

    Case-insensitive exact matches win. Otherwise a single budget category
    within one edit is accepted; ties are left unmatched.
    """
    wanted = name.strip().lower()
    names = list(budget_names)
    for candidate in names:
        if candidate.strip().lower() == wanted:
            return candidate
    close = [
        candidate
        for candidate in names
        if Levenshtein.distance(wanted, candidate.strip().lower()) <= 1
    ]
    if len(close) == 1:
        return close[0]
    return None


class ReportService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.ledger = LedgerService(session)

    def _category_lines(
        self, budget: Budget, spent_by_category: dict[str, int]
    ) -> list[CategorySpend]:
        spent: dict[str, int] = {name: 0 for name in budget.spend_categories}
        unbudgeted = 0
        for category, cents in spent_by_category.items():
            target = match_budget_category(category, budget.spend_categories)
            if target is None:
                unbudgeted += cents
            else:
                spent[target] += cents
        lines = [
            CategorySpend(name, spent[name], budget.spend_categories[name])
            for name in sorted(budget.spend_categories)
        ]
        if unbudgeted:
            lines.append(CategorySpend(UNBUDGETED, unbudgeted, None))
        return lines

    def build(self, today: Optional[date] = None) -> SolvencyReport:
        today = today or today_local()
        checkpoint = self.ledger.latest_checkpoint()
        budget = self.ledger.latest_budget()

        income = self.ledger.sum_income_since(checkpoint.day, today)
        expenses = self.ledger.sum_expense_since(checkpoint.day, today)
        by_category = self.ledger.expense_by_category_since(checkpoint.day, today)

        return SolvencyReport(
            today=today,
            checkpoint=checkpoint,
            budget=budget,
            income_cents=income,
            expense_cents=expenses,
            savings_rate=savings_rate(income, expenses),
            projected_balance_cents=checkpoint.assets + income - expenses,
            categories=self._category_lines(budget, by_category),
        )

    def generate(self, today: Optional[date] = None) -> str:
        return render_report(self.build(today))


def _format_alloc(alloc: Alloc) -> str:
    return f"{alloc.rate * 100:g}% + {format_major(alloc.flat)}"


def render_report(report: SolvencyReport) -> str:
    rate = "n/a" if report.savings_rate is None else f"{report.savings_rate}%"
    lines = [
        f"Report as of {report.today.isoformat()}",
        f"Checkpoint: {report.checkpoint.day.isoformat()}",
        f"  Assets at checkpoint: {format_major(report.checkpoint.assets)}",
        f"Income since checkpoint: {format_major(report.income_cents)}",
        f"Expenses since checkpoint: {format_major(report.expense_cents)}",
        f"Savings rate: {rate}",
        f"Projected balance: {format_major(report.projected_balance_cents)}",
        "",
        f"Budget effective {report.budget.start.isoformat()}",
        f"  Savings target: {_format_alloc(report.budget.savings)}",
        f"  Expenditure target: {_format_alloc(report.budget.expenditure)}",
    ]
    if report.categories:
        lines.append("  Spending by category:")
        for line in report.categories:
            target = "none" if line.alloc is None else _format_alloc(line.alloc)
            lines.append(
                f"    {line.name}: {format_major(line.spent_cents)} (target {target})"
            )
    return "\n".join(lines) + "\n"


def render_history(ledger: LedgerService) -> str:
    """Every stored record, newest first, grouped by kind."""
    lines = ["Checkpoints:"]
    for checkpoint in ledger.list_checkpoints():
        lines.append(f"  {checkpoint.day.isoformat()}  {format_major(checkpoint.assets)}")
    lines.append("Budgets:")
    for budget in ledger.list_budgets():
        lines.append(
            f"  {budget.start.isoformat()}  savings {_format_alloc(budget.savings)}"
            f", expenditure {_format_alloc(budget.expenditure)}"
            f", {len(budget.spend_categories)} categories"
        )
    lines.append("Income:")
    for income in ledger.list_income():
        lines.append(
            f"  {income.day.isoformat()}  {format_major(income.amount)}  {income.category}"
        )
    lines.append("Expenses:")
    for expense in ledger.list_expenses():
        lines.append(
            f"  {expense.day.isoformat()}  {format_major(expense.amount)}"
            f"  {expense.category}  {expense.detail}"
        )
    return "\n".join(lines) + "\n"


@dataclass
class IngestResult:
    stored: list[Record] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)


class IngestService:
    """Best-effort ingestion: a bad document is reported and skipped."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.ledger = LedgerService(session)

    def _skip(self, result: IngestResult, path: Path, reason: str) -> None:
        logger.warning(f"ingest_skipped: document={path} reason={reason}")
        result.failures.append((str(path), reason))

    def ingest_paths(self, paths: Sequence[Path | str]) -> IngestResult:
        result = IngestResult()
        for raw_path in paths:
            path = Path(raw_path)
            try:
                data = path.read_bytes()
            except OSError as exc:
                self._skip(result, path, f"could not read: {exc.strerror or exc}")
                continue
            try:
                record = parse_document(data)
            except ParseError as exc:
                self._skip(result, path, str(exc))
                continue
            try:
                self.ledger.insert(record)
            except RecordRejected as exc:
                self._skip(result, path, str(exc))
                continue
            logger.info(
                f"ingest_stored: document={path} kind={type(record).__name__.lower()}"
            )
            result.stored.append(record)
        return result
