from datetime import datetime
from decimal import Decimal

import pytest

from errors import NotFoundError, ValidationError
from models import TransactionType
from services import AggregationService, TransactionService
from storage import Scope


def _add(storage, user, type_, amount, category, when=None, group_id=None):
    if when is None:
        return TransactionService(storage).create(
            user.id,
            {"type": type_, "amount": amount, "category": category, "description": "x"},
            group_id=group_id,
        )
    # Seed directly to control occurred_at.
    return storage.add_transaction(
        user_id=user.id,
        group_id=group_id,
        type=TransactionType(type_),
        amount_cents=int(Decimal(amount) * 100),
        category=category,
        description="x",
        occurred_at=when,
    )


def test_balance_and_category_spending(storage, alice) -> None:
    _add(storage, alice, "income", "3200.00", "Salary")
    _add(storage, alice, "expense", "4.50", "Food & Dining")
    _add(storage, alice, "expense", "42.80", "Transportation")

    service = AggregationService(storage)
    balance = service.compute_balance(Scope.user(alice.id))
    assert balance.balance == Decimal("3152.70")
    assert balance.income == Decimal("3200.00")
    assert balance.expenses == Decimal("47.30")

    spending = service.compute_category_spending(Scope.user(alice.id))
    assert [(s.category, s.amount, s.percentage) for s in spending] == [
        ("Transportation", Decimal("42.80"), Decimal("90.49")),
        ("Food & Dining", Decimal("4.50"), Decimal("9.51")),
    ]


def test_empty_scope_is_all_zero(storage, alice) -> None:
    service = AggregationService(storage)
    balance = service.compute_balance(Scope.user(alice.id))
    assert (balance.balance, balance.income, balance.expenses) == (
        Decimal("0.00"),
        Decimal("0.00"),
        Decimal("0.00"),
    )
    assert service.compute_category_spending(Scope.user(alice.id)) == []


def test_small_amounts_sum_exactly(storage, alice) -> None:
    _add(storage, alice, "expense", "0.10", "Other")
    _add(storage, alice, "expense", "0.20", "Other")

    balance = AggregationService(storage).compute_balance(Scope.user(alice.id))
    assert balance.expenses == Decimal("0.30")
    assert balance.balance == Decimal("-0.30")


def test_category_spending_groups_and_keeps_tie_order(storage, alice) -> None:
    _add(storage, alice, "expense", "10.00", "Shopping")
    _add(storage, alice, "expense", "5.00", "food")
    _add(storage, alice, "expense", "5.00", "Food")
    _add(storage, alice, "expense", "2.50", "Healthcare")
    _add(storage, alice, "expense", "2.50", "Healthcare")
    _add(storage, alice, "income", "99.00", "Shopping")

    spending = AggregationService(storage).compute_category_spending(
        Scope.user(alice.id)
    )
    assert [s.category for s in spending] == ["Shopping", "food", "Food", "Healthcare"]
    assert spending[0].amount == Decimal("10.00")
    assert spending[-1].amount == Decimal("5.00")
    assert sum(s.percentage for s in spending) == Decimal("100.00")


def test_user_scope_excludes_group_transactions(storage, alice, admin) -> None:
    group = storage.add_group(admin_id=admin.id, name="Trip", description=None)
    _add(storage, alice, "expense", "10.00", "Other")
    _add(storage, alice, "expense", "25.00", "Other", group_id=group.id)

    service = AggregationService(storage)
    assert service.compute_balance(Scope.user(alice.id)).expenses == Decimal("10.00")
    assert service.compute_balance(Scope.group(group.id)).expenses == Decimal("25.00")
    assert [t.group_id for t in service.list_transactions(Scope.group(group.id))] == [
        group.id
    ]


def test_filter_by_date_range_is_inclusive(storage, alice) -> None:
    _add(storage, alice, "expense", "1.00", "A", when=datetime(2023, 12, 31, 23, 0))
    jan1 = _add(storage, alice, "expense", "2.00", "B", when=datetime(2024, 1, 1, 0, 0))
    jan31 = _add(
        storage, alice, "expense", "3.00", "C", when=datetime(2024, 1, 31, 18, 30)
    )
    _add(storage, alice, "expense", "4.00", "D", when=datetime(2024, 2, 1, 0, 0))

    found = AggregationService(storage).filter_by_date_range(
        Scope.user(alice.id), "2024-01-01", "2024-01-31"
    )
    assert [t.id for t in found] == [jan1.id, jan31.id]


def test_filter_by_category_and_type(storage, alice) -> None:
    _add(storage, alice, "expense", "1.00", "Food & Dining")
    _add(storage, alice, "expense", "2.00", "food & dining")
    _add(storage, alice, "income", "3.00", "Salary")

    service = AggregationService(storage)
    scope = Scope.user(alice.id)
    assert [t.amount for t in service.filter_by_category(scope, "Food & Dining")] == [
        Decimal("1.00")
    ]
    assert [t.category for t in service.filter_by_type(scope, TransactionType.income)] == [
        "Salary"
    ]


def test_list_transactions_ordering(storage, alice) -> None:
    old = _add(storage, alice, "expense", "1.00", "A", when=datetime(2024, 1, 1))
    new = _add(storage, alice, "expense", "2.00", "B", when=datetime(2024, 6, 1))

    service = AggregationService(storage)
    scope = Scope.user(alice.id)
    assert [t.id for t in service.list_transactions(scope)] == [old.id, new.id]
    assert [t.id for t in service.list_transactions(scope, newest_first=True)] == [
        new.id,
        old.id,
    ]


def test_unknown_scope_raises_not_found(storage) -> None:
    service = AggregationService(storage)
    with pytest.raises(NotFoundError):
        service.compute_balance(Scope.user(999))
    with pytest.raises(NotFoundError):
        service.compute_category_spending(Scope.group(999))


def test_invalid_date_raises_validation_error(storage, alice) -> None:
    with pytest.raises(ValidationError):
        AggregationService(storage).filter_by_date_range(
            Scope.user(alice.id), "2024-13-45", None
        )
