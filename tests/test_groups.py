from decimal import Decimal

import pytest

from auth import ensure_group_access
from errors import ConflictError, Forbidden, NotFoundError, ValidationError
from services import AggregationService, GroupService, TransactionService
from storage import Scope


def _expense(amount="12.00"):
    return {
        "type": "expense",
        "amount": amount,
        "category": "Food & Dining",
        "description": "Groceries",
    }


def test_only_admins_create_groups(storage, admin, alice) -> None:
    groups = GroupService(storage)

    with pytest.raises(Forbidden):
        groups.create_group(alice, {"name": "Flat"})

    group = groups.create_group(admin, {"name": "  Flat 3B ", "description": "  "})
    assert group.admin_id == admin.id
    assert group.name == "Flat 3B"
    assert group.description is None
    assert [g.id for g in groups.list_groups_by_admin(admin.id)] == [group.id]

    with pytest.raises(ValidationError):
        groups.create_group(admin, {"name": "X"})


def test_member_management(storage, admin, alice, bob) -> None:
    groups = GroupService(storage)
    group = groups.create_group(admin, {"name": "Trip"})

    member = groups.add_member(admin, group.id, {"email": "ALICE@example.com"})
    assert member.id == alice.id
    assert member.can_add_expense is False

    groups.add_member(admin, group.id, {"email": "bob@example.com", "canAddExpense": True})
    assert [(m.id, m.can_add_expense) for m in groups.list_members(admin, group.id)] == [
        (alice.id, False),
        (bob.id, True),
    ]

    with pytest.raises(ConflictError):
        groups.add_member(admin, group.id, {"email": "alice@example.com"})
    with pytest.raises(NotFoundError):
        groups.add_member(admin, group.id, {"email": "ghost@example.com"})
    with pytest.raises(ValidationError):
        groups.add_member(admin, group.id, {"email": "admin@example.com"})

    updated = groups.set_member_permission(admin, group.id, alice.id, True)
    assert updated.can_add_expense is True

    groups.remove_member(admin, group.id, bob.id)
    assert [m.id for m in groups.list_members(admin, group.id)] == [alice.id]
    with pytest.raises(NotFoundError):
        groups.remove_member(admin, group.id, bob.id)
    with pytest.raises(NotFoundError):
        groups.set_member_permission(admin, group.id, bob.id, True)


def test_only_the_group_admin_manages_members(storage, admin, alice, bob) -> None:
    groups = GroupService(storage)
    group = groups.create_group(admin, {"name": "Trip"})
    other_admin = storage.update_user(alice.id, role=admin.role)

    with pytest.raises(Forbidden):
        groups.add_member(other_admin, group.id, {"email": "bob@example.com"})
    with pytest.raises(Forbidden):
        groups.list_members(other_admin, group.id)
    with pytest.raises(NotFoundError):
        groups.list_members(admin, 999)


def test_list_groups_for_user_merges_admin_and_member_groups(
    storage, admin, alice
) -> None:
    groups = GroupService(storage)
    first = groups.create_group(admin, {"name": "First"})
    second = groups.create_group(admin, {"name": "Second"})
    groups.add_member(admin, second.id, {"email": "alice@example.com"})

    assert [g.id for g in groups.list_groups_for_user(alice.id)] == [second.id]
    assert [g.id for g in groups.list_groups_for_user(admin.id)] == [first.id, second.id]


def test_group_write_permission(storage, admin, alice, bob) -> None:
    groups = GroupService(storage)
    group = groups.create_group(admin, {"name": "Trip"})
    groups.add_member(admin, group.id, {"email": "alice@example.com"})
    groups.add_member(
        admin, group.id, {"email": "bob@example.com", "canAddExpense": True}
    )

    # Read access is enough to view; writing needs can_add_expense.
    ensure_group_access(storage, alice, group.id)
    with pytest.raises(Forbidden):
        ensure_group_access(storage, alice, group.id, write=True)

    ensure_group_access(storage, bob, group.id, write=True)
    TransactionService(storage).create(bob.id, _expense("30.00"), group_id=group.id)
    ensure_group_access(storage, admin, group.id, write=True)
    TransactionService(storage).create(admin.id, _expense("10.00"), group_id=group.id)

    balance = AggregationService(storage).compute_balance(Scope.group(group.id))
    assert balance.expenses == Decimal("40.00")
    assert balance.balance == Decimal("-40.00")

    groups.remove_member(admin, group.id, bob.id)
    with pytest.raises(Forbidden):
        ensure_group_access(storage, bob, group.id)
