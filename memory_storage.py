import itertools
import threading
from datetime import datetime
from typing import Optional

from errors import ConflictError
from models import (
    Group,
    GroupMembership,
    Transaction,
    TransactionType,
    User,
    UserRole,
    utcnow,
)
from storage import Scope, Storage, TransactionQuery

USER_FIELDS = frozenset({"first_name", "last_name", "profile_image_url", "role"})


class MemoryStorage(Storage):
    """Process-local arena: id -> record dicts with increasing id counters.

    Records are the same mapped classes the SQL backend returns, just never
    attached to a session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[int, User] = {}
        self._groups: dict[int, Group] = {}
        self._memberships: dict[int, GroupMembership] = {}
        self._transactions: dict[int, Transaction] = {}
        self._ids = {
            "users": itertools.count(1),
            "groups": itertools.count(1),
            "memberships": itertools.count(1),
            "transactions": itertools.count(1),
        }

    def _stamp(self, table: str) -> dict[str, object]:
        now = utcnow()
        return {"id": next(self._ids[table]), "created_at": now, "updated_at": now}

    # users

    def add_user(
        self,
        *,
        first_name: str,
        last_name: str,
        email: Optional[str],
        phone: Optional[str],
        password_hash: str,
        role: UserRole,
    ) -> User:
        with self._lock:
            for existing in self._users.values():
                if (email is not None and existing.email == email) or (
                    phone is not None and existing.phone == phone
                ):
                    raise ConflictError("User with this email or phone already exists")
            user = User(
                first_name=first_name,
                last_name=last_name,
                email=email,
                phone=phone,
                profile_image_url=None,
                password_hash=password_hash,
                role=role,
                **self._stamp("users"),
            )
            self._users[user.id] = user
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        return self._users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.email == email), None)

    def get_user_by_phone(self, phone: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.phone == phone), None)

    def update_user(self, user_id: int, **fields: object) -> Optional[User]:
        unknown = set(fields) - USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        with self._lock:
            user = self._users.get(user_id)
            if not user:
                return None
            for name, value in fields.items():
                setattr(user, name, value)
            user.updated_at = utcnow()
            return user

    # groups

    def add_group(
        self, *, admin_id: int, name: str, description: Optional[str]
    ) -> Group:
        with self._lock:
            group = Group(
                admin_id=admin_id,
                name=name,
                description=description,
                **self._stamp("groups"),
            )
            self._groups[group.id] = group
            return group

    def get_group(self, group_id: int) -> Optional[Group]:
        return self._groups.get(group_id)

    def list_groups_by_admin(self, admin_id: int) -> list[Group]:
        with self._lock:
            return [g for g in self._groups.values() if g.admin_id == admin_id]

    def list_groups_for_member(self, user_id: int) -> list[Group]:
        with self._lock:
            group_ids = {
                m.group_id for m in self._memberships.values() if m.user_id == user_id
            }
            return [g for g in self._groups.values() if g.id in group_ids]

    # memberships

    # Callers hold self._lock.
    def _find_membership(
        self, group_id: int, user_id: int
    ) -> Optional[GroupMembership]:
        return next(
            (
                m
                for m in self._memberships.values()
                if m.group_id == group_id and m.user_id == user_id
            ),
            None,
        )

    def add_membership(
        self, *, group_id: int, user_id: int, can_add_expense: bool
    ) -> GroupMembership:
        with self._lock:
            if self._find_membership(group_id, user_id):
                raise ConflictError("User is already a member of this group")
            membership = GroupMembership(
                group_id=group_id,
                user_id=user_id,
                can_add_expense=can_add_expense,
                **self._stamp("memberships"),
            )
            self._memberships[membership.id] = membership
            return membership

    def get_membership(self, group_id: int, user_id: int) -> Optional[GroupMembership]:
        with self._lock:
            return self._find_membership(group_id, user_id)

    def set_membership_permission(
        self, group_id: int, user_id: int, can_add_expense: bool
    ) -> Optional[GroupMembership]:
        with self._lock:
            membership = self._find_membership(group_id, user_id)
            if not membership:
                return None
            membership.can_add_expense = can_add_expense
            membership.updated_at = utcnow()
            return membership

    def remove_membership(self, group_id: int, user_id: int) -> bool:
        with self._lock:
            membership = self._find_membership(group_id, user_id)
            if not membership:
                return False
            del self._memberships[membership.id]
            return True

    def list_members(self, group_id: int) -> list[tuple[User, GroupMembership]]:
        with self._lock:
            return [
                (self._users[m.user_id], m)
                for m in self._memberships.values()
                if m.group_id == group_id and m.user_id in self._users
            ]

    # transactions

    def add_transaction(
        self,
        *,
        user_id: int,
        group_id: Optional[int],
        type: TransactionType,
        amount_cents: int,
        category: str,
        description: str,
        occurred_at: Optional[datetime] = None,
    ) -> Transaction:
        with self._lock:
            stamp = self._stamp("transactions")
            txn = Transaction(
                user_id=user_id,
                group_id=group_id,
                type=type,
                amount_cents=amount_cents,
                category=category,
                description=description,
                occurred_at=occurred_at or stamp["created_at"],
                **stamp,
            )
            self._transactions[txn.id] = txn
            return txn

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return self._transactions.get(transaction_id)

    def delete_transaction(self, transaction_id: int) -> bool:
        with self._lock:
            return self._transactions.pop(transaction_id, None) is not None

    @staticmethod
    def _in_scope(txn: Transaction, scope: Scope) -> bool:
        if scope.kind == "group":
            return txn.group_id == scope.id
        return txn.user_id == scope.id and txn.group_id is None

    def _scoped(self, scope: Scope) -> list[Transaction]:
        with self._lock:
            return [t for t in self._transactions.values() if self._in_scope(t, scope)]

    def list_transactions(
        self, scope: Scope, query: Optional[TransactionQuery] = None
    ) -> list[Transaction]:
        query = query or TransactionQuery()
        items = self._scoped(scope)
        if query.date_range is not None:
            items = [t for t in items if query.date_range.contains(t.occurred_at)]
        if query.category is not None:
            items = [t for t in items if t.category == query.category]
        if query.type is not None:
            items = [t for t in items if t.type == query.type]
        items.sort(key=lambda t: (t.occurred_at, t.id), reverse=query.newest_first)
        return items

    def totals_by_type(self, scope: Scope) -> dict[TransactionType, int]:
        totals = {txn_type: 0 for txn_type in TransactionType}
        for txn in self._scoped(scope):
            totals[txn.type] += txn.amount_cents
        return totals

    def expense_totals_by_category(self, scope: Scope) -> list[tuple[str, int]]:
        totals: dict[str, int] = {}
        for txn in self._scoped(scope):
            if txn.type != TransactionType.expense:
                continue
            totals[txn.category] = totals.get(txn.category, 0) + txn.amount_cents
        return list(totals.items())
