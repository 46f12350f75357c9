"""Storage contract shared by the SQL and in-memory backends.

Services only talk to a ``Storage``; which backend is behind it is decided once
at process start by ``build_storage``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from config import Settings
from models import Group, GroupMembership, Transaction, TransactionType, User, UserRole
from periods import DateRange


@dataclass(frozen=True)
class Scope:
    kind: Literal["user", "group"]
    id: int

    @classmethod
    def user(cls, user_id: int) -> "Scope":
        return cls("user", user_id)

    @classmethod
    def group(cls, group_id: int) -> "Scope":
        return cls("group", group_id)


@dataclass(frozen=True)
class TransactionQuery:
    date_range: Optional[DateRange] = None
    category: Optional[str] = None
    type: Optional[TransactionType] = None
    newest_first: bool = False


class Storage(ABC):
    # users
    @abstractmethod
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
        """Insert a user; a taken email or phone raises ConflictError."""

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    def get_user_by_phone(self, phone: str) -> Optional[User]: ...

    @abstractmethod
    def update_user(self, user_id: int, **fields: object) -> Optional[User]: ...

    # groups
    @abstractmethod
    def add_group(
        self, *, admin_id: int, name: str, description: Optional[str]
    ) -> Group: ...

    @abstractmethod
    def get_group(self, group_id: int) -> Optional[Group]: ...

    @abstractmethod
    def list_groups_by_admin(self, admin_id: int) -> list[Group]: ...

    @abstractmethod
    def list_groups_for_member(self, user_id: int) -> list[Group]: ...

    # memberships
    @abstractmethod
    def add_membership(
        self, *, group_id: int, user_id: int, can_add_expense: bool
    ) -> GroupMembership:
        """Insert a membership; an existing (user, group) pair raises ConflictError."""

    @abstractmethod
    def get_membership(
        self, group_id: int, user_id: int
    ) -> Optional[GroupMembership]: ...

    @abstractmethod
    def set_membership_permission(
        self, group_id: int, user_id: int, can_add_expense: bool
    ) -> Optional[GroupMembership]: ...

    @abstractmethod
    def remove_membership(self, group_id: int, user_id: int) -> bool: ...

    @abstractmethod
    def list_members(self, group_id: int) -> list[tuple[User, GroupMembership]]:
        """Members of a group with their membership rows, in join order."""

    # transactions
    @abstractmethod
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
        """Insert a transaction; ``occurred_at`` defaults to now."""

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]: ...

    @abstractmethod
    def delete_transaction(self, transaction_id: int) -> bool: ...

    @abstractmethod
    def list_transactions(
        self, scope: Scope, query: Optional[TransactionQuery] = None
    ) -> list[Transaction]:
        """Transactions in scope, oldest first unless ``query.newest_first``."""

    @abstractmethod
    def totals_by_type(self, scope: Scope) -> dict[TransactionType, int]:
        """Summed cents per transaction type; types with no rows are 0."""

    @abstractmethod
    def expense_totals_by_category(self, scope: Scope) -> list[tuple[str, int]]:
        """Summed expense cents per category, in first-seen order."""

    def scope_exists(self, scope: Scope) -> bool:
        if scope.kind == "user":
            return self.get_user(scope.id) is not None
        return self.get_group(scope.id) is not None

    def prepare(self) -> None:
        """Called once at startup before serving requests."""


def build_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "memory":
        from memory_storage import MemoryStorage

        return MemoryStorage()

    from database import SessionLocal
    from sql_storage import SQLStorage

    return SQLStorage(SessionLocal, create_schema=settings.create_schema)
