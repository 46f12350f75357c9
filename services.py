from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Union

from auth import (
    dummy_password_hash,
    ensure_admin,
    ensure_group_access,
    ensure_group_admin,
    hash_password,
    verify_password,
)
from config import get_settings
from errors import (
    ConflictError,
    Forbidden,
    InvalidCredentials,
    NotFoundError,
    ValidationError,
)
from models import Group, GroupMembership, Transaction, TransactionType, User, UserRole
from money import cents_to_decimal, percentage
from periods import DateInput, resolve_range
from schemas import (
    GroupIn,
    MemberIn,
    ProfileUpdateIn,
    SignupIn,
    TransactionIn,
    parse_payload,
)
from storage import Scope, Storage, TransactionQuery

logger = logging.getLogger(__name__)

Payload = Mapping[str, Any]


@dataclass(frozen=True)
class Balance:
    balance: Decimal
    income: Decimal
    expenses: Decimal


@dataclass(frozen=True)
class CategorySpending:
    category: str
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class Member:
    id: int
    first_name: str
    last_name: str
    email: Optional[str]
    phone: Optional[str]
    can_add_expense: bool

    @classmethod
    def from_rows(cls, user: User, membership: GroupMembership) -> "Member":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            phone=user.phone,
            can_add_expense=membership.can_add_expense,
        )


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    return "".join(phone.split())


class AggregationService:
    """Read-only aggregates over one user's or one group's transactions."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def _require_scope(self, scope: Scope) -> None:
        if not self.storage.scope_exists(scope):
            label = "User" if scope.kind == "user" else "Group"
            raise NotFoundError(f"{label} not found")

    def compute_balance(self, scope: Scope) -> Balance:
        self._require_scope(scope)
        totals = self.storage.totals_by_type(scope)
        income = totals.get(TransactionType.income, 0)
        expenses = totals.get(TransactionType.expense, 0)
        return Balance(
            balance=cents_to_decimal(income - expenses),
            income=cents_to_decimal(income),
            expenses=cents_to_decimal(expenses),
        )

    def compute_category_spending(self, scope: Scope) -> list[CategorySpending]:
        self._require_scope(scope)
        rows = self.storage.expense_totals_by_category(scope)
        total = sum(cents for _, cents in rows)
        # sorted() is stable, so equal amounts keep first-seen order.
        ranked = sorted(rows, key=lambda row: row[1], reverse=True)
        return [
            CategorySpending(
                category=category,
                amount=cents_to_decimal(cents),
                percentage=percentage(cents, total),
            )
            for category, cents in ranked
        ]

    def list_transactions(
        self, scope: Scope, *, newest_first: bool = False
    ) -> list[Transaction]:
        return self.search(scope, newest_first=newest_first)

    def filter_by_date_range(
        self, scope: Scope, start: DateInput, end: DateInput
    ) -> list[Transaction]:
        return self.search(scope, start=start, end=end)

    def filter_by_category(self, scope: Scope, category: str) -> list[Transaction]:
        return self.search(scope, category=category)

    def filter_by_type(
        self, scope: Scope, transaction_type: TransactionType
    ) -> list[Transaction]:
        return self.search(scope, transaction_type=transaction_type)

    def search(
        self,
        scope: Scope,
        *,
        start: DateInput = None,
        end: DateInput = None,
        category: Optional[str] = None,
        transaction_type: Optional[TransactionType] = None,
        newest_first: bool = False,
    ) -> list[Transaction]:
        date_range = resolve_range(start, end)
        self._require_scope(scope)
        query = TransactionQuery(
            date_range=date_range
            if date_range.start is not None or date_range.end is not None
            else None,
            category=category,
            type=transaction_type,
            newest_first=newest_first,
        )
        return self.storage.list_transactions(scope, query)


class TransactionService:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def create(
        self,
        owner_id: int,
        data: Union[TransactionIn, Payload],
        group_id: Optional[int] = None,
    ) -> Transaction:
        payload = parse_payload(TransactionIn, data)
        if not self.storage.get_user(owner_id):
            raise NotFoundError("User not found")
        if group_id is not None and not self.storage.get_group(group_id):
            raise NotFoundError("Group not found")
        txn = self.storage.add_transaction(
            user_id=owner_id,
            group_id=group_id,
            type=payload.type,
            amount_cents=payload.amount_cents,
            category=payload.category,
            description=payload.description,
        )
        logger.info(
            f"transaction_created: id={txn.id} user_id={owner_id} "
            f"group_id={group_id} type={txn.type.value}"
        )
        return txn

    def get_by_id(self, transaction_id: int) -> Optional[Transaction]:
        return self.storage.get_transaction(transaction_id)

    def delete(self, transaction_id: int) -> bool:
        removed = self.storage.delete_transaction(transaction_id)
        if removed:
            logger.info(f"transaction_deleted: id={transaction_id}")
        return removed

    def get_for(self, user: User, transaction_id: int) -> Transaction:
        txn = self.get_by_id(transaction_id)
        if not txn:
            raise NotFoundError("Transaction not found")
        if txn.group_id is not None:
            ensure_group_access(self.storage, user, txn.group_id)
        elif txn.user_id != user.id:
            raise NotFoundError("Transaction not found")
        return txn

    def delete_for(self, user: User, transaction_id: int) -> bool:
        """Delete on behalf of ``user``: the owner, or the admin of the group."""
        txn = self.get_by_id(transaction_id)
        if not txn:
            return False
        if txn.user_id != user.id:
            group = self.storage.get_group(txn.group_id) if txn.group_id else None
            if group is None:
                # Other people's personal transactions are not visible at all.
                return False
            if group.admin_id != user.id:
                raise Forbidden("Only the owner or the group admin can delete this")
        return self.delete(transaction_id)


class AccountService:
    def __init__(
        self,
        storage: Storage,
        *,
        bcrypt_rounds: Optional[int] = None,
        admin_emails: Optional[Iterable[str]] = None,
    ) -> None:
        settings = None
        if bcrypt_rounds is None or admin_emails is None:
            settings = get_settings()
        self.storage = storage
        self.bcrypt_rounds = (
            bcrypt_rounds if bcrypt_rounds is not None else settings.bcrypt_rounds
        )
        self.admin_emails = frozenset(
            normalize_email(e)
            for e in (admin_emails if admin_emails is not None else settings.admin_emails)
        )

    def create_user(self, data: Union[SignupIn, Payload]) -> User:
        payload = parse_payload(SignupIn, data)
        email = normalize_email(payload.email) if payload.email else None
        phone = normalize_phone(payload.phone) if payload.phone else None

        if email and self.storage.get_user_by_email(email):
            raise ConflictError("User with this email already exists")
        if phone and self.storage.get_user_by_phone(phone):
            raise ConflictError("User with this phone already exists")

        role = UserRole.admin if email and email in self.admin_emails else UserRole.user
        user = self.storage.add_user(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=email,
            phone=phone,
            password_hash=hash_password(payload.password, self.bcrypt_rounds),
            role=role,
        )
        logger.info(f"user_created: id={user.id} role={user.role.value}")
        return user

    def _lookup(self, identifier: str) -> Optional[User]:
        clean = identifier.strip()
        if not clean:
            return None
        if "@" in clean:
            return self.storage.get_user_by_email(normalize_email(clean))
        return self.storage.get_user_by_phone(normalize_phone(clean))

    def authenticate(self, identifier: str, password: str) -> User:
        user = self._lookup(identifier or "")
        if user is None:
            verify_password(password or "", dummy_password_hash(self.bcrypt_rounds))
            logger.info("signin_failed")
            raise InvalidCredentials()
        if not verify_password(password or "", user.password_hash):
            logger.info("signin_failed")
            raise InvalidCredentials()
        logger.info(f"signin_succeeded: user_id={user.id}")
        return user

    def update_profile(
        self, user_id: int, data: Union[ProfileUpdateIn, Payload]
    ) -> User:
        payload = parse_payload(ProfileUpdateIn, data)
        fields = {
            name: value.strip() if isinstance(value, str) else value
            for name, value in payload.model_dump(exclude_unset=True).items()
        }
        user = self.storage.update_user(user_id, **fields)
        if not user:
            raise NotFoundError("User not found")
        return user

    def promote_to_admin(self, actor: User, email: str) -> User:
        ensure_admin(actor)
        user = self.storage.get_user_by_email(normalize_email(email))
        if not user:
            raise NotFoundError("User not found")
        if user.role == UserRole.admin:
            return user
        updated = self.storage.update_user(user.id, role=UserRole.admin)
        logger.info(f"user_promoted: id={user.id} by={actor.id}")
        return updated


class GroupService:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def create_group(self, actor: User, data: Union[GroupIn, Payload]) -> Group:
        ensure_admin(actor)
        payload = parse_payload(GroupIn, data)
        description = (payload.description or "").strip() or None
        group = self.storage.add_group(
            admin_id=actor.id, name=payload.name, description=description
        )
        logger.info(f"group_created: id={group.id} admin_id={actor.id}")
        return group

    def list_groups_by_admin(self, admin_id: int) -> list[Group]:
        return self.storage.list_groups_by_admin(admin_id)

    def list_groups_for_user(self, user_id: int) -> list[Group]:
        """Groups the user administers or belongs to, by id."""
        groups = {g.id: g for g in self.storage.list_groups_by_admin(user_id)}
        for group in self.storage.list_groups_for_member(user_id):
            groups.setdefault(group.id, group)
        return [groups[group_id] for group_id in sorted(groups)]

    def add_member(
        self, actor: User, group_id: int, data: Union[MemberIn, Payload]
    ) -> Member:
        group = ensure_group_admin(self.storage, actor, group_id)
        payload = parse_payload(MemberIn, data)
        user = self.storage.get_user_by_email(normalize_email(payload.email))
        if not user:
            raise NotFoundError("No user with this email")
        if user.id == group.admin_id:
            raise ValidationError.for_field(
                "email", "The group admin cannot be added as a member"
            )
        membership = self.storage.add_membership(
            group_id=group.id, user_id=user.id, can_add_expense=payload.can_add_expense
        )
        logger.info(
            f"member_added: group_id={group.id} user_id={user.id} "
            f"can_add_expense={membership.can_add_expense}"
        )
        return Member.from_rows(user, membership)

    def set_member_permission(
        self, actor: User, group_id: int, user_id: int, can_add_expense: bool
    ) -> Member:
        ensure_group_admin(self.storage, actor, group_id)
        membership = self.storage.set_membership_permission(
            group_id, user_id, can_add_expense
        )
        user = self.storage.get_user(user_id)
        if not membership or not user:
            raise NotFoundError("Member not found")
        logger.info(
            f"member_permission_changed: group_id={group_id} user_id={user_id} "
            f"can_add_expense={can_add_expense}"
        )
        return Member.from_rows(user, membership)

    def remove_member(self, actor: User, group_id: int, user_id: int) -> None:
        ensure_group_admin(self.storage, actor, group_id)
        if not self.storage.remove_membership(group_id, user_id):
            raise NotFoundError("Member not found")
        logger.info(f"member_removed: group_id={group_id} user_id={user_id}")

    def list_members(self, actor: User, group_id: int) -> list[Member]:
        ensure_group_admin(self.storage, actor, group_id)
        return [
            Member.from_rows(user, membership)
            for user, membership in self.storage.list_members(group_id)
        ]
