import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from database import init_schema, session_scope
from errors import ConflictError
from models import Group, GroupMembership, Transaction, TransactionType, User, UserRole
from storage import Scope, Storage, TransactionQuery

logger = logging.getLogger(__name__)

USER_FIELDS = frozenset({"first_name", "last_name", "profile_image_url", "role"})


class SQLStorage(Storage):
    """Durable backend: one session (and one commit) per call."""

    def __init__(self, session_factory: sessionmaker, *, create_schema: bool = False) -> None:
        self.session_factory = session_factory
        self.create_schema = create_schema

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with session_scope(self.session_factory) as session:
            yield session

    def prepare(self) -> None:
        if self.create_schema:
            bind = self.session_factory.kw.get("bind")
            init_schema(bind)
            logger.info(f"schema_ready: url={bind.url.render_as_string(hide_password=True)}")

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
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            password_hash=password_hash,
            role=role,
        )
        try:
            with self._session() as session:
                session.add(user)
                session.flush()
        except IntegrityError as exc:
            raise ConflictError("User with this email or phone already exists") from exc
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._session() as session:
            return session.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as session:
            return session.scalar(select(User).where(User.email == email))

    def get_user_by_phone(self, phone: str) -> Optional[User]:
        with self._session() as session:
            return session.scalar(select(User).where(User.phone == phone))

    def update_user(self, user_id: int, **fields: object) -> Optional[User]:
        unknown = set(fields) - USER_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        with self._session() as session:
            user = session.get(User, user_id)
            if not user:
                return None
            for name, value in fields.items():
                setattr(user, name, value)
            session.flush()
            return user

    # groups

    def add_group(
        self, *, admin_id: int, name: str, description: Optional[str]
    ) -> Group:
        group = Group(admin_id=admin_id, name=name, description=description)
        with self._session() as session:
            session.add(group)
            session.flush()
        return group

    def get_group(self, group_id: int) -> Optional[Group]:
        with self._session() as session:
            return session.get(Group, group_id)

    def list_groups_by_admin(self, admin_id: int) -> list[Group]:
        stmt = select(Group).where(Group.admin_id == admin_id).order_by(Group.id)
        with self._session() as session:
            return list(session.scalars(stmt).all())

    def list_groups_for_member(self, user_id: int) -> list[Group]:
        stmt = (
            select(Group)
            .join(GroupMembership, GroupMembership.group_id == Group.id)
            .where(GroupMembership.user_id == user_id)
            .order_by(Group.id)
        )
        with self._session() as session:
            return list(session.scalars(stmt).all())

    # memberships

    def add_membership(
        self, *, group_id: int, user_id: int, can_add_expense: bool
    ) -> GroupMembership:
        membership = GroupMembership(
            group_id=group_id, user_id=user_id, can_add_expense=can_add_expense
        )
        try:
            with self._session() as session:
                session.add(membership)
                session.flush()
        except IntegrityError as exc:
            raise ConflictError("User is already a member of this group") from exc
        return membership

    def get_membership(self, group_id: int, user_id: int) -> Optional[GroupMembership]:
        stmt = select(GroupMembership).where(
            GroupMembership.group_id == group_id, GroupMembership.user_id == user_id
        )
        with self._session() as session:
            return session.scalar(stmt)

    def set_membership_permission(
        self, group_id: int, user_id: int, can_add_expense: bool
    ) -> Optional[GroupMembership]:
        stmt = select(GroupMembership).where(
            GroupMembership.group_id == group_id, GroupMembership.user_id == user_id
        )
        with self._session() as session:
            membership = session.scalar(stmt)
            if not membership:
                return None
            membership.can_add_expense = can_add_expense
            session.flush()
            return membership

    def remove_membership(self, group_id: int, user_id: int) -> bool:
        stmt = delete(GroupMembership).where(
            GroupMembership.group_id == group_id, GroupMembership.user_id == user_id
        )
        with self._session() as session:
            return (session.execute(stmt).rowcount or 0) > 0

    def list_members(self, group_id: int) -> list[tuple[User, GroupMembership]]:
        stmt = (
            select(User, GroupMembership)
            .join(GroupMembership, GroupMembership.user_id == User.id)
            .where(GroupMembership.group_id == group_id)
            .order_by(GroupMembership.id)
        )
        with self._session() as session:
            return [(row[0], row[1]) for row in session.execute(stmt).all()]

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
        txn = Transaction(
            user_id=user_id,
            group_id=group_id,
            type=type,
            amount_cents=amount_cents,
            category=category,
            description=description,
        )
        if occurred_at is not None:
            txn.occurred_at = occurred_at
        with self._session() as session:
            session.add(txn)
            session.flush()
        return txn

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        with self._session() as session:
            return session.get(Transaction, transaction_id)

    def delete_transaction(self, transaction_id: int) -> bool:
        stmt = delete(Transaction).where(Transaction.id == transaction_id)
        with self._session() as session:
            return (session.execute(stmt).rowcount or 0) > 0

    @staticmethod
    def _scope_clause(scope: Scope):
        if scope.kind == "group":
            return Transaction.group_id == scope.id
        return and_(Transaction.user_id == scope.id, Transaction.group_id.is_(None))

    def list_transactions(
        self, scope: Scope, query: Optional[TransactionQuery] = None
    ) -> list[Transaction]:
        query = query or TransactionQuery()
        stmt = select(Transaction).where(self._scope_clause(scope))
        if query.date_range is not None:
            if query.date_range.start is not None:
                stmt = stmt.where(Transaction.occurred_at >= query.date_range.start)
            if query.date_range.end is not None:
                stmt = stmt.where(Transaction.occurred_at <= query.date_range.end)
        if query.category is not None:
            stmt = stmt.where(Transaction.category == query.category)
        if query.type is not None:
            stmt = stmt.where(Transaction.type == query.type)
        if query.newest_first:
            stmt = stmt.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        else:
            stmt = stmt.order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        with self._session() as session:
            return list(session.scalars(stmt).all())

    def totals_by_type(self, scope: Scope) -> dict[TransactionType, int]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(self._scope_clause(scope))
            .group_by(Transaction.type)
        )
        totals = {txn_type: 0 for txn_type in TransactionType}
        with self._session() as session:
            for row in session.execute(stmt).all():
                totals[TransactionType(row.type)] = int(row.total or 0)
        return totals

    def expense_totals_by_category(self, scope: Scope) -> list[tuple[str, int]]:
        first_id = func.min(Transaction.id).label("first_id")
        stmt = (
            select(
                Transaction.category,
                func.sum(Transaction.amount_cents).label("total"),
                first_id,
            )
            .where(
                self._scope_clause(scope),
                Transaction.type == TransactionType.expense,
            )
            .group_by(Transaction.category)
            .order_by(first_id)
        )
        with self._session() as session:
            return [
                (row.category, int(row.total or 0))
                for row in session.execute(stmt).all()
            ]
