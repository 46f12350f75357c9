import os
import tempfile

os.environ.setdefault("EXPENSES_DATA_DIR", tempfile.mkdtemp(prefix="expenses-test-"))
os.environ.setdefault("EXPENSES_STORAGE", "memory")
os.environ.setdefault("EXPENSES_BCRYPT_ROUNDS", "4")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, enable_sqlite_pragmas
from memory_storage import MemoryStorage
from models import UserRole
from services import AccountService
from sql_storage import SQLStorage


def make_sql_storage() -> SQLStorage:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SQLStorage(factory)


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    if request.param == "memory":
        return MemoryStorage()
    return make_sql_storage()


@pytest.fixture
def accounts(storage) -> AccountService:
    return AccountService(
        storage, bcrypt_rounds=4, admin_emails={"admin@example.com"}
    )


@pytest.fixture
def alice(storage):
    return storage.add_user(
        first_name="Alice",
        last_name="Archer",
        email="alice@example.com",
        phone=None,
        password_hash="x",
        role=UserRole.user,
    )


@pytest.fixture
def bob(storage):
    return storage.add_user(
        first_name="Bob",
        last_name="Baker",
        email="bob@example.com",
        phone=None,
        password_hash="x",
        role=UserRole.user,
    )


@pytest.fixture
def admin(storage):
    return storage.add_user(
        first_name="Ada",
        last_name="Admin",
        email="admin@example.com",
        phone=None,
        password_hash="x",
        role=UserRole.admin,
    )
