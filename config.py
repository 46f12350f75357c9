import os
from functools import lru_cache
from pathlib import Path


STORAGE_BACKENDS = ("sql", "memory")


class Settings:
    def __init__(
        self,
        database_url: str,
        storage_backend: str,
        secret_key: str,
        session_max_age_hours: int,
        csrf_enabled: bool,
        bcrypt_rounds: int,
        admin_emails: frozenset[str],
        log_level: str,
        create_schema: bool,
    ) -> None:
        if storage_backend not in STORAGE_BACKENDS:
            raise ValueError(f"Unknown storage backend: {storage_backend}")
        self.database_url = database_url
        self.storage_backend = storage_backend
        self.secret_key = secret_key
        self.session_max_age_hours = session_max_age_hours
        self.csrf_enabled = csrf_enabled
        self.bcrypt_rounds = bcrypt_rounds
        self.admin_emails = admin_emails
        self.log_level = log_level
        self.create_schema = create_schema


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _admin_emails(raw: str) -> frozenset[str]:
    return frozenset(e.strip().lower() for e in raw.split(",") if e.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    storage_backend = os.getenv("EXPENSES_STORAGE", "sql").strip().lower()
    secret_key = os.getenv(
        "EXPENSES_SECRET_KEY",
        "4f1c0d93b7a2e8c5d6f0a9b1e3c7d2f8a4b6c0e9d1f3a5b7c9e0d2f4a6b8c1e3",
    )
    session_max_age_hours = int(os.getenv("EXPENSES_SESSION_MAX_AGE_HOURS", "168"))
    csrf_enabled = _env_flag("EXPENSES_CSRF_ENABLED", True)
    bcrypt_rounds = int(os.getenv("EXPENSES_BCRYPT_ROUNDS", "12"))
    admin_emails = _admin_emails(os.getenv("EXPENSES_ADMIN_EMAILS", ""))
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    create_schema = _env_flag("EXPENSES_CREATE_SCHEMA", True)
    return Settings(
        database_url=database_url,
        storage_backend=storage_backend,
        secret_key=secret_key,
        session_max_age_hours=session_max_age_hours,
        csrf_enabled=csrf_enabled,
        bcrypt_rounds=bcrypt_rounds,
        admin_emails=admin_emails,
        log_level=log_level,
        create_schema=create_schema,
    )
