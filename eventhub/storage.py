"""Database initialization and schema upgrades."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import URL, Engine

from .database import engine

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"
APP_TABLES = ("users", "categories", "events", "registrations")


def init_db() -> list[str]:
    """Bring the schema up to date at startup (no backup)."""
    return upgrade_database(make_backup=False)


def _alembic_config(bind: Engine) -> Config:
    ini_path = MIGRATIONS_DIR.parent / "alembic.ini"
    config = Config(str(ini_path)) if ini_path.is_file() else Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    # ConfigParser interpolation treats '%' specially.
    url = bind.url.render_as_string(hide_password=False).replace("%", "%%")
    config.set_main_option("sqlalchemy.url", url)
    return config


def _sqlite_file(url: URL) -> Path | None:
    if url.get_backend_name() != "sqlite":
        return None
    if not url.database or url.database == ":memory:":
        return None
    return Path(url.database)


def _backup_sqlite(url: URL) -> Path | None:
    db_path = _sqlite_file(url)
    if db_path is None or not db_path.exists():
        return None
    backup_path = db_path.with_name(db_path.name + ".bak")
    shutil.copy2(db_path, backup_path)
    return backup_path


def _schema_state(bind: Engine) -> str:
    inspector = inspect(bind)
    if inspector.has_table("alembic_version"):
        return "tracked"
    if any(inspector.has_table(name) for name in APP_TABLES):
        return "untracked"
    return "empty"


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Migrate the schema to the latest revision.

    Databases whose tables predate migration tracking are stamped at head
    rather than migrated. Returns a description of each step taken.
    """
    actions: list[str] = []
    if make_backup:
        backup_path = _backup_sqlite(engine.url)
        if backup_path:
            actions.append(f"Backup created at {backup_path}")

    config = _alembic_config(engine)
    state = _schema_state(engine)
    if state == "untracked":
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append(
            "Ran Alembic upgrade to head (fresh database)"
            if state == "empty"
            else "Applied Alembic migrations to head"
        )

    for action in actions:
        logger.info(action)
    return actions
