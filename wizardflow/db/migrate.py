from __future__ import annotations
import logging
from pathlib import Path
from alembic import command
from alembic.config import Config
from wizardflow.core.config import settings

log = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[2]


def alembic_config(database_url: str | None = None) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", database_url or settings.database_url)
    return cfg


def run_migrations(database_url: str | None = None, revision: str = "head") -> None:
    """Upgrade the snapshot database to ``revision``."""
    url = database_url or settings.database_url
    log.info("Running migrations to %s", revision, extra={"session_id": "-", "stage": "-"})
    command.upgrade(alembic_config(url), revision)
