#!/usr/bin/env python3
"""
Database migration script using Alembic.

Runs all pending database migrations to upgrade the schema, or
downgrades with ``migrate.py downgrade [revision]``.
"""

import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

from memorygrove.common.logging_config import setup_logging
from memorygrove.config.settings import get_settings

project_root = Path(__file__).resolve().parent.parent
logger = logging.getLogger("migrate")


def _alembic_config() -> Config:
    settings = get_settings()
    alembic_cfg = Config()
    alembic_cfg.set_main_option(
        "script_location", str(project_root / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    return alembic_cfg


def run_migrations() -> int:
    """Upgrade the database to the latest revision."""
    logger.info("Running database migrations...")
    try:
        command.upgrade(_alembic_config(), "head")
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        return 1
    logger.info("Migrations completed successfully")
    return 0


def downgrade_migrations(revision: str = "-1") -> int:
    """
    Downgrade database migrations.

    Args:
        revision: Target revision to downgrade to (default: -1 for previous version)
    """
    logger.info(f"Downgrading database to revision: {revision}...")
    try:
        command.downgrade(_alembic_config(), revision)
    except Exception as e:
        logger.error(f"Downgrade failed: {e}")
        return 1
    logger.info("Downgrade completed successfully")
    return 0


if __name__ == "__main__":
    setup_logging("INFO", json_format=False)
    if len(sys.argv) > 1 and sys.argv[1] == "downgrade":
        revision = sys.argv[2] if len(sys.argv) > 2 else "-1"
        sys.exit(downgrade_migrations(revision))
    sys.exit(run_migrations())
