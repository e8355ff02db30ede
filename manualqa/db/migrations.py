"""
Database migration utilities.
"""
import os

from sqlalchemy import text

from ..logging_config import logger

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), "scripts")


def run_sql_migrations(engine, embed_dim: int, migrations_dir: str = MIGRATIONS_DIR):
    """
    Apply every *.sql script in migrations_dir, in file-name order, inside one
    transaction. Scripts are written to be re-runnable (IF NOT EXISTS), so this
    runs on every startup. {{EMBED_DIM}} in a script becomes the configured
    vector dimension.

    Raises:
        sqlalchemy.exc.SQLAlchemyError: a script failed; nothing is committed
    """
    if not os.path.exists(migrations_dir):
        logger.warning("Migrations directory not found", path=migrations_dir)
        return

    migration_files = sorted(f for f in os.listdir(migrations_dir) if f.endswith(".sql"))
    if not migration_files:
        logger.warning("No migration files found", path=migrations_dir)
        return

    with engine.begin() as conn:
        for filename in migration_files:
            filepath = os.path.join(migrations_dir, filename)
            logger.info("Running migration", file=filename)

            with open(filepath, "r", encoding="utf-8") as f:
                sql = f.read().replace("{{EMBED_DIM}}", str(int(embed_dim)))

            conn.execute(text(sql))

    logger.info("Migrations complete", count=len(migration_files))
