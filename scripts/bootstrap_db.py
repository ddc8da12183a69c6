"""
Scripts - Bootstrap Database.

============================================================
RESPONSIBILITY
============================================================
Initializes the database for first-time setup.

- Verifies the connection
- Creates every pipeline table
- Optionally drops existing tables first

============================================================
USAGE
============================================================
python -m scripts.bootstrap_db

Options:
  --drop-existing    Drop existing tables (DANGEROUS)
  --validate-only    Only verify the connection

============================================================
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from storage.database import Database, DatabaseConfig, create_schema, drop_schema
from storage.repositories.exceptions import RepositoryException


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

logger = logging.getLogger("bootstrap_db")


async def bootstrap(drop_existing: bool, validate_only: bool) -> int:
    config = DatabaseConfig.from_env()
    database = Database.from_config(config)
    try:
        await database.verify_connection()
        if validate_only:
            return 0

        if drop_existing:
            logger.warning("Dropping existing tables")
            await drop_schema(database.engine)

        await create_schema(database.engine)
        logger.info("Database bootstrap complete")
        return 0
    except RepositoryException as e:
        logger.error(f"Database bootstrap failed: {e}")
        return 1
    finally:
        await database.dispose()


def main() -> None:
    """Bootstrap database entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Create the chat pipeline schema")
    parser.add_argument("--drop-existing", action="store_true", help="Drop existing tables first")
    parser.add_argument("--validate-only", action="store_true", help="Only verify the connection")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    setup_logging(args.log_level)
    sys.exit(asyncio.run(bootstrap(args.drop_existing, args.validate_only)))


if __name__ == "__main__":
    main()
