#!/usr/bin/env python3
"""Create the landclaim tables and optionally refresh territory status."""

import argparse
import sys

import structlog
from sqlalchemy import inspect

from .connection import db
from .store import StoreOptions, TerritoryStore
from ..config.config import settings

logger = structlog.get_logger()


def main(argv=None) -> bool:
    parser = argparse.ArgumentParser(description="Initialize the land claim database")
    parser.add_argument("--url", help="SQLAlchemy URL (defaults to the configured database)")
    parser.add_argument("--echo", action="store_true", help="Log emitted SQL")
    parser.add_argument(
        "--sweep", action="store_true", help="Bring stored territory status up to date"
    )
    args = parser.parse_args(argv)

    try:
        print("Initializing database...")
        db.initialize(args.url, echo=args.echo)
        tables = sorted(inspect(db.engine).get_table_names())
        print(f"✓ Connected ({db.dialect_name})")
        print(f"✓ Tables: {', '.join(tables)}")

        if args.sweep:
            store = TerritoryStore(db, options=StoreOptions.from_settings(settings))
            counts = store.sweep_lifecycle()
            print("✓ Lifecycle sweep: " + ", ".join(f"{k}={v}" for k, v in counts.items()))

    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
        print(f"✗ Database initialization failed: {e}")
        return False

    finally:
        db.dispose()

    return True


def run():
    sys.exit(0 if main() else 1)


if __name__ == "__main__":
    run()
