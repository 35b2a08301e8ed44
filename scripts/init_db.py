#!/usr/bin/env python3
"""
Create (or recreate) the hub schema from a hub configuration file.

Reads the database URL from the hub YAML (or --db-url), connects, and
creates every table the hub models declare.  With --drop the existing
tables are dropped first.

Usage:
  python3 scripts/init_db.py [--config PATH] [--db-url URL] [--drop]
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create the access hub database schema")
    p.add_argument(
        "--config",
        default=None,
        help="Path to a hub YAML file (default: the packaged defaults/hub.yaml)",
    )
    p.add_argument(
        "--db-url",
        default=None,
        help="Database URL; overrides database.url from the config",
    )
    p.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing hub tables before creating them",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from access_config import get_active_config
    from access_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
        reset_engine,
    )
    from access_kernel.logging_config import configure_logging

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"  ERROR: invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(level=config.logging.level_number)
    db = config.database
    url = args.db_url or db.url

    print()
    print(f"  [1/2] Connecting to {url.split('@')[-1]} ...")
    try:
        init_engine_from_url(
            url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
        )
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        if args.drop:
            print("  [2/2] Dropping and recreating schema...")
            drop_tables()
        else:
            print("  [2/2] Creating schema...")
        create_tables()
    finally:
        reset_engine()

    print()
    print(f"  Done. Schema ready for config {config.config_id!r}.")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
