"""Script to manage the scheduling schema with Alembic.

Usage:
    python scripts/migrate.py                 upgrade to the latest revision
    python scripts/migrate.py down [revision] downgrade (default: one step)
    python scripts/migrate.py current         show the applied revision
"""

import sys

from alembic import command
from alembic.config import Config

ALEMBIC_INI = "alembic.ini"


def upgrade(revision: str = "head") -> None:
    """Upgrade the schema to ``revision``."""
    print(f"Upgrading schema to {revision}...")
    command.upgrade(Config(ALEMBIC_INI), revision)
    print("✓ Schema is up to date")


def downgrade(revision: str = "-1") -> None:
    """Downgrade the schema to ``revision``."""
    print(f"Downgrading schema to {revision}...")
    command.downgrade(Config(ALEMBIC_INI), revision)
    print("✓ Downgrade completed")


def current() -> None:
    """Print the revision the database is at."""
    command.current(Config(ALEMBIC_INI), verbose=True)


def main(argv: list[str]) -> int:
    """Dispatch a migration command."""
    try:
        if not argv:
            upgrade()
        elif argv[0] == "down":
            downgrade(argv[1] if len(argv) > 1 else "-1")
        elif argv[0] == "current":
            current()
        else:
            print(__doc__)
            return 2
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
