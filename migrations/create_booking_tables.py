"""
Create the booking tables

- services, customers, bookings, booking_events, payments (from the models)
- PostgreSQL only:
  * citext extension; customers.email becomes CITEXT
  * unique index on lower(customers.email)
  * unique partial index on booking_events.dedup_key
"""

# Ensure this script can be run directly from the repo root
import sys
from pathlib import Path

CURRENT_DIR = Path(__file__).resolve().parent
ROOT_DIR = CURRENT_DIR.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import text

from bookingsync import models  # noqa: F401 - registers the tables
from bookingsync.database import Base, engine


def upgrade():
    Base.metadata.create_all(bind=engine, checkfirst=True)

    if engine.dialect.name != "postgresql":
        print("Tables created (non-PostgreSQL database, skipping citext and indexes)")
        return

    with engine.connect() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS citext;"))
        conn.execute(
            text(
                """
                ALTER TABLE customers
                ALTER COLUMN email TYPE CITEXT;
                """
            )
        )
        conn.execute(
            text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_customers_email_lower
                ON customers (lower(email));
                """
            )
        )
        conn.execute(
            text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_booking_events_dedup_key
                ON booking_events (dedup_key)
                WHERE dedup_key IS NOT NULL;
                """
            )
        )
        conn.execute(
            text(
                """
                CREATE INDEX IF NOT EXISTS ix_bookings_holding_created_at
                ON bookings (created_at)
                WHERE lifecycle_state = 'holding';
                """
            )
        )
        conn.commit()
        print("Migration create_booking_tables applied successfully")


def downgrade():
    with engine.connect() as conn:
        conn.execute(text("DROP TABLE IF EXISTS payments"))
        conn.execute(text("DROP TABLE IF EXISTS booking_events"))
        conn.execute(text("DROP TABLE IF EXISTS bookings"))
        conn.execute(text("DROP TABLE IF EXISTS customers"))
        conn.execute(text("DROP TABLE IF EXISTS services"))
        conn.commit()
        print("Migration create_booking_tables rolled back")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Manage booking tables migration")
    parser.add_argument("--down", action="store_true", help="Rollback the migration")
    args = parser.parse_args()

    if args.down:
        downgrade()
    else:
        upgrade()
