"""
Migration: Enforce one PENDING approval request per form, track consumption.

Adds approval_requests.consumed_at and replaces the application-level
"already pending" check with a partial unique index. Existing duplicate
PENDING rows are resolved first by rejecting all but the newest.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/agency_compliance"
)

def run_migration():
    """Add consumed_at and the partial unique index on pending requests."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # Check if consumed_at column exists
        result = conn.execute(text("""
            SELECT column_name
            FROM information_schema.columns
            WHERE table_name = 'approval_requests' AND column_name = 'consumed_at'
        """))

        if result.fetchone():
            print("consumed_at column already exists")
        else:
            conn.execute(text("""
                ALTER TABLE approval_requests
                ADD COLUMN consumed_at TIMESTAMP NULL
            """))
            print("Added consumed_at column to approval_requests table")

        # Keep only the newest PENDING request per (user, form type, form)
        result = conn.execute(text("""
            UPDATE approval_requests AS ar
            SET status = 'REJECTED',
                admin_response = 'Superseded by a newer pending request.',
                reviewed_at = NOW()
            WHERE ar.status = 'PENDING'
              AND EXISTS (
                SELECT 1 FROM approval_requests newer
                WHERE newer.user_id = ar.user_id
                  AND newer.form_type = ar.form_type
                  AND newer.form_id = ar.form_id
                  AND newer.status = 'PENDING'
                  AND newer.created_at > ar.created_at
              )
        """))
        print(f"Rejected {result.rowcount} duplicate pending request(s)")

        result = conn.execute(text("""
            SELECT indexname FROM pg_indexes
            WHERE tablename = 'approval_requests' AND indexname = 'uq_approval_pending_per_form'
        """))
        if result.fetchone():
            print("uq_approval_pending_per_form already exists")
        else:
            conn.execute(text("""
                CREATE UNIQUE INDEX uq_approval_pending_per_form
                ON approval_requests (user_id, form_type, form_id)
                WHERE status = 'PENDING'
            """))
            print("Created uq_approval_pending_per_form")

        conn.commit()

if __name__ == "__main__":
    run_migration()
