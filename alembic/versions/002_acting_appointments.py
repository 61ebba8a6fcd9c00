"""002 – Acting appointments: time-bounded approver cover.

Revision ID: 002_acting_appointments
Revises: 001_initial_schema
Create Date: 2026-10-18 15:30:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "002_acting_appointments"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS acting_appointments (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            staff_id        UUID NOT NULL REFERENCES staff_members(id) ON DELETE CASCADE,
            role            org_role NOT NULL,
            directorate     VARCHAR(150),
            unit            VARCHAR(150),
            on_behalf_of_id UUID REFERENCES staff_members(id),
            starts_on       DATE NOT NULL,
            ends_on         DATE NOT NULL,
            is_active       BOOLEAN NOT NULL DEFAULT TRUE,
            appointed_by    UUID,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_acting_window CHECK (starts_on <= ends_on),
            CONSTRAINT ck_acting_supervisor_principal
                CHECK (role <> 'supervisor' OR on_behalf_of_id IS NOT NULL)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_acting_appointments_staff_role "
        "ON acting_appointments(staff_id, role)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS acting_appointments CASCADE")
