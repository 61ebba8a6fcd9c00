"""001 – Initial schema: org hierarchy, holidays, ledger, requests, audit trail.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    (
        "org_role",
        [
            "staff",
            "supervisor",
            "head_of_department",
            "head_of_independent_unit",
            "hr_officer",
            "hr_director",
            "chief_director",
            "system_admin",
        ],
    ),
    (
        "leave_type",
        [
            "annual",
            "sick",
            "unpaid",
            "special_service",
            "training",
            "study",
            "maternity",
            "paternity",
            "compassionate",
        ],
    ),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    ("rejection_reason", ["declined", "balance_exhausted"]),
    ("step_status", ["pending", "approved", "rejected", "skipped"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. staff_members ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE staff_members (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            staff_code          VARCHAR(30)  NOT NULL UNIQUE,
            full_name           VARCHAR(200) NOT NULL,
            directorate         VARCHAR(150),
            unit                VARCHAR(150),
            is_independent_unit BOOLEAN NOT NULL DEFAULT FALSE,
            supervisor_id       UUID REFERENCES staff_members(id),
            date_of_joining     DATE,
            is_active           BOOLEAN NOT NULL DEFAULT TRUE,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_staff_single_branch CHECK (
                (is_independent_unit AND directorate IS NULL AND unit IS NOT NULL)
                OR (NOT is_independent_unit AND directorate IS NOT NULL)
            )
        )
    """)
    op.execute("CREATE INDEX idx_staff_directorate ON staff_members(directorate)")
    op.execute("CREATE INDEX idx_staff_supervisor  ON staff_members(supervisor_id)")

    # ── 2. role_assignments ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE role_assignments (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            staff_id    UUID NOT NULL REFERENCES staff_members(id) ON DELETE CASCADE,
            role        org_role NOT NULL,
            directorate VARCHAR(150),
            unit        VARCHAR(150),
            is_active   BOOLEAN NOT NULL DEFAULT TRUE,
            assigned_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_role_assignments_staff_role ON role_assignments(staff_id, role)"
    )

    # ── 3. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL,
            date        DATE NOT NULL UNIQUE,
            is_optional BOOLEAN NOT NULL DEFAULT FALSE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 4. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id                       UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            staff_id                 UUID NOT NULL REFERENCES staff_members(id),
            leave_type               leave_type NOT NULL,
            period                   INTEGER NOT NULL,
            entitlement              NUMERIC(5,1) NOT NULL DEFAULT 0,
            consumed                 NUMERIC(5,1) NOT NULL DEFAULT 0,
            carried_forward_in       NUMERIC(5,1) NOT NULL DEFAULT 0,
            carry_forward_consumed   NUMERIC(5,1) NOT NULL DEFAULT 0,
            carry_forward_cap        NUMERIC(5,1) NOT NULL DEFAULT 0,
            carry_forward_expires_on DATE,
            version                  INTEGER NOT NULL DEFAULT 1,
            closed_at                TIMESTAMPTZ,
            created_at               TIMESTAMPTZ DEFAULT NOW(),
            updated_at               TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (staff_id, leave_type, period),
            CONSTRAINT ck_leave_balance_consumed
                CHECK (consumed <= entitlement + carried_forward_in)
        )
    """)
    op.execute("""
        CREATE INDEX idx_leave_balances_open
            ON leave_balances(staff_id, leave_type)
            WHERE closed_at IS NULL
    """)

    # ── 5. leave_period_closures ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_period_closures (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            staff_id     UUID NOT NULL REFERENCES staff_members(id),
            period       INTEGER NOT NULL,
            processed_by UUID REFERENCES staff_members(id),
            summary      JSONB,
            processed_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_period_closure UNIQUE (staff_id, period)
        )
    """)

    # ── 6. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            staff_id             UUID NOT NULL REFERENCES staff_members(id),
            leave_type           leave_type NOT NULL,
            start_date           DATE NOT NULL,
            end_date             DATE NOT NULL,
            day_count            NUMERIC(5,1) NOT NULL,
            reason               TEXT,
            declaration_accepted BOOLEAN NOT NULL DEFAULT FALSE,
            hr_validated         BOOLEAN NOT NULL DEFAULT FALSE,
            status               leave_status NOT NULL DEFAULT 'pending',
            rejection_reason     rejection_reason,
            cancelled_by         UUID REFERENCES staff_members(id),
            finalized_at         TIMESTAMPTZ,
            version              INTEGER NOT NULL DEFAULT 1,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_dates CHECK (start_date <= end_date)
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_requests_staff_dates
            ON leave_requests(staff_id, start_date, end_date)
    """)
    op.execute("CREATE INDEX ix_leave_requests_status ON leave_requests(status)")

    # ── 7. approval_steps ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE approval_steps (
            id            UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id    UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            level         INTEGER NOT NULL,
            approver_role org_role NOT NULL,
            status        step_status NOT NULL DEFAULT 'pending',
            decided_by    UUID REFERENCES staff_members(id),
            decided_at    TIMESTAMPTZ,
            comment       TEXT,
            CONSTRAINT uq_approval_step_level UNIQUE (request_id, level)
        )
    """)

    # ── 8. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id    UUID REFERENCES staff_members(id),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            detail      JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_entity     ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action     ON audit_trail(action)")

    # Append-only at the database level as well
    op.execute("""
        CREATE FUNCTION audit_trail_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_trail is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_audit_trail_immutable
            BEFORE UPDATE OR DELETE ON audit_trail
            FOR EACH ROW EXECUTE FUNCTION audit_trail_immutable()
    """)

    # ══════════════════════════════════════════════════════════════════════
    # SEED DATA
    # ══════════════════════════════════════════════════════════════════════

    # Ghana public holidays (fixed-date ones; movable feasts are loaded yearly)
    op.execute("""
        INSERT INTO holidays (name, date) VALUES
            ('New Year''s Day',            '2026-01-01'),
            ('Constitution Day',           '2026-01-07'),
            ('Independence Day',           '2026-03-06'),
            ('May Day',                    '2026-05-01'),
            ('Founders'' Day',             '2026-08-04'),
            ('Kwame Nkrumah Memorial Day', '2026-09-21'),
            ('Farmers'' Day',              '2026-12-04'),
            ('Christmas Day',              '2026-12-25'),
            ('Boxing Day',                 '2026-12-26')
    """)


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_audit_trail_immutable ON audit_trail")
    op.execute("DROP FUNCTION IF EXISTS audit_trail_immutable()")

    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "approval_steps",
        "leave_requests",
        "leave_period_closures",
        "leave_balances",
        "holidays",
        "role_assignments",
        "staff_members",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
