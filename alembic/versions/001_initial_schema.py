"""001 – Initial schema: users, leave grants, reservations, usage records, audit trail.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-03-01 09:00:00.000000+09:00
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["ADMIN", "USER", "VIEW"]),
    ("user_status", ["ACTIVE", "INACTIVE", "RESIGNED"]),
    ("leave_type", ["FULL", "HALF"]),
    ("leave_session", ["AM", "PM"]),
    ("reservation_status", ["RESERVED", "USED", "CANCELLED"]),
    ("weekday", ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]),
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
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name        VARCHAR(100) NOT NULL,
            join_date   DATE NOT NULL,
            group_id    VARCHAR(20),
            role        user_role DEFAULT 'USER',
            status      user_status DEFAULT 'ACTIVE',
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. leave_grants ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_grants (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id     UUID NOT NULL REFERENCES users(id),
            year        INTEGER NOT NULL,
            total       NUMERIC(5,1) NOT NULL,
            used        NUMERIC(5,1) NOT NULL DEFAULT 0,
            remain      NUMERIC(5,1) NOT NULL,
            expire_at   DATE NOT NULL,
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            updated_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_grant_user_year UNIQUE (user_id, year),
            CONSTRAINT ck_leave_grant_used_non_negative CHECK (used >= 0),
            CONSTRAINT ck_leave_grant_remain_non_negative CHECK (remain >= 0),
            CONSTRAINT ck_leave_grant_remain_balanced CHECK (remain = total - used)
        )
    """)

    # ── 3. leave_reservations ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_reservations (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id     UUID NOT NULL REFERENCES users(id),
            date        DATE NOT NULL,
            type        leave_type NOT NULL,
            session     leave_session,
            amount      NUMERIC(5,1) NOT NULL,
            status      reservation_status NOT NULL DEFAULT 'RESERVED',
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            resolved_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_reservations_user_date
            ON leave_reservations(user_id, date)
    """)

    # ── 4. leave_usages ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_usages (
            id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id        UUID NOT NULL REFERENCES users(id),
            reservation_id UUID UNIQUE REFERENCES leave_reservations(id),
            date           DATE NOT NULL,
            type           leave_type NOT NULL,
            session        leave_session,
            amount         NUMERIC(5,1) NOT NULL,
            weekday        weekday NOT NULL,
            source_year    INTEGER NOT NULL,
            used_at        TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("""
        CREATE INDEX ix_leave_usages_user_date
            ON leave_usages(user_id, date)
    """)

    # ── 5. leave_usage_allocations ────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_usage_allocations (
            id        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            usage_id  UUID NOT NULL REFERENCES leave_usages(id) ON DELETE CASCADE,
            position  INTEGER NOT NULL,
            year      INTEGER NOT NULL,
            amount    NUMERIC(5,1) NOT NULL,
            CONSTRAINT uq_leave_usage_allocation_year UNIQUE (usage_id, year)
        )
    """)

    # ── 6. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id    UUID REFERENCES users(id),
            action      VARCHAR(50) NOT NULL,
            entity_type VARCHAR(50) NOT NULL,
            entity_id   UUID NOT NULL,
            old_values  JSONB,
            new_values  JSONB,
            created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX ix_audit_trail_entity
            ON audit_trail(entity_type, entity_id)
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "leave_usage_allocations",
        "leave_usages",
        "leave_reservations",
        "leave_grants",
        "users",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    # Drop enum types
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)

    op.execute('DROP EXTENSION IF EXISTS "pgcrypto"')
