"""Initial schema — invoice numbering tables.

Revision ID: 0001
Revises:     (none)
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op


def upgrade() -> None:
    # ------------------------------------------------------------------ #
    # organization_settings  (per-tenant numbering configuration)          #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE organization_settings (
            organization_id VARCHAR(64) NOT NULL,
            invoice_prefix  VARCHAR(10),            -- NULL = INVOICE_DEFAULT_PREFIX
            updated_at      TIMESTAMP   NOT NULL DEFAULT now(),
            CONSTRAINT pk_organization_settings PRIMARY KEY (organization_id),
            CONSTRAINT ck_organization_settings_prefix
                CHECK (invoice_prefix IS NULL OR invoice_prefix ~ '^[A-Za-z]{1,10}$')
        )
    """)

    # ------------------------------------------------------------------ #
    # invoice_sequence  (gapless counter per organization and year)        #
    # The primary key doubles as the uniqueness guard that resolves two    #
    # concurrent first allocations of the same year.                       #
    # Rows are never deleted.                                              #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE invoice_sequence (
            organization_id VARCHAR(64) NOT NULL,
            year            SMALLINT    NOT NULL,
            prefix          VARCHAR(10) NOT NULL,
            last_issued     INT         NOT NULL DEFAULT 0,
            CONSTRAINT pk_invoice_sequence PRIMARY KEY (organization_id, year),
            CONSTRAINT ck_invoice_sequence_year CHECK (year BETWEEN 1000 AND 9999),
            CONSTRAINT ck_invoice_sequence_last_issued CHECK (last_issued >= 0),
            CONSTRAINT ck_invoice_sequence_prefix CHECK (prefix ~ '^[A-Za-z]{1,10}$')
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS invoice_sequence CASCADE")
    op.execute("DROP TABLE IF EXISTS organization_settings CASCADE")
