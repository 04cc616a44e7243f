from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    func,
)


metadata = MetaData()


Accounts = Table(
    "accounts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(320), nullable=False),
    Column("plan", String(32), nullable=False, server_default="free"),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

# Lookups are by lower(email), so the index has to be on the same expression.
Index("ix_accounts_email_lower", func.lower(Accounts.c.email), unique=True)


# One row per provider payment. The unique constraint is the idempotency gate for fulfillment.
Transactions = Table(
    "transactions",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("account_id", String(64), ForeignKey("accounts.id"), nullable=False),
    Column("provider", String(64), nullable=False),
    Column("plan_name", String(64), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(8), nullable=False),
    Column("status", String(32), nullable=False),
    Column("provider_txn_id", String(255), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("provider", "provider_txn_id", name="uq_transactions_provider_txn"),
)
