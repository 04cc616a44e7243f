import logging
from datetime import datetime, timezone
from os import environ
from typing import AsyncContextManager, Protocol
from uuid import uuid4

from databases import Database
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert

from lib.models import Account, TransactionRecord
from lib.tables import Accounts, Transactions

logger = logging.getLogger(__name__)


class AccountStore(Protocol):
    """
    The persistence operations fulfillment needs.

    `find_account_by_email` must be an indexed lookup; implementations must not enumerate all accounts.
    `insert_transaction_if_absent` must be atomic against concurrent callers (unique constraint or equivalent) and
    return False when a record with the same provider transaction id already exists.
    """

    async def find_account_by_email(self, email: str) -> Account | None: ...

    async def update_account_plan(self, account_id: str, plan: str) -> None: ...

    async def insert_transaction_if_absent(self, record: TransactionRecord) -> bool: ...

    def atomic(self) -> AsyncContextManager: ...


# Prefer DATABASE_URI, but fall back to individual component env vars if necessary.
# Returns None when neither is configured, so the caller can run without persistence.
def database_uri() -> str | None:
    db_uri = environ.get("DATABASE_URI")
    if db_uri is not None:
        return db_uri
    if environ.get("DATABASE_HOST") is None:
        return None

    db_user = environ.get("DATABASE_USER", "postgres")
    db_pass = environ.get("DATABASE_PASSWORD", "postgres")
    db_host = environ["DATABASE_HOST"]
    db_port = environ.get("DATABASE_PORT", "5432")
    db_name = environ.get("DATABASE_NAME", "postgres")
    return f"postgresql+asyncpg://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}"


class DatabaseStore:
    def __init__(self, database: Database):
        self.database = database

    @classmethod
    def from_uri(cls, uri: str) -> "DatabaseStore":
        return cls(Database(uri))

    async def connect(self) -> None:
        await self.database.connect()

    async def disconnect(self) -> None:
        await self.database.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.database.is_connected

    async def find_account_by_email(self, email: str) -> Account | None:
        row = await self.database.fetch_one(
            query=select(Accounts.c.id, Accounts.c.email, Accounts.c.plan).where(
                func.lower(Accounts.c.email) == email.lower()
            )
        )
        if row is None:
            return None
        return Account(id=row.id, email=row.email, plan=row.plan)

    # A single UPDATE so the account is never left partially written.
    async def update_account_plan(self, account_id: str, plan: str) -> None:
        await self.database.execute(
            query=Accounts.update()
            .where(Accounts.c.id == account_id)
            .values(plan=plan, updated_at=datetime.now(timezone.utc))
        )

    async def insert_transaction_if_absent(self, record: TransactionRecord) -> bool:
        query = (
            insert(Transactions)
            .values(id=str(uuid4()), **record.model_dump())
            .on_conflict_do_nothing(constraint="uq_transactions_provider_txn")
            .returning(Transactions.c.id)
        )
        # No row back means the conflict clause fired: this payment was already recorded.
        row = await self.database.fetch_one(query=query)
        return row is not None

    def atomic(self) -> AsyncContextManager:
        return self.database.transaction()
