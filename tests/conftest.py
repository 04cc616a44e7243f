"""Shared fixtures: in-memory collaborators standing in for Postgres and Pub/Sub."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from contextlib import ExitStack, asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from app import create_app
from lib.dodo import Dodo
from lib.models import Account, TransactionRecord
from lib.signature import SignatureVerifier

SECRET = "whsec_test_secret"


def sign(body: bytes, secret: str = SECRET) -> str:
    """Compute the hex HMAC-SHA256 the provider sends."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode()


class InMemoryStore:
    """AccountStore fake with a unique key on (provider, provider_txn_id) and rollback on exceptions."""

    def __init__(self):
        self.accounts: dict[str, Account] = {}
        self.transactions: dict[tuple[str, str], TransactionRecord] = {}
        self.plan_updates = 0
        self.fail_update = False
        self.delay = 0.0

    def add_account(self, email: str, id: str, plan: str = "free") -> Account:
        account = Account(id=id, email=email, plan=plan)
        self.accounts[id] = account
        return account

    def records_for(self, payment_id: str) -> list[TransactionRecord]:
        return [r for (_, txn), r in self.transactions.items() if txn == payment_id]

    async def find_account_by_email(self, email: str) -> Account | None:
        await asyncio.sleep(self.delay)
        for account in self.accounts.values():
            if account.email.lower() == email.lower():
                return account.model_copy()
        return None

    async def update_account_plan(self, account_id: str, plan: str) -> None:
        await asyncio.sleep(0)
        if self.fail_update:
            raise RuntimeError("update failed")
        self.accounts[account_id] = self.accounts[account_id].model_copy(update={"plan": plan})
        self.plan_updates += 1

    async def insert_transaction_if_absent(self, record: TransactionRecord) -> bool:
        await asyncio.sleep(0)
        key = (record.provider, record.provider_txn_id)
        if key in self.transactions:
            return False
        self.transactions[key] = record
        return True

    @asynccontextmanager
    async def atomic(self):
        accounts = dict(self.accounts)
        transactions = dict(self.transactions)
        plan_updates = self.plan_updates
        try:
            yield
        except BaseException:
            self.accounts = accounts
            self.transactions = transactions
            self.plan_updates = plan_updates
            raise


class RecordingPublisher:
    """Dead-letter publisher fake that keeps every published payload."""

    def __init__(self):
        self.letters: list[dict] = []

    @property
    def is_connected(self):
        return True

    async def publish(self, payload: dict, topic: str | None = None) -> str:
        self.letters.append(payload)
        return f"msg-{len(self.letters)}"


@pytest.fixture()
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_account("a@x.com", id="acct_a")
    return s


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture()
def make_client(store, publisher):
    """Factory for a started TestClient. Pass `secret=""` for degraded mode."""
    with ExitStack() as stack:

        def _make(secret: str = SECRET, dodo: Dodo | None = None, **overrides) -> TestClient:
            app = create_app(
                store=overrides.get("store", store),
                publisher=overrides.get("publisher", publisher),
                dodo=dodo or Dodo(api_key=""),
                verifiers={"dodo": SignatureVerifier("dodo", secret)},
            )
            return stack.enter_context(TestClient(app))

        yield _make


@pytest.fixture()
def client(make_client) -> TestClient:
    return make_client()
