from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel


class Account(BaseModel):
    id: str
    email: str
    plan: str = "free"


class TransactionRecord(BaseModel):
    account_id: str
    provider: str
    plan_name: str
    amount: Decimal
    currency: str = "USD"
    status: str = "succeeded"
    provider_txn_id: str


class Outcome(str, Enum):
    IGNORED = "ignored"
    NO_EMAIL = "no_email"
    NO_PAYMENT_ID = "no_payment_id"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ALREADY_APPLIED = "already_applied"
    UPGRADED = "upgraded"
    FAILED = "failed"


class WebhookAck(BaseModel):
    received: bool = True
    error: str | None = None


class VerifyPaymentRequest(BaseModel):
    email: str | None = None


class VerifyPaymentResponse(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None


class DeadLetter(BaseModel):
    service: str
    provider: str
    reason: str
    error: str | None = None
    payment_id: str | None = None
    email: str | None = None
    event: Any = None
