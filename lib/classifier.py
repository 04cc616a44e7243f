from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from lib.utils import dig, first_of


class EventCategory(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    OTHER = "other"


SUCCESS_TYPE_MARKERS = ("succeeded", "success", "completed")
SUCCESS_STATUSES = frozenset({"succeeded", "completed", "paid"})

TYPE_PATHS = ("type", "event_type", "event")
STATUS_PATHS = ("status", "data.status")

# Provisional precedence. The provider's schema was reverse-engineered from observed payloads.
EMAIL_PATHS = (
    "customer.email",
    "data.customer.email",
    "buyer.email",
    "metadata.email",
    "data.metadata.email",
    "buyer_email",
    "email",
)
PAYMENT_ID_PATHS = ("payment_id", "data.payment_id", "id", "data.id")
AMOUNT_PATHS = ("amount", "data.amount", "total_amount", "data.total_amount")
CURRENCY_PATHS = ("currency", "data.currency")


def _text(value: Any) -> str:
    return value.lower() if isinstance(value, str) else ""


# Returns the event type string, or "" if the payload has none.
def event_type(payload: Any) -> str:
    for path in TYPE_PATHS:
        value = dig(payload, path)
        if isinstance(value, str) and value:
            return value
    return ""


def classify(payload: Any) -> EventCategory:
    """
    Maps a provider payload onto the internal event taxonomy.

    The provider's type and status fields are not consistent across API versions, so either one signalling success is
    enough. Anything unrecognised is `OTHER`; this never raises.
    """
    if not isinstance(payload, dict):
        return EventCategory.OTHER

    etype = _text(event_type(payload))
    if any(marker in etype for marker in SUCCESS_TYPE_MARKERS):
        return EventCategory.PAYMENT_SUCCEEDED

    for path in STATUS_PATHS:
        if _text(dig(payload, path)) in SUCCESS_STATUSES:
            return EventCategory.PAYMENT_SUCCEEDED

    return EventCategory.OTHER


def extract_customer_email(payload: Any) -> str | None:
    for path in EMAIL_PATHS:
        value = dig(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_payment_id(payload: Any) -> str | None:
    for path in PAYMENT_ID_PATHS:
        value = dig(payload, path)
        # bool is an int subclass but never a valid id.
        if isinstance(value, bool):
            continue
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value).strip()
    return None


def extract_amount(payload: Any, default: Decimal) -> Decimal:
    value = first_of(payload, AMOUNT_PATHS)
    if isinstance(value, bool) or value is None:
        return default
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return default
    return amount if amount.is_finite() else default


def extract_currency(payload: Any, default: str = "USD") -> str:
    value = first_of(payload, CURRENCY_PATHS)
    return value.upper() if isinstance(value, str) else default
