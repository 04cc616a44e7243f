import asyncio
import logging
from decimal import Decimal
from os import environ
from typing import Any, Awaitable, TypeVar

from lib.classifier import (
    EventCategory,
    classify,
    event_type,
    extract_customer_email,
    extract_payment_id,
)
from lib.models import DeadLetter
from lib.publisher import Publisher
from lib.store import AccountStore
from lib.utils import MISSING

T = TypeVar("T")

logger = logging.getLogger(__name__)


# A class that contains contextual resources for handling one inbound payment event.
class Context:
    def __init__(
        self,
        store: AccountStore,
        publisher: Publisher,
        provider: str,
        payload: Any,
        account_email: str | None = None,
    ):
        self.store = store
        self.publisher = publisher
        self.provider = provider
        self.payload = payload
        # Set when the caller already knows which account paid, e.g. the email the user verified with.
        self.account_email = account_email

    @property
    def logger(self):
        return logger

    def prepare_log_extras(self, extra: dict[str, Any] | None, /):
        extra = extra or {}
        extra["provider"] = self.provider
        extra["event_type"] = self.event_type
        extra["payment_id"] = self.payment_id
        return extra

    def debug(self, msg: Any, extra: dict[str, Any] | None = None):
        logger.debug(msg, extra=self.prepare_log_extras(extra))

    def info(self, msg: Any, extra: dict[str, Any] | None = None):
        logger.info(msg, extra=self.prepare_log_extras(extra))

    def warning(self, msg: Any, extra: dict[str, Any] | None = None):
        logger.warning(msg, extra=self.prepare_log_extras(extra))

    def error(self, msg: Any, extra: dict[str, Any] | None = None):
        logger.error(msg, extra=self.prepare_log_extras(extra))

    @property
    def event_type(self) -> str:
        return event_type(self.payload)

    @property
    def category(self) -> EventCategory:
        return classify(self.payload)

    @property
    def payment_id(self) -> str | None:
        return extract_payment_id(self.payload)

    # The account email to fulfill for. An explicit `account_email` wins over whatever the payload carries.
    @property
    def customer_email(self) -> str | None:
        return self.account_email or extract_customer_email(self.payload)

    # Plan attribute set on the account when a payment succeeds.
    @property
    def paid_plan(self) -> str:
        return environ.get("PAID_PLAN", "pro")

    # Plan name written on the transaction record.
    @property
    def plan_name(self) -> str:
        return environ.get("PLAN_NAME", "summit_pro")

    @property
    def default_amount(self) -> Decimal:
        return Decimal(environ.get("DEFAULT_AMOUNT", "7.00"))

    @property
    def timeout(self) -> float:
        return float(environ.get("STORE_TIMEOUT_SECONDS", "10"))

    # Awaits a backend call, bounded by the store timeout. Raises `TimeoutError` when the bound is hit.
    async def call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Backend call timed out after {self.timeout:g}s"
            ) from None

    # Reports an event we acknowledged but could not fulfill to the dead-letter topic.
    #
    # The provider will not retry an acknowledged event, so this is the only signal an operator gets. If the topic is
    # unavailable, or the publish does not complete within the store timeout, the failure is logged at CRITICAL level
    # instead.
    async def escalate(self, reason: str, error: BaseException | str | None = None) -> None:
        letter = DeadLetter(
            service=environ.get("SERVICE_NAME", "ascent-webhook"),
            provider=self.provider,
            reason=reason,
            error=str(error) if error is not None else None,
            payment_id=self.payment_id,
            email=self.customer_email,
            event=self.payload,
        )

        if self.publisher is MISSING or not self.publisher.is_connected:
            logger.critical(
                "Dead-letter channel unavailable; fulfillment failure recorded in logs only.",
                extra=self.prepare_log_extras({"reason": reason, "error": letter.error}),
            )
            return

        try:
            message_id = await self.call(
                self.publisher.publish(letter.model_dump(mode="json"))
            )
        except Exception:
            logger.critical(
                "Failed to publish dead letter.",
                exc_info=True,
                extra=self.prepare_log_extras({"reason": reason, "error": letter.error}),
            )
            return

        self.warning(
            "Escalated event to dead-letter topic.",
            {"reason": reason, "message_id": message_id},
        )
