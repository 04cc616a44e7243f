import json
import logging
from collections import Counter
from contextlib import asynccontextmanager
from os import environ
from typing import Awaitable, Callable

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from context import Context
from events import payment
from lib.classifier import EventCategory
from lib.dodo import Dodo, DodoError
from lib.logging import setup_logging
from lib.models import (
    Outcome,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from lib.publisher import Publisher
from lib.signature import SignatureVerifier
from lib.store import AccountStore, DatabaseStore, database_uri
from lib.utils import MISSING

logger = logging.getLogger(__name__)

# Category -> handler. Categories without a handler are acknowledged and ignored.
HANDLERS: dict[EventCategory, Callable[[Context], Awaitable[Outcome]]] = {
    EventCategory.PAYMENT_SUCCEEDED: payment.succeeded,
}


def service_name() -> str:
    return environ.get("SERVICE_NAME", "ascent-webhook")


def configured_providers() -> list[str]:
    raw = environ.get("WEBHOOK_PROVIDERS", "dodo")
    return [p.strip().lower() for p in raw.split(",") if p.strip()]


def create_app(
    store: AccountStore | None = None,
    publisher: Publisher | None = None,
    dodo: Dodo | None = None,
    verifiers: dict[str, SignatureVerifier] | None = None,
) -> FastAPI:
    """
    Builds the webhook service. Collaborators that are not passed in are created from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()

        owned_store = None
        if app.state.store is None:
            uri = database_uri()
            if uri is None:
                logger.warning(
                    "DATABASE_URI not set - payment events will be acknowledged but not fulfilled"
                )
                app.state.store = MISSING
            else:
                owned_store = DatabaseStore.from_uri(uri)
                await owned_store.connect()
                app.state.store = owned_store
        if app.state.publisher is None:
            app.state.publisher = Publisher()
        if app.state.dodo is None:
            app.state.dodo = Dodo()
            if not app.state.dodo.is_configured:
                logger.warning("DODO_API_KEY not set - /verify-payment is disabled")

        for provider, verifier in app.state.verifiers.items():
            if not verifier.is_configured:
                logger.warning(
                    "Webhook secret not configured - signatures will NOT be verified",
                    extra={"provider": provider, "verification": "skipped"},
                )

        logger.info(
            "Webhook server ready",
            extra={"webhook_paths": [f"/webhook/{p}" for p in app.state.verifiers]},
        )
        yield

        if owned_store is not None:
            await owned_store.disconnect()

    app = FastAPI(lifespan=lifespan)
    app.state.store = store
    app.state.publisher = publisher
    app.state.dodo = dodo
    app.state.verifiers = verifiers or {
        p: SignatureVerifier(p) for p in configured_providers()
    }
    app.state.counts = Counter()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in environ.get("CORS_ORIGINS", "*").split(",")],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    register_routes(app)
    return app


# Audit counter per provider, e.g. `dodo.upgraded` or `dodo.unverified`.
def count(app: FastAPI, provider: str, status: str) -> None:
    app.state.counts[f"{provider}.{status}"] += 1


async def run_handler(ctx: Context) -> tuple[Outcome, str | None]:
    """
    Dispatches a verified event to its handler and returns the outcome with an error message, if any.

    Every exception is swallowed here: the caller has already authenticated the request, and anything but a 2xx makes
    the provider retry indefinitely. Failures are escalated to the dead-letter channel instead.
    """
    fun = HANDLERS.get(ctx.category)
    if fun is None:
        ctx.info("Event is not a success event, ignoring.")
        return Outcome.IGNORED, None

    try:
        if ctx.store is MISSING:
            raise RuntimeError("Persistence backend not configured")
        return await fun(ctx), None
    except Exception as e:
        ctx.logger.exception(
            "Webhook processing error", extra=ctx.prepare_log_extras({"error": str(e)})
        )
        await ctx.escalate(Outcome.FAILED.value, e)
        return Outcome.FAILED, str(e) or type(e).__name__


def register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health():
        return {"status": "ok", "service": service_name()}

    # Service status without secrets. Degraded modes show up here.
    @app.get("/")
    async def status(request: Request):
        state = request.app.state
        store = state.store
        return {
            "status": "running",
            "service": service_name(),
            "providers": {
                p: {"signature_verification": v.mode} for p, v in state.verifiers.items()
            },
            "store": {
                "configured": store is not None and store is not MISSING,
                "connected": bool(store) and getattr(store, "is_connected", True),
            },
            "dead_letter": bool(state.publisher) and state.publisher.is_connected,
            "payment_verification": bool(state.dodo) and state.dodo.is_configured,
            "counts": dict(state.counts),
        }

    @app.post(
        "/webhook/{provider}",
        response_model=WebhookAck,
        response_model_exclude_none=True,
    )
    async def webhook(provider: str, request: Request):
        state = request.app.state
        verifier = state.verifiers.get(provider.lower())
        if verifier is None:
            return JSONResponse({"error": "Not found"}, status_code=404)
        provider = verifier.provider

        # Signatures cover the exact bytes sent, so read the raw body before any parsing.
        body = await request.body()

        if verifier.is_configured:
            signature = verifier.get_signature(request.headers)
            if not verifier.verify_signature(signature, body):
                logger.error(
                    "Invalid webhook signature",
                    extra={"provider": provider, "has_signature": signature is not None},
                )
                count(request.app, provider, "signature_failed")
                return JSONResponse({"error": "Invalid signature"}, status_code=401)
            logger.debug("Signature verified", extra={"provider": provider})
        else:
            logger.warning(
                "Webhook secret not configured, skipping signature verification",
                extra={"provider": provider, "verification": "skipped"},
            )
            count(request.app, provider, "unverified")

        try:
            payload = json.loads(body)
        except ValueError:
            ctx = Context(
                state.store, state.publisher, provider, body.decode("utf-8", "replace")
            )
            ctx.error("Failed to parse webhook body")
            await ctx.escalate("invalid_json")
            count(request.app, provider, "invalid_json")
            return WebhookAck(error="Invalid JSON")

        ctx = Context(state.store, state.publisher, provider, payload)
        ctx.info("Webhook received")
        outcome, error = await run_handler(ctx)
        count(request.app, provider, outcome.value)
        return WebhookAck(error=error)

    # Called by the frontend after the checkout redirect, in case the webhook is late or never arrives.
    @app.post(
        "/verify-payment",
        response_model=VerifyPaymentResponse,
        response_model_exclude_none=True,
    )
    async def verify_payment(body: VerifyPaymentRequest, request: Request):
        state = request.app.state
        if not body.email or not body.email.strip():
            return JSONResponse({"success": False, "error": "Email required"}, status_code=400)

        dodo: Dodo = state.dodo
        if not dodo.is_configured:
            return VerifyPaymentResponse(success=False, error="Payment verification not configured")

        try:
            found = await dodo.find_paid_payment(body.email)
        except (DodoError, httpx.HTTPError, ValueError) as e:
            logger.error("Payment lookup failed", extra={"error": str(e)})
            return VerifyPaymentResponse(success=False, error="Failed to fetch payments from Dodo")

        if found is None:
            logger.warning("No successful payment found", extra={"email": body.email})
            return VerifyPaymentResponse(success=False, error="No successful payment found")

        # Fulfill for the email the user verified with, not whichever email the payment lists first.
        ctx = Context(
            state.store, state.publisher, "dodo", found, account_email=body.email.strip()
        )
        outcome, error = await run_handler(ctx)
        count(request.app, "dodo", f"verify.{outcome.value}")

        if outcome in (Outcome.UPGRADED, Outcome.ALREADY_APPLIED):
            return VerifyPaymentResponse(
                success=True, message="Payment verified and account upgraded to Pro"
            )
        if outcome is Outcome.ACCOUNT_NOT_FOUND:
            return VerifyPaymentResponse(success=False, error="User not found")
        return VerifyPaymentResponse(success=False, error=error or f"Payment not applied: {outcome.value}")


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=int(environ.get("PORT", "3001")))
