from context import Context
from lib.classifier import extract_amount, extract_currency
from lib.models import Account, Outcome, TransactionRecord
from lib.store import AccountStore


# payment succeeded (any provider event the classifier maps to `PAYMENT_SUCCEEDED`)
async def succeeded(ctx: Context) -> Outcome:
    email = ctx.customer_email
    payment_id = ctx.payment_id
    ctx.info("Payment succeeded.", {"email": email})

    if email is None:
        ctx.warning("No customer email found in payload. Skipping.")
        return Outcome.NO_EMAIL

    # Without a payment id there is no idempotency key, so applying the upgrade could double-apply on redelivery.
    if payment_id is None:
        ctx.error("No payment id found in payload. Unable to fulfill.", {"email": email})
        await ctx.escalate(Outcome.NO_PAYMENT_ID.value)
        return Outcome.NO_PAYMENT_ID

    account = await ctx.call(ctx.store.find_account_by_email(email))
    if account is None:
        ctx.warning("Unable to find account for customer. Skipping.", {"email": email})
        await ctx.escalate(Outcome.ACCOUNT_NOT_FOUND.value)
        return Outcome.ACCOUNT_NOT_FOUND

    record = TransactionRecord(
        account_id=account.id,
        provider=ctx.provider,
        plan_name=ctx.plan_name,
        amount=extract_amount(ctx.payload, ctx.default_amount),
        currency=extract_currency(ctx.payload),
        status="succeeded",
        provider_txn_id=payment_id,
    )

    if not await ctx.call(apply_upgrade(ctx.store, account, record, ctx.paid_plan)):
        ctx.info("Payment already applied. Skipping.", {"account_id": account.id})
        return Outcome.ALREADY_APPLIED

    ctx.info(
        "Account upgraded.",
        {"account_id": account.id, "plan": ctx.paid_plan, "amount": str(record.amount)},
    )
    return Outcome.UPGRADED


async def apply_upgrade(
    store: AccountStore, account: Account, record: TransactionRecord, plan: str
) -> bool:
    """
    Records the payment and upgrades the account in one transaction.

    The transaction insert goes first and doubles as the idempotency check: if a record for the same provider payment
    already exists, nothing is written and this returns False. Concurrent duplicates are serialised by the unique
    constraint, so exactly one of them gets True. Any exception rolls both writes back.
    """
    async with store.atomic():
        if not await store.insert_transaction_if_absent(record):
            return False
        await store.update_account_plan(account.id, plan)
    return True
