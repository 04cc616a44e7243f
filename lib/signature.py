import hashlib
import hmac
import logging
from os import environ

logger = logging.getLogger(__name__)

# Value shipped in the example env file. Treated the same as an unset secret.
PLACEHOLDER_SECRET = "YOUR_WEBHOOK_SECRET"


class SignatureVerifier:
    def __init__(self, provider: str, secret: str | None = None):
        self.provider = provider
        if secret is None:
            secret = environ.get(f"{provider.upper()}_WEBHOOK_SECRET", "")
        self.secret = "" if secret == PLACEHOLDER_SECRET else secret

    # Returns true if a usable secret is configured. When false, requests are accepted unverified (degraded mode).
    @property
    def is_configured(self) -> bool:
        return bool(self.secret)

    @property
    def mode(self) -> str:
        return "enforced" if self.is_configured else "skipped"

    # Header names checked in order for the signature value.
    @property
    def header_names(self) -> tuple[str, ...]:
        return (
            f"x-{self.provider}-signature",
            f"{self.provider}-signature",
            "x-webhook-signature",
        )

    def get_signature(self, headers) -> str | None:
        for name in self.header_names:
            value = headers.get(name)
            if value:
                return value
        return None

    # Returns true if the given signature is a valid HMAC-SHA256 of the raw payload bytes. Returns false otherwise.
    #
    # *Important*: `payload` must be the exact bytes received, never a re-serialized parsed body.
    # Callers must check `is_configured` first; without a secret this always returns false.
    def verify_signature(self, signature: str | None, payload: bytes, /) -> bool:
        if not self.is_configured or not signature:
            return False

        expected = hmac.new(
            self.secret.encode("utf-8"), payload, hashlib.sha256
        ).hexdigest()
        if signature.startswith("sha256="):
            signature = signature[len("sha256="):]

        # Exact comparison, as bytes: compare_digest rejects non-ASCII str arguments.
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
