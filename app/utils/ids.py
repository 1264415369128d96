import secrets
from datetime import datetime, timezone


def new_merchant_uid(prefix: str = "order") -> str:
    """Gateway-facing order reference, e.g. order_20261017_9f1c2ab34d5e6f70."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"{prefix}_{stamp}_{secrets.token_hex(8)}"
