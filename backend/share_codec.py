"""Share-link codec.

A token is percent-encoded standard base64 of the compact JSON projection of
a receipt, placed in the URL fragment so it never reaches a server. Decoding
always re-runs the integrity validator; the token itself is not trusted.

With a secret configured, the token becomes "<payload>.<tag>" where tag is an
HMAC-SHA256 over the payload.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote

from receipt_integrity import validate_receipt
from receipt_models import Receipt

logger = logging.getLogger("tabsplit")

TAG_SEPARATOR = "."
MIN_FRAGMENT_LENGTH = 11


def project_receipt(receipt: Receipt) -> Dict[str, Any]:
    return {
        "restaurantName": receipt.restaurant_name,
        "date": receipt.date,
        "currency": receipt.currency,
        "subtotal": receipt.subtotal,
        "tax": receipt.tax,
        "tip": receipt.tip,
        "total": receipt.total,
        "items": [
            {
                "id": item.id,
                "quantity": item.quantity,
                "description": item.description,
                "price": item.price,
            }
            for item in receipt.items
        ],
    }


def _sign(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("ascii"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def encode_receipt(receipt: Receipt, secret: Optional[str] = None) -> str:
    text = json.dumps(project_receipt(receipt), separators=(",", ":"), ensure_ascii=False)
    payload = base64.b64encode(text.encode("utf-8")).decode("ascii")
    token = quote(payload, safe="")
    if secret:
        token = f"{token}{TAG_SEPARATOR}{_sign(token, secret)}"
    return token


def _verify(token: str, secret: str) -> Optional[str]:
    payload, sep, tag = token.rpartition(TAG_SEPARATOR)
    if not sep or not payload:
        return None
    if not hmac.compare_digest(_sign(payload, secret), tag):
        return None
    return payload


def decode_receipt(token: Any, secret: Optional[str] = None) -> Optional[Receipt]:
    """Return the validated receipt, or None for any kind of bad link."""
    if not isinstance(token, str) or not token:
        return None
    try:
        if secret:
            verified = _verify(token, secret)
            if verified is None:
                logger.warning("Share link rejected: integrity tag mismatch")
                return None
            token = verified
        raw_bytes = base64.b64decode(unquote(token, errors="strict"), validate=True)
        data = json.loads(raw_bytes.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError, RecursionError) as e:
        logger.info("Share link rejected: %s", type(e).__name__)
        return None

    receipt = validate_receipt(data)
    if receipt is None:
        logger.info("Share link rejected: payload failed validation")
    return receipt


def extract_token(link: Any) -> Optional[str]:
    """Pull the token out of a share URL, a '#fragment' or a bare token."""
    if not isinstance(link, str):
        return None
    link = link.strip()
    if "#" in link:
        fragment = link.split("#", 1)[1]
    elif "://" in link:
        return None
    else:
        fragment = link
    if len(fragment) < MIN_FRAGMENT_LENGTH:
        return None
    return fragment


def build_share_url(base_url: str, token: str) -> str:
    return f"{base_url.split('#', 1)[0]}#{token}"
