"""Payment gateway signature verification (HMAC-SHA256 over order|payment)."""

import hashlib
import hmac

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


def _secret():
    secret = getattr(settings, 'PAYMENT_GATEWAY_SECRET', '')
    if not secret:
        raise ImproperlyConfigured("PAYMENT_GATEWAY_SECRET is not set")
    return secret.encode()


def compute_signature(order_ref, payment_id):
    message = f"{order_ref}|{payment_id}".encode()
    return hmac.new(_secret(), message, hashlib.sha256).hexdigest()


def verify_signature(order_ref, payment_id, signature):
    if not signature or not payment_id:
        return False
    return hmac.compare_digest(compute_signature(order_ref, payment_id), str(signature))
