from __future__ import annotations

import os

from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kiosk.integrations.payments.base import PaymentsProvider
from kiosk.integrations.payments.mock_provider import MockPaymentsProvider
from kiosk.integrations.payments.paystack_provider import PaystackPaymentsProvider
from kiosk.utils.settings import integrations_mode


def build_payments_provider() -> PaymentsProvider:
    mode = integrations_mode()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    provider = (os.getenv("PAYMENTS_PROVIDER") or ("paystack" if mode == "live" else "mock")).strip().lower()
    if provider == "mock":
        return MockPaymentsProvider()

    if provider != "paystack":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = (os.getenv("PAYSTACK_SECRET_KEY") or "").strip()
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing PAYSTACK_SECRET_KEY")

    return PaystackPaymentsProvider(secret_key=secret_key)


def payment_health() -> dict:
    mode = integrations_mode()
    provider = (os.getenv("PAYMENTS_PROVIDER") or ("paystack" if mode == "live" else "mock")).strip().lower()
    missing = []
    if mode != "disabled" and provider == "paystack" and not (os.getenv("PAYSTACK_SECRET_KEY") or "").strip():
        missing.append("PAYSTACK_SECRET_KEY")
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
