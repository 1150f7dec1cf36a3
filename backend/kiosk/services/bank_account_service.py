from __future__ import annotations

import re
from datetime import datetime

from flask import current_app

from kiosk.extensions import db
from kiosk.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderError
from kiosk.integrations.payments.factory import build_payments_provider
from kiosk.models import User, VendorBankAccount, VendorPayout
from kiosk.services.otp_service import consume_payout_token
from kiosk.utils.audit import record_audit
from kiosk.utils.auth import Role
from kiosk.utils.errors import ApiError, BusinessRuleError, DuplicateError, ForbiddenError, NotFoundError, ValidationError
from kiosk.utils.settings import currency

ACCOUNT_TYPES = ("bank", "mobile_money")
MOBILE_MONEY_PROVIDERS = ("MTN", "VOD", "ATL")

_DIGITS = re.compile(r"^\d{6,20}$")


def _kind(account_type: str) -> str:
    return "mobile_money" if account_type == "mobile_money" else "ghipss"


def ensure_recipient(account: VendorBankAccount) -> str:
    """Register the account with the payment provider once; returns the recipient code.

    Raises ProviderError or an integration error when registration fails.
    """
    if account.provider_recipient_code:
        return account.provider_recipient_code
    provider = build_payments_provider()
    result = provider.create_transfer_recipient(
        kind=_kind(account.account_type),
        name=account.account_name,
        account_number=account.account_number,
        bank_code=account.bank_code or account.mobile_money_provider or "",
        currency=currency(),
    )
    account.provider_recipient_code = result.recipient_code
    account.is_verified = True
    account.updated_at = datetime.utcnow()
    return result.recipient_code


def _try_register(account: VendorBankAccount) -> bool:
    try:
        ensure_recipient(account)
        return True
    except (ProviderError, IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        current_app.logger.warning("bank_account_recipient_failed account_id=%s err=%s", account.id, e)
        return False


def active_accounts(vendor_id: int) -> list[VendorBankAccount]:
    return (
        VendorBankAccount.query.filter_by(vendor_id=int(vendor_id), is_active=True)
        .order_by(VendorBankAccount.is_primary.desc(), VendorBankAccount.created_at.desc())
        .all()
    )


def get_owned_account(vendor_id: int, account_id: int) -> VendorBankAccount:
    account = db.session.get(VendorBankAccount, int(account_id))
    if account is None or int(account.vendor_id) != int(vendor_id) or not account.is_active:
        raise NotFoundError("Bank account not found")
    return account


def _set_primary(vendor_id: int, account: VendorBankAccount) -> None:
    VendorBankAccount.query.filter(
        VendorBankAccount.vendor_id == int(vendor_id),
        VendorBankAccount.id != int(account.id),
    ).update({"is_primary": False}, synchronize_session=False)
    account.is_primary = True
    account.updated_at = datetime.utcnow()


def add_account(vendor: User, payload: dict) -> tuple[VendorBankAccount, bool]:
    """Add a payout destination behind the OTP gate. Returns (account, registered)."""
    if not (vendor.phone_verified and vendor.phone):
        raise ForbiddenError("Phone verification required", code="PHONE_NOT_VERIFIED")

    account_type = str(payload.get("account_type") or payload.get("accountType") or "bank").strip().lower()
    if account_type not in ACCOUNT_TYPES:
        raise ValidationError("account_type must be bank or mobile_money")
    account_number = re.sub(r"[\s\-]", "", str(payload.get("account_number") or payload.get("accountNumber") or ""))
    account_name = str(payload.get("account_name") or payload.get("accountName") or "").strip()
    if not _DIGITS.match(account_number):
        raise ValidationError("Invalid account number")
    if len(account_name) < 2:
        raise ValidationError("Account name is required")

    bank_code = str(payload.get("bank_code") or payload.get("bankCode") or "").strip()
    bank_name = str(payload.get("bank_name") or payload.get("bankName") or "").strip()
    momo_provider = str(payload.get("mobile_money_provider") or payload.get("mobileMoneyProvider") or "").strip().upper()
    if account_type == "bank" and not bank_code:
        raise ValidationError("bank_code is required for bank accounts")
    if account_type == "mobile_money":
        if momo_provider not in MOBILE_MONEY_PROVIDERS:
            raise ValidationError("Invalid mobile money provider")
        bank_code = bank_code or momo_provider

    # Token check last so a malformed form does not burn the token.
    consume_payout_token(vendor, payload.get("payoutToken") or payload.get("payout_token"))

    duplicate = VendorBankAccount.query.filter_by(
        vendor_id=int(vendor.id), account_number=account_number, is_active=True
    ).first()
    if duplicate is not None:
        db.session.rollback()
        raise DuplicateError("This account is already on file")

    is_first = VendorBankAccount.query.filter_by(vendor_id=int(vendor.id), is_active=True).count() == 0
    now = datetime.utcnow()
    account = VendorBankAccount(
        vendor_id=int(vendor.id),
        account_type=account_type,
        bank_code=bank_code or None,
        bank_name=bank_name or None,
        account_number=account_number,
        account_name=account_name[:160],
        mobile_money_provider=momo_provider or None,
        is_primary=False,
        is_verified=False,
        created_at=now,
        updated_at=now,
    )
    db.session.add(account)
    db.session.flush()
    if is_first or bool(payload.get("is_primary") or payload.get("isPrimary")):
        _set_primary(vendor.id, account)
    record_audit(
        "bank_account.added",
        actor_user_id=int(vendor.id),
        actor_role=Role.VENDOR.value,
        target_type="bank_account",
        target_id=account.id,
        metadata={"account_type": account_type, "masked": account.masked_number()},
    )
    db.session.commit()

    registered = _try_register(account)
    db.session.commit()
    return account, registered


def update_account(vendor: User, account_id: int, action: str) -> VendorBankAccount:
    account = get_owned_account(vendor.id, account_id)
    action = (action or "").strip().lower()
    if action == "set_primary":
        _set_primary(vendor.id, account)
    elif action == "verify":
        if not _try_register(account):
            raise BusinessRuleError("Failed to verify account with payment provider", code="RECIPIENT_FAILED")
    else:
        raise ValidationError("action must be set_primary or verify")
    record_audit(
        f"bank_account.{action}",
        actor_user_id=int(vendor.id),
        actor_role=Role.VENDOR.value,
        target_type="bank_account",
        target_id=account.id,
    )
    db.session.commit()
    return account


def remove_account(vendor: User, account_id: int) -> None:
    account = get_owned_account(vendor.id, account_id)
    in_flight = VendorPayout.query.filter(
        VendorPayout.bank_account_id == int(account.id),
        VendorPayout.status.in_(("pending", "processing")),
    ).count()
    if in_flight:
        raise BusinessRuleError("This account has payouts in progress", code="PAYOUT_IN_FLIGHT")
    was_primary = bool(account.is_primary)
    account.is_active = False
    account.is_primary = False
    account.updated_at = datetime.utcnow()
    if was_primary:
        successor = (
            VendorBankAccount.query.filter(
                VendorBankAccount.vendor_id == int(vendor.id),
                VendorBankAccount.id != int(account.id),
                VendorBankAccount.is_active.is_(True),
            )
            .order_by(VendorBankAccount.created_at.desc())
            .first()
        )
        if successor is not None:
            successor.is_primary = True
    record_audit(
        "bank_account.removed",
        actor_user_id=int(vendor.id),
        actor_role=Role.VENDOR.value,
        target_type="bank_account",
        target_id=account.id,
    )
    db.session.commit()


def list_banks(kind: str) -> list[dict]:
    kind = "mobile_money" if (kind or "").strip().lower() == "mobile_money" else "bank"
    try:
        provider = build_payments_provider()
        banks = provider.list_banks(kind=kind, currency=currency())
    except (ProviderError, IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        current_app.logger.warning("bank_list_failed kind=%s err=%s", kind, e)
        raise ApiError("Failed to load banks from payment provider", code="PROVIDER_UNAVAILABLE", status=503)
    return [
        {"name": b.name, "code": b.code, "type": b.type, "currency": b.currency}
        for b in banks
    ]
