from kiosk.models.user import User
from kiosk.models.session import UserSession, PasswordResetToken
from kiosk.models.product import Product
from kiosk.models.order import Order, OrderItem, OrderEvent
from kiosk.models.dispute import Dispute
from kiosk.models.payout import VendorBankAccount, VendorPayout, PayoutAttempt
from kiosk.models.otp import OtpChallenge, PayoutAuthToken
from kiosk.models.notification import Notification
from kiosk.models.audit import AuditLog, WebhookEvent

__all__ = [
    "User",
    "UserSession",
    "PasswordResetToken",
    "Product",
    "Order",
    "OrderItem",
    "OrderEvent",
    "Dispute",
    "VendorBankAccount",
    "VendorPayout",
    "PayoutAttempt",
    "OtpChallenge",
    "PayoutAuthToken",
    "Notification",
    "AuditLog",
    "WebhookEvent",
]
