"""Payment gateway client, webhook parsing and reconciliation."""

from .mercadopago import (
    CheckoutPreference,
    GatewayPayment,
    GatewayRefund,
    MercadoPagoClient,
    PaymentGateway,
    PixCharge,
    StubMercadoPagoClient,
    build_payment_gateway,
)
from .webhooks import (
    GatewayNotification,
    PaymentNotification,
    SignatureCheck,
    UnrecognizedNotification,
    parse_notification,
    verify_webhook_signature,
)

__all__ = [
    "CheckoutPreference",
    "GatewayNotification",
    "GatewayPayment",
    "GatewayRefund",
    "MercadoPagoClient",
    "PaymentGateway",
    "PaymentNotification",
    "PixCharge",
    "SignatureCheck",
    "StubMercadoPagoClient",
    "UnrecognizedNotification",
    "build_payment_gateway",
    "parse_notification",
    "verify_webhook_signature",
]
