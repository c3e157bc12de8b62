"""Parsing and signature verification for MercadoPago webhook deliveries."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union


@dataclass(frozen=True, slots=True)
class PaymentNotification:
    """A delivery announcing that a gateway payment changed."""

    payment_id: str
    action: str | None = None


@dataclass(frozen=True, slots=True)
class UnrecognizedNotification:
    """Any other delivery (merchant orders, plan updates, malformed bodies)."""

    kind: str
    raw: Mapping[str, Any] = field(default_factory=dict)


GatewayNotification = Union[PaymentNotification, UnrecognizedNotification]


def _resource_id(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    # Legacy IPN deliveries send the full resource URL.
    return text.rstrip("/").rsplit("/", 1)[-1]


def parse_notification(body: Mapping[str, Any] | None, query: Mapping[str, Any] | None = None) -> GatewayNotification:
    """Classify a delivery from its JSON body or query string."""

    body = body if isinstance(body, Mapping) else {}
    query = query or {}

    kind = body.get("type") or body.get("topic") or query.get("type") or query.get("topic")
    kind = str(kind).strip().lower() if kind else "unknown"
    raw = {"body": dict(body), "query": dict(query)}
    if kind != "payment":
        return UnrecognizedNotification(kind=kind, raw=raw)

    data = body.get("data")
    payment_id = None
    if isinstance(data, Mapping):
        payment_id = _resource_id(data.get("id"))
    payment_id = (
        payment_id
        or _resource_id(body.get("resource"))
        or _resource_id(query.get("data.id"))
        or _resource_id(query.get("id"))
    )
    if payment_id is None:
        return UnrecognizedNotification(kind="payment_without_id", raw=raw)

    action = body.get("action")
    return PaymentNotification(payment_id=payment_id, action=str(action) if action else None)


class SignatureCheck(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    MISSING = "missing"


def _parse_signature_header(header: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in header.split(","):
        if "=" not in chunk:
            continue
        key, value = chunk.split("=", 1)
        parts[key.strip()] = value.strip()
    return parts


def signature_manifest(data_id: str, request_id: str, ts: str) -> str:
    return f"id:{data_id};request-id:{request_id};ts:{ts};"


def verify_webhook_signature(headers: Mapping[str, str], data_id: str | None, secret: str) -> SignatureCheck:
    """Check ``x-signature`` (``ts=...,v1=<hex hmac>``) against the shared secret."""

    signature = headers.get("x-signature")
    request_id = headers.get("x-request-id")
    if not secret or not signature or not request_id or not data_id:
        return SignatureCheck.MISSING

    parts = _parse_signature_header(signature)
    ts = parts.get("ts")
    provided = parts.get("v1")
    if not ts or not provided:
        return SignatureCheck.INVALID

    # MercadoPago signs alphanumeric ids in lowercase.
    manifest = signature_manifest(data_id.lower(), request_id, ts)
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    if hmac.compare_digest(expected, provided.lower()):
        return SignatureCheck.VALID
    return SignatureCheck.INVALID


__all__ = [
    "GatewayNotification",
    "PaymentNotification",
    "SignatureCheck",
    "UnrecognizedNotification",
    "parse_notification",
    "signature_manifest",
    "verify_webhook_signature",
]
