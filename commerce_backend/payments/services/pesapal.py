# payments/services/pesapal.py
"""
PESAPAL GATEWAY CLIENT

Stateless adapter over the Pesapal v3 REST API:
- RequestToken (cached in Django's cache until 5 minutes before expiry)
- SubmitOrderRequest
- GetTransactionStatus
- RegisterIPN

Failure semantics:
- network errors, timeouts, 5xx and non-JSON bodies -> GatewayError,
  retried up to MAX_RETRIES times with exponential backoff
- 4xx and explicit Pesapal error bodies -> GatewayRejected, never retried

This module never touches orders or subscriptions.
"""

from __future__ import annotations

import json
import logging
import socket
import time
from dataclasses import dataclass, field
from datetime import timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from commerce.exceptions import GatewayError, GatewayRejected
from commerce.money import money

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "pesapal:access_token"
TOKEN_SAFETY_SECONDS = 300


def _pesapal_cfg() -> dict:
    payments = getattr(settings, "PAYMENTS", {}) or {}
    cfg = payments.get("PESAPAL") if isinstance(payments, dict) else None
    return cfg if isinstance(cfg, dict) else {}


# ============================================================
# VALUE TYPES
# ============================================================


def split_name(full_name: str) -> tuple[str, str]:
    """
    First-space split: "Jane Wanjiru Doe" -> ("Jane", "Wanjiru Doe").
    A name without a space yields an empty last name.
    """
    name = str(full_name or "").strip()
    if " " not in name:
        return name, ""
    first, last = name.split(" ", 1)
    return first, last.strip()


@dataclass(frozen=True)
class BillingContact:
    email: str
    phone: str = ""
    first_name: str = ""
    last_name: str = ""

    @classmethod
    def from_full_name(cls, *, full_name: str, email: str, phone: str = "") -> "BillingContact":
        first, last = split_name(full_name)
        return cls(email=email, phone=phone or "", first_name=first, last_name=last)


@dataclass(frozen=True)
class PaymentIntent:
    merchant_reference: str
    amount: Decimal
    currency: str
    description: str
    callback_url: str
    billing: BillingContact
    notification_id: str = ""

    def to_payload(self) -> dict:
        payload = {
            "id": self.merchant_reference,
            "currency": self.currency,
            "amount": float(money(self.amount)),
            "description": self.description[:100],
            "callback_url": self.callback_url,
            "billing_address": {
                "email_address": self.billing.email,
                "phone_number": self.billing.phone,
                "first_name": self.billing.first_name,
                "last_name": self.billing.last_name,
            },
        }
        if self.notification_id:
            payload["notification_id"] = self.notification_id
        return payload


@dataclass(frozen=True)
class SubmitOrderResult:
    tracking_id: str
    redirect_url: str
    merchant_reference: str = ""


@dataclass(frozen=True)
class TransactionStatus:
    status_code: int | None
    description: str = ""
    confirmation_code: str = ""
    amount: Decimal | None = None
    currency: str = ""
    merchant_reference: str = ""
    raw: dict = field(default_factory=dict)


# ============================================================
# HELPERS
# ============================================================


def _safe_preview(text: str, limit: int = 800) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + " ...(truncated)"


def _parse_json(raw: str) -> dict | None:
    try:
        parsed = json.loads(raw or "")
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _error_message(body: dict) -> str | None:
    """
    Success bodies carry an error object with every field null
    (and status "200"); only a populated error counts.
    """
    err = body.get("error")
    if not err:
        return None
    if isinstance(err, dict):
        detail = err.get("message") or err.get("code") or err.get("error_type")
        return str(detail) if detail else None
    return str(err)


def _to_int(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return money(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return None


# ============================================================
# CLIENT
# ============================================================


class PesapalClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        cfg = _pesapal_cfg()
        self.base_url = (base_url or cfg.get("BASE_URL") or "").rstrip("/")
        self.consumer_key = consumer_key if consumer_key is not None else cfg.get("CONSUMER_KEY", "")
        self.consumer_secret = (
            consumer_secret if consumer_secret is not None else cfg.get("CONSUMER_SECRET", "")
        )
        self.timeout = float(timeout if timeout is not None else cfg.get("TIMEOUT_SECONDS", 20))
        self.max_retries = int(max_retries if max_retries is not None else cfg.get("MAX_RETRIES", 2))
        self.backoff_seconds = float(
            backoff_seconds if backoff_seconds is not None else cfg.get("BACKOFF_SECONDS", 0.5)
        )
        self._sleep = sleep

    # ----------------------------
    # transport
    # ----------------------------

    def _send_once(self, method: str, url: str, *, body: dict | None, token: str | None) -> dict:
        data = None
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        req = Request(url, data=data, headers=headers, method=method)

        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except HTTPError as e:
            try:
                raw = e.read().decode("utf-8", errors="replace")
            except OSError:
                raw = ""
            parsed = _parse_json(raw) or {}
            msg = _error_message(parsed) or parsed.get("message") or _safe_preview(raw) or str(e)

            if e.code >= 500:
                raise GatewayError(f"Pesapal HTTP {e.code}: {msg}") from e
            if e.code == 401:
                cache.delete(TOKEN_CACHE_KEY)
            raise GatewayRejected(
                f"Pesapal HTTP {e.code}: {msg}",
                status_code=e.code,
                payload=parsed or raw,
            ) from e
        except (socket.timeout, TimeoutError) as e:
            raise GatewayError(f"Pesapal timeout after {self.timeout}s") from e
        except URLError as e:
            raise GatewayError(f"Pesapal URLError: {e.reason}") from e

        parsed = _parse_json(raw)
        if parsed is None:
            raise GatewayError(f"Pesapal returned non-JSON: {_safe_preview(raw)}")

        message = _error_message(parsed)
        if message:
            raise GatewayRejected(
                f"Pesapal rejected request: {message}",
                status_code=_to_int(parsed.get("status")),
                payload=parsed,
            )

        return parsed

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        body: dict | None = None,
        query: dict | None = None,
        auth: bool = True,
    ) -> dict[str, Any]:
        if not self.base_url:
            raise GatewayError("Pesapal BASE_URL is not configured")

        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"

        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                token = self.get_access_token() if auth else None
                return self._send_once(method, url, body=body, token=token)
            except GatewayError as exc:
                if attempt + 1 >= attempts:
                    logger.error(
                        "Pesapal request failed",
                        extra={"path": path, "attempts": attempts, "error": str(exc)},
                    )
                    raise
                delay = self.backoff_seconds * (2**attempt)
                logger.warning(
                    "Pesapal transient failure, retrying",
                    extra={"path": path, "attempt": attempt + 1, "delay": delay, "error": str(exc)},
                )
                self._sleep(delay)

        raise GatewayError("Pesapal request failed")

    # ----------------------------
    # auth
    # ----------------------------

    def get_access_token(self) -> str:
        cached = cache.get(TOKEN_CACHE_KEY)
        if cached:
            return cached

        if not self.consumer_key or not self.consumer_secret:
            raise GatewayError("Pesapal credentials are not configured")

        data = self._send_once(
            "POST",
            f"{self.base_url}/api/Auth/RequestToken",
            body={
                "consumer_key": self.consumer_key,
                "consumer_secret": self.consumer_secret,
            },
            token=None,
        )

        token = str(data.get("token") or "").strip()
        if not token:
            raise GatewayRejected("Pesapal token response had no token", payload=data)

        expires = parse_datetime(str(data.get("expiryDate") or ""))
        if expires is not None:
            if timezone.is_naive(expires):
                expires = timezone.make_aware(expires, dt_timezone.utc)
            ttl = int((expires - timezone.now()).total_seconds()) - TOKEN_SAFETY_SECONDS
            if ttl > 0:
                cache.set(TOKEN_CACHE_KEY, token, ttl)

        return token

    # ----------------------------
    # operations
    # ----------------------------

    def submit_order_request(self, intent: PaymentIntent) -> SubmitOrderResult:
        data = self._request_json(
            "POST",
            "/api/Transactions/SubmitOrderRequest",
            body=intent.to_payload(),
        )

        tracking_id = str(data.get("order_tracking_id") or "").strip()
        if not tracking_id:
            raise GatewayRejected("Pesapal response had no order_tracking_id", payload=data)

        return SubmitOrderResult(
            tracking_id=tracking_id,
            redirect_url=str(data.get("redirect_url") or ""),
            merchant_reference=str(data.get("merchant_reference") or intent.merchant_reference),
        )

    def get_transaction_status(self, tracking_id: str) -> TransactionStatus:
        tracking_id = str(tracking_id or "").strip()
        if not tracking_id:
            raise GatewayRejected("tracking id is required")

        data = self._request_json(
            "GET",
            "/api/Transactions/GetTransactionStatus",
            query={"orderTrackingId": tracking_id},
        )

        code = _to_int(data.get("payment_status_code"))
        if code is None:
            code = _to_int(data.get("status_code"))

        return TransactionStatus(
            status_code=code,
            description=str(data.get("payment_status_description") or ""),
            confirmation_code=str(data.get("confirmation_code") or ""),
            amount=_to_decimal(data.get("amount")),
            currency=str(data.get("currency") or ""),
            merchant_reference=str(data.get("merchant_reference") or ""),
            raw=data,
        )

    def register_ipn(self, url: str, *, notification_type: str = "GET") -> dict:
        data = self._request_json(
            "POST",
            "/api/URLSetup/RegisterIPN",
            body={"url": url, "ipn_notification_type": notification_type},
        )
        ipn_id = str(data.get("ipn_id") or "").strip()
        if not ipn_id:
            raise GatewayRejected("Pesapal IPN registration returned no ipn_id", payload=data)
        return {"notification_id": ipn_id, "url": data.get("url") or url}


def get_client() -> PesapalClient:
    return PesapalClient()
