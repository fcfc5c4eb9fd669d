# Overview: Payment gateway adapter; one processor per tender plus mobile-money providers.

"""
Payment Gateway Adapter

Every tender goes through PaymentGateway.process(), which dispatches to the
processor registered for the method:

- cash, card, insurance, refund: settle synchronously (after the configured
  processing delay) and return a completed or failed outcome.
- mobile: hands off to a mobile-money provider and returns a *pending*
  outcome carrying the provider transaction id. The payment is resolved later
  by polling check_status().

Declines are outcomes (success=False, status="failed"), never exceptions.
Exceptions are reserved for:
- UnsupportedPaymentMethodError: the method (or mobile provider) is unknown
- GatewayUnavailableError: the provider could not be reached

Transaction ids: {PREFIX}_{yyyymmddHHMMSS}_{8 hex}. Mobile money ids use the
prefix MM_{PROVIDER} so a status check can be routed to the provider that
issued them (MM_MTN_20260114093012_1a2b3c4d).
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass

import httpx
from flask import current_app

from ..time_utils import utcnow


METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_MOBILE = "mobile"
METHOD_INSURANCE = "insurance"
METHOD_REFUND = "refund"

SUPPORTED_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_MOBILE, METHOD_INSURANCE, METHOD_REFUND)

# Accepted spellings from older POS clients
METHOD_ALIASES = {
    "mobile_money": METHOD_MOBILE,
    "mobile-money": METHOD_MOBILE,
}

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"
OUTCOME_UNKNOWN = "unknown"

PROVIDER_NAMES = {
    "mtn": "MTN Mobile Money",
    "airtel": "Airtel Money",
    "zamtel": "Zamtel Kwacha",
}

# Provider wording -> our payment statuses
_PROVIDER_STATUS_MAP = {
    "success": OUTCOME_COMPLETED,
    "successful": OUTCOME_COMPLETED,
    "completed": OUTCOME_COMPLETED,
    "failed": OUTCOME_FAILED,
    "declined": OUTCOME_FAILED,
    "cancelled": OUTCOME_FAILED,
    "rejected": OUTCOME_FAILED,
    "pending": OUTCOME_PENDING,
    "processing": OUTCOME_PENDING,
}


@dataclass(frozen=True)
class GatewayOutcome:
    success: bool
    status: str
    message: str
    transaction_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status,
            "message": self.message,
            "transaction_id": self.transaction_id,
        }


class GatewayError(Exception):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class UnsupportedPaymentMethodError(GatewayError):
    pass


class GatewayUnavailableError(GatewayError):
    pass


def normalize_method(method: str | None) -> str | None:
    if method is None:
        return None
    value = method.strip().lower()
    return METHOD_ALIASES.get(value, value)


def generate_transaction_id(prefix: str) -> str:
    return f"{prefix}_{utcnow():%Y%m%d%H%M%S}_{uuid.uuid4().hex[:8]}"


def provider_from_transaction_id(transaction_id: str) -> str | None:
    """MM_MTN_... -> "mtn"; None for anything that is not a mobile-money id."""
    if not transaction_id or not transaction_id.startswith("MM_"):
        return None
    parts = transaction_id.split("_")
    if len(parts) < 2 or not parts[1]:
        return None
    return parts[1].lower()


def map_provider_status(raw: str | None) -> str:
    if not raw:
        return OUTCOME_PENDING
    return _PROVIDER_STATUS_MAP.get(raw.strip().lower(), OUTCOME_PENDING)


# =============================================================================
# MOBILE MONEY PROVIDERS
# =============================================================================

class SimulatedMobileMoneyProvider:
    """
    Offline provider used in development and tests.

    Initiation always succeeds with a pending outcome. Status checks report
    `status` unless a specific transaction was given its own result in
    `statuses`.
    """

    def __init__(self, code: str, *, status: str = OUTCOME_COMPLETED):
        self.code = code.lower()
        self.name = PROVIDER_NAMES.get(self.code, self.code.upper())
        self.status = status
        self.statuses: dict[str, str] = {}

    def initiate(self, *, amount_cents: int, phone: str | None, reference: str | None = None) -> GatewayOutcome:
        transaction_id = generate_transaction_id(f"MM_{self.code.upper()}")
        return GatewayOutcome(
            success=True,
            status=OUTCOME_PENDING,
            message=f"{self.name} payment initiated, awaiting customer confirmation",
            transaction_id=transaction_id,
        )

    def check_status(self, transaction_id: str) -> GatewayOutcome:
        status = self.statuses.get(transaction_id, self.status)
        return GatewayOutcome(
            success=status == OUTCOME_COMPLETED,
            status=status,
            message=f"{self.name} payment {status}",
            transaction_id=transaction_id,
        )


class HttpMobileMoneyProvider:
    """
    JSON-over-HTTP provider client.

    POST {base_url}/{code}/payments     initiate
    GET  {base_url}/{code}/payments/id  status

    Both calls send "Authorization: Bearer <api_key>". Transport failures and
    non-2xx answers raise GatewayUnavailableError.
    """

    def __init__(
        self,
        code: str,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 25.0,
        transport: httpx.BaseTransport | None = None,
        currency: str = "ZMW",
    ):
        self.code = code.lower()
        self.name = PROVIDER_NAMES.get(self.code, self.code.upper())
        self.currency = currency
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            current_app.logger.error("%s request %s %s failed: %s", self.name, method, path, exc)
            raise GatewayUnavailableError(
                f"{self.name} is unavailable",
                {"provider": self.code, "error": str(exc)},
            ) from exc

    def initiate(self, *, amount_cents: int, phone: str | None, reference: str | None = None) -> GatewayOutcome:
        transaction_id = generate_transaction_id(f"MM_{self.code.upper()}")
        body = self._request(
            "POST",
            f"/{self.code}/payments",
            json={
                "transaction_id": transaction_id,
                "amount_cents": amount_cents,
                "currency": self.currency,
                "msisdn": phone,
                "reference": reference,
            },
        )
        status = map_provider_status(body.get("status"))
        if status == OUTCOME_FAILED:
            return GatewayOutcome(
                success=False,
                status=OUTCOME_FAILED,
                message=body.get("message") or f"{self.name} payment declined",
                transaction_id=transaction_id,
            )
        return GatewayOutcome(
            success=True,
            status=OUTCOME_PENDING,
            message=body.get("message") or f"{self.name} payment initiated",
            transaction_id=transaction_id,
        )

    def check_status(self, transaction_id: str) -> GatewayOutcome:
        body = self._request("GET", f"/{self.code}/payments/{transaction_id}")
        status = map_provider_status(body.get("status"))
        return GatewayOutcome(
            success=status == OUTCOME_COMPLETED,
            status=status,
            message=body.get("message") or f"{self.name} payment {status}",
            transaction_id=transaction_id,
        )

    def close(self) -> None:
        self.client.close()


# =============================================================================
# GATEWAY
# =============================================================================

class PaymentGateway:
    def __init__(self, providers: dict | None = None, *, delay_seconds: float = 0.0):
        self.providers = {code.lower(): p for code, p in (providers or {}).items()}
        self.delay_seconds = delay_seconds
        self._processors = {
            METHOD_CASH: self._process_cash,
            METHOD_CARD: self._process_card,
            METHOD_MOBILE: self._process_mobile,
            METHOD_INSURANCE: self._process_insurance,
            METHOD_REFUND: self._process_refund,
        }

    def supports(self, method: str | None) -> bool:
        return normalize_method(method) in self._processors

    def require_supported(self, method: str | None) -> str:
        if not self.supports(method):
            raise UnsupportedPaymentMethodError(
                f"Unsupported payment method: {method}",
                {"method": method, "supported": list(SUPPORTED_METHODS)},
            )
        return normalize_method(method)

    def process(
        self,
        method: str,
        amount_cents: int,
        *,
        reference: str | None = None,
        details: dict | None = None,
    ) -> GatewayOutcome:
        """
        Run the processor for `method`.

        `details` carries tender-specific fields: phone/provider for mobile,
        insurance_provider/policy_number for insurance.
        """
        normalized = self.require_supported(method)
        outcome = self._processors[normalized](amount_cents, reference, details or {})
        current_app.logger.info(
            "Gateway %s amount_cents=%s -> %s (%s)",
            normalized, amount_cents, outcome.status, outcome.transaction_id,
        )
        return outcome

    def _simulate_processing(self) -> None:
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)

    def _process_cash(self, amount_cents, reference, details):
        self._simulate_processing()
        return GatewayOutcome(True, OUTCOME_COMPLETED, "Cash payment processed successfully",
                              generate_transaction_id("CASH"))

    def _process_card(self, amount_cents, reference, details):
        self._simulate_processing()
        return GatewayOutcome(True, OUTCOME_COMPLETED, "Card payment processed successfully",
                              generate_transaction_id("CARD"))

    def _process_insurance(self, amount_cents, reference, details):
        if not details.get("insurance_provider") or not details.get("policy_number"):
            return GatewayOutcome(False, OUTCOME_FAILED, "Insurance provider and policy number are required")
        self._simulate_processing()
        return GatewayOutcome(True, OUTCOME_COMPLETED, "Insurance payment processed successfully",
                              generate_transaction_id("INS"))

    def _process_refund(self, amount_cents, reference, details):
        self._simulate_processing()
        return GatewayOutcome(True, OUTCOME_COMPLETED, "Refund processed successfully",
                              generate_transaction_id("REFUND"))

    def _process_mobile(self, amount_cents, reference, details):
        provider_code = details.get("provider")
        if not provider_code:
            if not self.providers:
                return GatewayOutcome(False, OUTCOME_FAILED, "Mobile money provider is required")
            provider_code = next(iter(self.providers))
        return self.initiate_mobile_money(
            provider=provider_code,
            amount_cents=amount_cents,
            phone=details.get("phone"),
            reference=reference,
        )

    def get_provider(self, code: str):
        provider = self.providers.get((code or "").lower())
        if provider is None:
            raise UnsupportedPaymentMethodError(
                f"Unsupported mobile money provider: {code}",
                {"provider": code, "supported": sorted(self.providers)},
            )
        return provider

    def initiate_mobile_money(
        self,
        *,
        provider: str,
        amount_cents: int,
        phone: str | None,
        reference: str | None = None,
    ) -> GatewayOutcome:
        return self.get_provider(provider).initiate(
            amount_cents=amount_cents, phone=phone, reference=reference
        )

    def check_status(self, transaction_id: str) -> GatewayOutcome:
        """
        Ask whoever issued `transaction_id` for its current status.

        Synchronous tenders are final when issued, so their ids always report
        completed. Ids nobody recognises report "unknown".
        """
        provider_code = provider_from_transaction_id(transaction_id)
        if provider_code is not None:
            provider = self.providers.get(provider_code)
            if provider is not None:
                return provider.check_status(transaction_id)
        elif transaction_id.startswith(("CASH_", "CARD_", "INS_", "REFUND_")):
            return GatewayOutcome(True, OUTCOME_COMPLETED, "Payment completed", transaction_id)

        return GatewayOutcome(False, OUTCOME_UNKNOWN, "Payment status not available", transaction_id)


def build_payment_gateway(config) -> PaymentGateway:
    providers = {}
    base_url = config.get("MOBILE_MONEY_HTTP_BASE_URL")
    for code in config.get("MOBILE_MONEY_PROVIDERS", []):
        if base_url:
            providers[code] = HttpMobileMoneyProvider(
                code,
                base_url=base_url,
                api_key=config.get("MOBILE_MONEY_HTTP_API_KEY"),
                timeout=config.get("MOBILE_MONEY_HTTP_TIMEOUT", 25.0),
            )
        else:
            providers[code] = SimulatedMobileMoneyProvider(
                code, status=config.get("MOBILE_MONEY_SIMULATED_STATUS", OUTCOME_COMPLETED)
            )
    return PaymentGateway(providers, delay_seconds=config.get("PAYMENT_PROCESSING_DELAY_SECONDS", 0.0))


def get_payment_gateway() -> PaymentGateway:
    """Per-app gateway, built from config on first use."""
    gateway = current_app.extensions.get("payment_gateway")
    if gateway is None:
        gateway = build_payment_gateway(current_app.config)
        current_app.extensions["payment_gateway"] = gateway
    return gateway
