# Overview: Pytest coverage for the payment gateway adapter and mobile-money providers.

import json
import re

import httpx
import pytest

from pharmapos.services.payment_gateway import (
    GatewayUnavailableError,
    HttpMobileMoneyProvider,
    PaymentGateway,
    SimulatedMobileMoneyProvider,
    UnsupportedPaymentMethodError,
    build_payment_gateway,
    provider_from_transaction_id,
)


MM_ID = re.compile(r"MM_MTN_\d{14}_[0-9a-f]{8}")


@pytest.fixture
def gateway(app):
    return PaymentGateway({
        "mtn": SimulatedMobileMoneyProvider("mtn"),
        "airtel": SimulatedMobileMoneyProvider("airtel", status="pending"),
    })


class TestProcessors:
    @pytest.mark.parametrize("method, prefix", [
        ("cash", "CASH_"),
        ("card", "CARD_"),
        ("refund", "REFUND_"),
    ])
    def test_synchronous_tenders_complete(self, gateway, method, prefix):
        outcome = gateway.process(method, 1000)
        assert outcome.success is True
        assert outcome.status == "completed"
        assert outcome.transaction_id.startswith(prefix)

    def test_unsupported_method_raises(self, gateway):
        with pytest.raises(UnsupportedPaymentMethodError):
            gateway.process("cheque", 1000)
        assert gateway.supports("cheque") is False

    def test_method_aliases_are_accepted(self, gateway):
        assert gateway.supports("mobile_money")
        assert gateway.supports("CASH")

    def test_insurance_without_policy_is_a_decline(self, gateway):
        outcome = gateway.process("insurance", 1000)
        assert outcome.success is False
        assert outcome.status == "failed"

    def test_insurance_with_policy_completes(self, gateway):
        outcome = gateway.process(
            "insurance", 1000, details={"insurance_provider": "NHIMA", "policy_number": "P-1"}
        )
        assert outcome.status == "completed"
        assert outcome.transaction_id.startswith("INS_")

    def test_mobile_is_pending_with_provider_transaction_id(self, gateway):
        outcome = gateway.process("mobile", 2500, details={"provider": "mtn", "phone": "0971234567"})
        assert outcome.success is True
        assert outcome.status == "pending"
        assert MM_ID.fullmatch(outcome.transaction_id)


class TestMobileMoneyRouting:
    def test_transaction_id_names_its_provider(self):
        assert provider_from_transaction_id("MM_AIRTEL_20260114093012_1a2b3c4d") == "airtel"
        assert provider_from_transaction_id("CASH_20260114093012_1a2b3c4d") is None

    def test_status_check_routes_to_issuing_provider(self, gateway):
        outcome = gateway.initiate_mobile_money(provider="airtel", amount_cents=500, phone="0961111111")
        status = gateway.check_status(outcome.transaction_id)
        assert status.status == "pending"

    def test_per_transaction_status_override(self, gateway):
        outcome = gateway.initiate_mobile_money(provider="mtn", amount_cents=500, phone="0961111111")
        gateway.providers["mtn"].statuses[outcome.transaction_id] = "failed"
        assert gateway.check_status(outcome.transaction_id).status == "failed"

    def test_unknown_provider_is_unsupported(self, gateway):
        with pytest.raises(UnsupportedPaymentMethodError):
            gateway.initiate_mobile_money(provider="vodafone", amount_cents=500, phone="0961111111")

    def test_unknown_transaction_reports_unknown(self, gateway):
        assert gateway.check_status("XYZ-1").status == "unknown"

    def test_build_from_config_uses_simulator_without_base_url(self, app):
        gateway = build_payment_gateway({
            "MOBILE_MONEY_PROVIDERS": ["mtn", "zamtel"],
            "MOBILE_MONEY_SIMULATED_STATUS": "failed",
        })
        assert sorted(gateway.providers) == ["mtn", "zamtel"]
        assert isinstance(gateway.providers["zamtel"], SimulatedMobileMoneyProvider)
        assert gateway.providers["zamtel"].status == "failed"


class TestHttpProvider:
    def _provider(self, handler):
        return HttpMobileMoneyProvider(
            "mtn",
            base_url="https://mm.example.test/api",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )

    def test_initiate_posts_payment_and_returns_pending(self, app):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "pending", "message": "Approve on handset"})

        outcome = self._provider(handler).initiate(amount_cents=2500, phone="0971234567", reference="SALE20261234")

        assert seen["path"] == "/api/mtn/payments"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["amount_cents"] == 2500
        assert seen["body"]["msisdn"] == "0971234567"
        assert outcome.status == "pending"
        assert outcome.transaction_id == seen["body"]["transaction_id"]
        assert MM_ID.fullmatch(outcome.transaction_id)

    def test_declined_initiation_is_failed_outcome(self, app):
        provider = self._provider(lambda request: httpx.Response(200, json={"status": "declined"}))
        outcome = provider.initiate(amount_cents=100, phone="097")
        assert outcome.success is False
        assert outcome.status == "failed"

    @pytest.mark.parametrize("raw, expected", [
        ("success", "completed"),
        ("SUCCESSFUL", "completed"),
        ("failed", "failed"),
        ("processing", "pending"),
    ])
    def test_status_mapping(self, app, raw, expected):
        provider = self._provider(lambda request: httpx.Response(200, json={"status": raw}))
        assert provider.check_status("MM_MTN_20260114093012_1a2b3c4d").status == expected

    def test_http_error_raises_gateway_unavailable(self, app):
        provider = self._provider(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(GatewayUnavailableError):
            provider.check_status("MM_MTN_20260114093012_1a2b3c4d")

    def test_transport_error_raises_gateway_unavailable(self, app):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayUnavailableError):
            self._provider(handler).initiate(amount_cents=100, phone="097")

    def test_close_releases_client(self, app):
        provider = self._provider(lambda request: httpx.Response(200, json={"status": "success"}))
        provider.close()
        assert provider.client.is_closed
