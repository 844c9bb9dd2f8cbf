"""
Tests for the Paystack adapter and its helpers.

Every request is answered by an httpx.MockTransport; recorded requests
let tests assert on paths, headers and payloads.
"""

import json
import uuid

import httpx
import pytest
from django.test import override_settings

from payments.adapters import (
    IdempotencyKeyGenerator,
    PaymentGateway,
    PaystackAdapter,
    backoff_delay,
)
from payments.exceptions import (
    InvalidPayoutDestinationError,
    PermanentGatewayError,
    TransientGatewayError,
)


class Recorder:
    """Mock transport handler that records requests and replays one response."""

    def __init__(self, status_code=200, body=None, exc=None):
        self.status_code = status_code
        self.body = body if body is not None else {"status": True, "message": "ok", "data": {}}
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.last.content)


def make_adapter(recorder, secret_key="sk_test_abc"):
    return PaystackAdapter(
        secret_key=secret_key,
        base_url="https://api.paystack.test",
        transport=httpx.MockTransport(recorder),
    )


def ok(data):
    return {"status": True, "message": "ok", "data": data}


# =============================================================================
# Idempotency Keys
# =============================================================================


class TestIdempotencyKeyGenerator:
    def test_deterministic(self):
        booking_id = uuid.uuid4()

        first = IdempotencyKeyGenerator.generate("po", booking_id, attempt=1)
        second = IdempotencyKeyGenerator.generate("po", booking_id, attempt=1)

        assert first == second

    def test_attempt_changes_key(self):
        booking_id = uuid.uuid4()

        keys = {IdempotencyKeyGenerator.generate("po", booking_id, attempt=n) for n in range(1, 6)}

        assert len(keys) == 5

    def test_format_fits_transfer_reference_rules(self):
        key = IdempotencyKeyGenerator.generate("po", uuid.uuid4(), attempt=12)

        assert len(key) <= 50
        assert key == key.lower()
        assert key.startswith("po_")
        assert key.split("_")[2] == "12"
        assert all(ch.isalnum() or ch == "_" for ch in key)

    def test_non_uuid_entity(self):
        key = IdempotencyKeyGenerator.generate("po", "Booking-42", attempt=1)

        assert key.startswith("po_booking42_1_")

    def test_hash_depends_on_secret_key(self):
        booking_id = uuid.uuid4()
        first = IdempotencyKeyGenerator.generate("po", booking_id)

        with override_settings(SECRET_KEY="another-deployment-secret"):
            second = IdempotencyKeyGenerator.generate("po", booking_id)

        assert first != second


class TestBackoffDelay:
    @pytest.mark.parametrize("attempt,low,high", [(0, 1.0, 1.25), (1, 2.0, 2.5), (2, 4.0, 5.0)])
    def test_exponential_with_jitter(self, attempt, low, high):
        assert low <= backoff_delay(attempt, base=1.0, max_delay=30.0) <= high

    def test_capped(self):
        assert backoff_delay(10, base=1.0, max_delay=30.0) <= 37.5

    def test_zero_base(self):
        assert backoff_delay(3, base=0.0, max_delay=0.0) == 0.0


# =============================================================================
# PaystackAdapter
# =============================================================================


class TestPaystackAdapter:
    def test_satisfies_gateway_protocol(self):
        assert isinstance(make_adapter(Recorder()), PaymentGateway)

    def test_from_settings(self):
        adapter = PaystackAdapter.from_settings(transport=httpx.MockTransport(Recorder()))

        assert adapter.base_url == "https://api.paystack.test"
        assert adapter.secret_key.startswith("sk_test_")

    def test_sends_bearer_token(self):
        recorder = Recorder(body=ok({"reference": "CS_1", "status": "success", "amount": 100}))

        make_adapter(recorder).verify_charge("CS_1")

        assert recorder.last.headers["Authorization"] == "Bearer sk_test_abc"

    def test_initialize_charge(self):
        recorder = Recorder(
            body=ok(
                {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "access_code": "abc",
                    "reference": "CS_1",
                }
            )
        )

        charge = make_adapter(recorder).initialize_charge(
            amount=50000,
            currency="ZAR",
            reference="CS_1",
            email="client@example.com",
            metadata={"booking_id": "b1"},
            callback_url="https://marketplace.test/cb",
        )

        assert charge.authorization_url == "https://checkout.paystack.com/abc"
        assert charge.access_code == "abc"
        assert recorder.last.method == "POST"
        assert recorder.last.url.path == "/transaction/initialize"
        assert recorder.last_json == {
            "amount": 50000,
            "currency": "ZAR",
            "reference": "CS_1",
            "email": "client@example.com",
            "metadata": {"booking_id": "b1"},
            "callback_url": "https://marketplace.test/cb",
        }

    def test_verify_charge(self):
        recorder = Recorder(
            body=ok({"reference": "CS_1", "status": "success", "amount": 50000, "currency": "ZAR"})
        )

        verification = make_adapter(recorder).verify_charge("CS_1")

        assert verification.succeeded
        assert verification.amount == 50000
        assert recorder.last.method == "GET"
        assert recorder.last.url.path == "/transaction/verify/CS_1"

    def test_create_transfer_recipient(self):
        recorder = Recorder(body=ok({"recipient_code": "RCP_1"}))

        code = make_adapter(recorder).create_transfer_recipient("051", "0001234567", "Jane Doe", "ZAR")

        assert code == "RCP_1"
        assert recorder.last.url.path == "/transferrecipient"
        assert recorder.last_json["type"] == "basa"
        assert recorder.last_json["bank_code"] == "051"

    def test_recipient_rejection_is_invalid_destination(self):
        recorder = Recorder(status_code=422, body={"status": False, "message": "Invalid account"})

        with pytest.raises(InvalidPayoutDestinationError) as exc_info:
            make_adapter(recorder).create_transfer_recipient("051", "bad", "Jane", "ZAR")

        assert exc_info.value.status_code == 422
        assert "Invalid account" in exc_info.value.message

    def test_missing_recipient_code(self):
        with pytest.raises(InvalidPayoutDestinationError):
            make_adapter(Recorder(body=ok({}))).create_transfer_recipient("051", "1", "Jane", "ZAR")

    def test_execute_transfer_uses_key_as_reference(self):
        recorder = Recorder(
            body=ok({"transfer_code": "TRF_1", "reference": "po_abc_1_deadbeef", "status": "pending"})
        )

        result = make_adapter(recorder).execute_transfer(
            "RCP_1", 45000, "po_abc_1_deadbeef", "Payout", "ZAR"
        )

        assert result.transfer_code == "TRF_1"
        assert result.status == "pending"
        assert recorder.last.url.path == "/transfer"
        assert recorder.last_json == {
            "source": "balance",
            "amount": 45000,
            "recipient": "RCP_1",
            "reason": "Payout",
            "reference": "po_abc_1_deadbeef",
            "currency": "ZAR",
        }

    def test_verify_transfer(self):
        recorder = Recorder(body=ok({"reference": "po_1", "status": "success", "transfer_code": "TRF_1"}))

        verification = make_adapter(recorder).verify_transfer("po_1")

        assert verification.status == "success"
        assert verification.transfer_code == "TRF_1"
        assert recorder.last.url.path == "/transfer/verify/po_1"

    def test_refund(self):
        recorder = Recorder(body=ok({"id": 3018284, "status": "pending", "amount": 50000}))

        result = make_adapter(recorder).refund("CS_1", 50000)

        assert result.refund_id == "3018284"
        assert result.amount == 50000
        assert recorder.last.url.path == "/refund"
        assert recorder.last_json == {"transaction": "CS_1", "amount": 50000}


class TestErrorMapping:
    """Gateway failures map to transient or permanent domain errors."""

    def test_timeout_is_transient(self):
        recorder = Recorder(exc=httpx.ReadTimeout("timed out"))

        with pytest.raises(TransientGatewayError) as exc_info:
            make_adapter(recorder).verify_charge("CS_1")

        assert exc_info.value.error_code == "GATEWAY_TIMEOUT"

    def test_connection_error_is_transient(self):
        recorder = Recorder(exc=httpx.ConnectError("refused"))

        with pytest.raises(TransientGatewayError) as exc_info:
            make_adapter(recorder).verify_charge("CS_1")

        assert exc_info.value.error_code == "GATEWAY_UNAVAILABLE"

    def test_rate_limit_is_transient(self):
        recorder = Recorder(status_code=429, body={"status": False, "message": "Too many"})

        with pytest.raises(TransientGatewayError) as exc_info:
            make_adapter(recorder).verify_charge("CS_1")

        assert exc_info.value.error_code == "GATEWAY_RATE_LIMITED"
        assert exc_info.value.status_code == 429

    @pytest.mark.parametrize("status_code", [500, 502, 503])
    def test_server_errors_are_transient(self, status_code):
        recorder = Recorder(status_code=status_code, body={})

        with pytest.raises(TransientGatewayError) as exc_info:
            make_adapter(recorder).verify_charge("CS_1")

        assert exc_info.value.is_retryable
        assert exc_info.value.status_code == status_code

    def test_not_found_is_permanent(self):
        recorder = Recorder(status_code=404, body={"status": False, "message": "Transfer not found"})

        with pytest.raises(PermanentGatewayError) as exc_info:
            make_adapter(recorder).verify_transfer("po_1")

        assert exc_info.value.status_code == 404
        assert not exc_info.value.is_retryable

    def test_false_status_in_ok_response_is_permanent(self):
        recorder = Recorder(status_code=200, body={"status": False, "message": "Declined"})

        with pytest.raises(PermanentGatewayError):
            make_adapter(recorder).refund("CS_1")

    def test_missing_credentials(self):
        recorder = Recorder()

        with pytest.raises(PermanentGatewayError) as exc_info:
            make_adapter(recorder, secret_key="").verify_charge("CS_1")

        assert exc_info.value.error_code == "GATEWAY_NOT_CONFIGURED"
        assert recorder.requests == []

    def test_non_json_error_body(self):
        def handler(request):
            return httpx.Response(502, text="<html>Bad gateway</html>")

        adapter = PaystackAdapter(secret_key="sk_test_abc", transport=httpx.MockTransport(handler))

        with pytest.raises(TransientGatewayError):
            adapter.verify_charge("CS_1")
