"""Tests for the payment gateway client and webhook signatures."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from returnpilot.infrastructure.payment_client import (
    PaymentClient,
    PaymentClientError,
    PaymentSignatureVerifier,
    PaymentVerification,
)


def mock_response(status_code: int = 200, json_data=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data if json_data is not None else {}
    response.text = text
    return response


@pytest.fixture
def client() -> PaymentClient:
    return PaymentClient(key_id="rzp_test", key_secret="secret")


@pytest.fixture
def http_client(client):
    with patch.object(client, "_get_client", new_callable=AsyncMock) as mock_get_client:
        http = AsyncMock()
        mock_get_client.return_value = http
        yield http


class TestVerify:
    @pytest.mark.asyncio
    async def test_captured_payment(self, client, http_client) -> None:
        http_client.get.return_value = mock_response(
            200,
            {
                "id": "pay_1",
                "status": "captured",
                "amount": 10000,
                "currency": "INR",
                "notes": {"request_id": "REQ-1"},
            },
        )

        payment = await client.verify("pay_1")

        http_client.get.assert_awaited_once_with("/payments/pay_1")
        assert payment.is_paid
        assert payment.amount == 10000
        assert payment.notes == {"request_id": "REQ-1"}

    @pytest.mark.asyncio
    async def test_unpaid_payment(self, client, http_client) -> None:
        http_client.get.return_value = mock_response(200, {"id": "pay_1", "status": "failed"})

        payment = await client.verify("pay_1")

        assert not payment.is_paid
        assert payment.amount == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 404])
    async def test_unknown_payment(self, client, http_client, status_code) -> None:
        http_client.get.return_value = mock_response(status_code)

        assert await client.verify("pay_missing") is None

    @pytest.mark.asyncio
    async def test_server_error(self, client, http_client) -> None:
        http_client.get.return_value = mock_response(500, text="oops")

        with pytest.raises(PaymentClientError) as exc_info:
            await client.verify("pay_1")

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error(self, client, http_client) -> None:
        http_client.get.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(PaymentClientError):
            await client.verify("pay_1")

    @pytest.mark.asyncio
    async def test_html_body_raises_client_error(self, client, http_client) -> None:
        response = mock_response(200, text="<html>gateway error</html>")
        response.json.side_effect = ValueError("Expecting value")
        http_client.get.return_value = response

        with pytest.raises(PaymentClientError) as exc_info:
            await client.verify("pay_1")

        assert exc_info.value.status_code == 200


class TestPaymentVerification:
    def test_authorized_counts_as_paid(self) -> None:
        assert PaymentVerification(payment_id="p", status="authorized", amount=1).is_paid

    def test_non_dict_notes_are_dropped(self) -> None:
        payment = PaymentVerification.from_api_response({"id": "p", "notes": []})

        assert payment.notes == {}


class TestSignatureVerifier:
    def test_round_trip(self) -> None:
        verifier = PaymentSignatureVerifier("whsec")
        body = b'{"event":"payment.captured"}'

        assert verifier.verify(body, verifier.sign(body))

    def test_rejects_other_secret_and_missing_signature(self) -> None:
        body = b"{}"
        signature = PaymentSignatureVerifier("other").sign(body)
        verifier = PaymentSignatureVerifier("whsec")

        assert not verifier.verify(body, signature)
        assert not verifier.verify(body, None)
        assert not verifier.verify(body, "")
