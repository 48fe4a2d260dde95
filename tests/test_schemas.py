"""Tests for payment link request validation."""

import copy
import pytest
from unittest.mock import AsyncMock

from payment_links.errors import ValidationError
from payment_links.schemas import validate_create_request, parse_json_body


VALID_REQUEST = {
    "amount": 487.50,
    "invoice": {"number": "RO-252656"},
    "customer": {"name": "Sarah Johnson", "email": "sarah.johnson@email.com", "phone": "+1 (555) 123-4567"},
}


def request_with(**changes):
    data = copy.deepcopy(VALID_REQUEST)
    for key, value in changes.items():
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
    return data


class TestValidateCreateRequest:
    """Tests for validate_create_request."""

    def test_valid_request_defaults(self):
        request = validate_create_request(request_with())

        assert request.amount == 487.5
        assert request.currency == "USD"
        assert request.invoice_record == {"number": "RO-252656", "description": "Payment for RO-252656"}
        assert request.customer.phone == "+1 (555) 123-4567"
        assert request.send_sms is True
        assert request.send_email is True
        assert request.line_items == []

    def test_numeric_string_amount_accepted(self):
        assert validate_create_request(request_with(amount="12.50")).amount == 12.5

    def test_not_an_object(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(["amount"])
        assert exc_info.value.message == "Request body must be a JSON object"

    def test_missing_fields_listed_in_order(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request({"amount": 10})
        assert exc_info.value.message == "Missing required fields: invoice, customer"

    @pytest.mark.parametrize("amount", [-5, "abc", True, float("nan"), "0.00", [10]])
    def test_invalid_amount(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(amount=amount))
        assert exc_info.value.message == "Valid amount is required"

    def test_zero_amount_is_missing(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(amount=0))
        assert exc_info.value.message == "Missing required fields: amount"

    def test_invoice_number_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(invoice={"description": "Brakes"}))
        assert exc_info.value.message == "Invoice number is required"

    @pytest.mark.parametrize("customer", [
        {"email": "sarah@example.com"},
        {"name": "Sarah Johnson"},
        {"name": "", "email": "sarah@example.com"},
    ])
    def test_customer_name_and_email_required(self, customer):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(customer=customer))
        assert exc_info.value.message == "Customer name and email are required"

    @pytest.mark.parametrize("email", ["sarah", "sarah@example", "sarah @example.com", "@example.com"])
    def test_invalid_email(self, email):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(customer={"name": "Sarah", "email": email}))
        assert exc_info.value.message == "Valid customer email is required"

    @pytest.mark.parametrize("phone", ["call me", "555-CALL", "+1 555 123 4567 ext 9"])
    def test_invalid_phone(self, phone):
        customer = {"name": "Sarah", "email": "sarah@example.com", "phone": phone}
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(customer=customer))
        assert exc_info.value.message == "Valid customer phone number is required"

    def test_phone_is_optional(self):
        request = validate_create_request(request_with(customer={"name": "Sarah", "email": "sarah@example.com"}))
        assert request.customer.phone is None

    @pytest.mark.parametrize("currency", ["EUR", "usd"])
    def test_unsupported_currency(self, currency):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(currency=currency))
        assert exc_info.value.message == "Currency must be USD or CAD"

    def test_line_items_must_be_list(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(request_with(lineItems={"description": "Labor"}))
        assert exc_info.value.message == "Line items must be a list"

    def test_first_failing_rule_is_reported(self):
        data = request_with(amount=-1, invoice={}, currency="EUR")
        with pytest.raises(ValidationError) as exc_info:
            validate_create_request(data)
        assert exc_info.value.message == "Missing required fields: invoice"

    def test_channel_flags_and_line_items(self):
        request = validate_create_request(request_with(
            sendSMS=False,
            sendEmail=False,
            currency="CAD",
            lineItems=[{"description": "Labor", "quantity": 2, "unitPrice": 100, "totalPrice": 200}],
        ))

        assert request.send_sms is False
        assert request.send_email is False
        assert request.currency == "CAD"
        assert request.line_items[0].to_record() == {
            "description": "Labor", "quantity": 2.0, "unitPrice": 100.0, "totalPrice": 200.0,
        }


class TestParseJsonBody:
    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_json_body(b"{oops")
        assert exc_info.value.message == "Invalid JSON in request body"

    def test_empty_body_is_empty_object(self):
        assert parse_json_body(b"") == {}


@pytest.mark.parametrize("changes", [
    {"amount": "abc"},
    {"invoice": {"description": "x"}},
    {"customer": {"name": "Sarah", "email": "bad"}},
    {"customer": {"name": "Sarah", "email": "sarah@example.com", "phone": "call me"}},
])
async def test_invalid_request_never_reaches_provider(service, simulator, sms_sender, changes):
    simulator.create_checkout = AsyncMock()

    with pytest.raises(ValidationError):
        await service.create_payment_link(request_with(**changes))

    simulator.create_checkout.assert_not_awaited()
    sms_sender.send.assert_not_awaited()
