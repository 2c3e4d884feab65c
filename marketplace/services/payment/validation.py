"""Checkout card form validation. Fails closed on the first violated rule."""
from __future__ import annotations

import re
from decimal import Decimal
from typing import NamedTuple

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from marketplace.core.config import SUPPORTED_CURRENCIES, ProviderConfig
from marketplace.core.exceptions import ValidationError
from marketplace.schemas.payment import MitecPaymentRequest
from marketplace.services.payment.xml_builder import CardData
from marketplace.services.pricing import from_cents

CARD_NUMBER_RE = re.compile(r"^\d{13,19}$")
MONTH_RE = re.compile(r"^(0[1-9]|1[0-2])$")
YEAR_RE = re.compile(r"^\d{2}$")
CVV_RE = re.compile(r"^\d{3,4}$")
AMOUNT_RE = re.compile(r"^\d+\.\d{2}$")
MAX_NAME_LENGTH = 255
MAX_PHONE_LENGTH = 10

_email_adapter = TypeAdapter(EmailStr)


class ValidatedPayment(NamedTuple):
    card: CardData
    amount: str
    currency: str
    phone: str
    email: str


def _fail(field: str, message: str) -> tuple[None, ValidationError]:
    return None, ValidationError(message, field=field)


def validate_payment_input(
    data: MitecPaymentRequest,
    config: ProviderConfig,
    cart_total_cents: int | None = None,
) -> tuple[ValidatedPayment | None, ValidationError | None]:
    """
    Returns (validated, None) or (None, error). Spaces and dashes in the card number are dropped;
    everything else is checked as typed.
    """
    number = re.sub(r"[\s-]", "", data.card_number or "")
    if not CARD_NUMBER_RE.match(number):
        return _fail("card_number", "Card number must be 13 to 19 digits.")

    name = (data.card_name or "").strip()
    if not name:
        return _fail("card_name", "Card holder name is required.")
    if len(name) > MAX_NAME_LENGTH:
        return _fail("card_name", "Card holder name is too long.")

    month = (data.exp_month or "").strip()
    if not MONTH_RE.match(month):
        return _fail("exp_month", "Expiry month must be 01 to 12.")
    year = (data.exp_year or "").strip()
    if not YEAR_RE.match(year):
        return _fail("exp_year", "Expiry year must be 2 digits.")
    cvv = (data.cvv or "").strip()
    if not CVV_RE.match(cvv):
        return _fail("cvv", "CVV must be 3 or 4 digits.")

    amount = (data.amount or "").strip()
    if not amount and cart_total_cents is not None:
        amount = from_cents(cart_total_cents)
    if not AMOUNT_RE.match(amount):
        return _fail("amount", "Amount must look like 100.00.")
    value = Decimal(amount)
    if value <= 0 or value < Decimal(str(config.min_amount)) or value > Decimal(str(config.max_amount)):
        return _fail("amount", "Amount is outside the accepted range.")

    currency = (data.currency or config.default_currency or "").strip().upper()
    if currency not in SUPPORTED_CURRENCIES:
        return _fail("currency", "Currency must be MXN or USD.")

    phone = re.sub(r"[\s()-]", "", data.billing_phone or "")
    if phone and (not phone.isdigit() or len(phone) > MAX_PHONE_LENGTH):
        return _fail("billing_phone", "Phone must be at most 10 digits.")
    email = (data.billing_email or "").strip()
    if email:
        if len(email) > MAX_NAME_LENGTH:
            return _fail("billing_email", "Email is too long.")
        try:
            _email_adapter.validate_python(email)
        except PydanticValidationError:
            return _fail("billing_email", "Email address is not valid.")
    if config.billing_required and not (phone and email):
        return _fail("billing_email" if phone else "billing_phone", "Billing phone and email are required.")

    card = CardData(name=name, number=number, exp_month=month, exp_year=year, cvv=cvv)
    return ValidatedPayment(card=card, amount=amount, currency=currency, phone=phone, email=email), None
