"""MITEC response document parsing and status mapping."""
from datetime import datetime

import pytest

from conftest import callback_xml
from marketplace.core.exceptions import MalformedResponseError
from marketplace.services.payment.callback_parser import (
    ProviderCallback,
    derive_status,
    is_approved,
    parse_callback,
    parse_provider_datetime,
)


def test_parse_full_document():
    cb = parse_callback(callback_xml(reference="MKT1_AB", folio="F-99", auth="998877"))
    assert cb.r3ds_reference == "MKT1_AB"
    assert cb.folio == "F-99"
    assert cb.reference == "MKT1_AB"
    assert cb.auth == "998877"
    assert cb.eci == "05"
    assert cb.trans_status == "Y"
    assert cb.amount == "100.00"
    assert cb.card_last_four == "1111"


def test_missing_fields_are_empty_strings():
    cb = parse_callback("<R3DSRESPONSE><r3ds_reference>MKT1_AB</r3ds_reference></R3DSRESPONSE>")
    assert cb.folio == ""
    assert cb.response == ""
    assert cb.cd_error == ""
    assert derive_status(cb) == "pending"


def test_center_of_payments_as_root():
    cb = parse_callback("<CENTEROFPAYMENTS><reference>MKT1_AB</reference><response>approved</response></CENTEROFPAYMENTS>")
    assert cb.folio == "MKT1_AB"
    assert cb.reference == "MKT1_AB"
    assert derive_status(cb) == "approved"


def test_bytes_with_bom():
    cb = parse_callback(("\ufeff" + callback_xml(reference="MKT1_AB")).encode("utf-8"))
    assert cb.reference == "MKT1_AB"


@pytest.mark.parametrize("raw", ["", "   ", "not xml", "<open>"])
def test_malformed_rejected(raw):
    with pytest.raises(MalformedResponseError):
        parse_callback(raw)


@pytest.mark.parametrize(
    "response,approved",
    [
        ("approved", True),
        ("Approved", True),
        ("APPROVED", True),
        ("aprobada", True),
        ("Aprobada", True),
        (" approved ", True),
        ("", False),
        ("declined", False),
        ("approved-partial", False),
    ],
)
def test_is_approved_literals(response, approved):
    assert is_approved(ProviderCallback(response=response)) is approved


@pytest.mark.parametrize(
    "response,status",
    [
        ("approved", "approved"),
        ("Approved", "approved"),
        ("APPROVED", "approved"),
        ("aprobada", "approved"),
        ("Aprobada", "approved"),
        ("denied", "error"),
        ("declined", "error"),
        ("error", "error"),
        ("", "pending"),
    ],
)
def test_derive_status(response, status):
    assert derive_status(ProviderCallback(response=response)) == status


def test_provider_datetime():
    assert parse_provider_datetime("18/10/2026", "14:05:09") == datetime(2026, 10, 18, 14, 5, 9)
    assert parse_provider_datetime("18/10/26") == datetime(2026, 10, 18)
    assert parse_provider_datetime("") is None
    assert parse_provider_datetime("2026-10-18") is None
