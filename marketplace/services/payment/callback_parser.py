"""MITEC response document → ProviderCallback.

Field presence varies between MITEC environments and protocol versions, so a missing element is
always an empty string. Only a document that is not XML at all is rejected.
"""
from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime
from typing import NamedTuple

from marketplace.core.exceptions import MalformedResponseError

CENTER_OF_PAYMENTS = "CENTEROFPAYMENTS"
APPROVED_LITERALS = ("approved", "aprobada")
PROVIDER_DATE_FORMATS = ("%d/%m/%Y %H:%M:%S", "%d/%m/%y %H:%M:%S", "%d/%m/%Y", "%d/%m/%y")

# ProviderCallback field -> element, relative to the document root
_TOP_LEVEL = {
    "r3ds_reference": "r3ds_reference",
    "ds_trans_id": "r3ds_dsTransId",
    "eci": "r3ds_eci",
    "cavv": "r3ds_cavv",
    "trans_status": "r3ds_transStatus",
    "response_code": "r3ds_responseCode",
    "response_description": "r3ds_responseDescription",
    "auth_number": "r3ds_authNumber",
    "cc_name": "r3ds_cc_name",
    "cc_number": "r3ds_cc_number",
    "branch": "r3ds_idBranch",
    "bank_authorization": "r3ds_autorizacion_bancaria",
    "auth_full": "r3ds_auth_full",
    "protocol": "r3ds_protocolo",
    "version": "r3ds_version",
}

# ProviderCallback field -> element under CENTEROFPAYMENTS
_CENTER = {
    "folio": "reference",
    "response": "response",
    "auth": "auth",
    "cd_response": "cd_response",
    "cd_error": "cd_error",
    "nb_error": "nb_error",
    "time": "time",
    "date": "date",
    "voucher": "voucher",
    "voucher_comercio": "voucher_comercio",
    "voucher_cliente": "voucher_cliente",
    "cc_type": "cc_type",
    "amount": "amount",
    "friendly_response": "friendly_response",
}


class ProviderCallback(NamedTuple):
    r3ds_reference: str = ""
    ds_trans_id: str = ""
    eci: str = ""
    cavv: str = ""
    trans_status: str = ""
    response_code: str = ""
    response_description: str = ""
    auth_number: str = ""
    folio: str = ""
    response: str = ""
    auth: str = ""
    cd_response: str = ""
    cd_error: str = ""
    nb_error: str = ""
    time: str = ""
    date: str = ""
    voucher: str = ""
    voucher_comercio: str = ""
    voucher_cliente: str = ""
    cc_type: str = ""
    amount: str = ""
    friendly_response: str = ""
    cc_name: str = ""
    cc_number: str = ""
    branch: str = ""
    bank_authorization: str = ""
    auth_full: str = ""
    protocol: str = ""
    version: str = ""

    @property
    def reference(self) -> str:
        """Reference MITEC echoed back: the 3DS one, else the payment center folio."""
        return self.r3ds_reference or self.folio

    @property
    def card_last_four(self) -> str:
        digits = "".join(ch for ch in self.cc_number if ch.isdigit())
        return digits[-4:] if len(digits) >= 4 else ""


def _text(parent: ET.Element | None, tag: str) -> str:
    if parent is None:
        return ""
    node = parent.find(tag)
    if node is None or node.text is None:
        return ""
    return node.text.strip()


def parse_callback(raw: str | bytes) -> ProviderCallback:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    raw = (raw or "").lstrip("\ufeff").strip()
    if not raw:
        raise MalformedResponseError("Empty MITEC response")
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise MalformedResponseError(f"MITEC response is not well-formed XML: {e}") from None

    center = root if root.tag == CENTER_OF_PAYMENTS else root.find(CENTER_OF_PAYMENTS)
    values = {field: _text(root, tag) for field, tag in _TOP_LEVEL.items()}
    values.update({field: _text(center, tag) for field, tag in _CENTER.items()})
    return ProviderCallback(**values)


def is_approved(callback: ProviderCallback) -> bool:
    # MITEC answers in English or Spanish depending on the environment
    return callback.response.strip().lower() in APPROVED_LITERALS


def derive_status(callback: ProviderCallback) -> str:
    """approved | error | pending."""
    if is_approved(callback):
        return "approved"
    if not callback.response.strip():
        return "pending"
    return "error"


def parse_provider_datetime(date: str, time: str = "") -> datetime | None:
    value = f"{date.strip()} {time.strip()}".strip()
    if not value:
        return None
    for fmt in PROVIDER_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None
