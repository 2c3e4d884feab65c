"""Builds the TRANSACTION3DS document and the <pgs> envelope MITEC expects.

MITEC validates the document strictly: tag order and the one-tag-per-line layout are part of
the contract, so the document is assembled line by line rather than through an XML serializer.
"""
from __future__ import annotations

import logging
from typing import NamedTuple
from xml.sax.saxutils import escape

from marketplace.core.config import ProviderConfig
from marketplace.core.exceptions import ConfigurationError

log = logging.getLogger("marketplace.payment")

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

# (network, PAN prefixes). First match wins; order longest/most specific first.
CARD_NETWORK_PREFIXES: list[tuple[str, tuple[str, ...]]] = [
    ("amex", ("34", "37")),
    ("mastercard", ("51", "52", "53", "54", "55", "2")),
    ("visa", ("4",)),
]


class TransactionData(NamedTuple):
    reference: str
    amount: str  # "100.00"
    currency: str


class CardData(NamedTuple):
    name: str
    number: str
    exp_month: str
    exp_year: str
    cvv: str


class BillingData(NamedTuple):
    phone: str = ""
    email: str = ""
    ip: str = ""


def detect_card_network(card_number: str) -> str:
    """'visa' | 'mastercard' | 'amex' | 'unknown'."""
    number = (card_number or "").strip()
    for network, prefixes in CARD_NETWORK_PREFIXES:
        if number.startswith(prefixes):
            return network
    return "unknown"


def _tag(name: str, value) -> str:
    return f"<{name}>{escape(str(value if value is not None else ''))}</{name}>"


class TransactionXmlBuilder:
    def __init__(self, config: ProviderConfig):
        self.config = config

    def merchant_for(self, card_number: str) -> str:
        """Merchant id routed by card network, falling back to the default merchant."""
        network = detect_card_network(card_number)
        merchants = self.config.merchants
        merchant = (merchants.get(network) or merchants.get("default") or "").strip()
        if not merchant:
            raise ConfigurationError(
                f"No MITEC merchant configured for network={network}",
                missing=["MITEC_MERCHANT_DEFAULT"],
            )
        return merchant

    def _business(self) -> list[tuple[str, str]]:
        c = self.config
        business = [
            ("bs_idCompany", c.id_company),
            ("bs_idBranch", c.id_branch),
            ("bs_country", c.country),
            ("bs_user", c.bs_user),
            ("bs_pwd", c.bs_pwd),
        ]
        missing = [name for name, value in business if not (value or "").strip()]
        if missing or not (c.response_url or "").strip():
            raise ConfigurationError(
                "MITEC business configuration incomplete",
                missing=missing + ([] if c.response_url else ["tx_urlResponse"]),
            )
        return business

    def build_transaction_xml(
        self,
        transaction: TransactionData,
        card: CardData,
        billing: BillingData,
    ) -> str:
        business = self._business()
        merchant = self.merchant_for(card.number)
        response_url = f"{self.config.response_url}?token={transaction.reference}"
        currency = transaction.currency or self.config.default_currency

        lines = [XML_DECLARATION, "<TRANSACTION3DS>", "<business>"]
        lines += [_tag(name, value) for name, value in business]
        lines += [
            "</business>",
            "<transaction>",
            _tag("tx_merchant", merchant),
            _tag("tx_reference", transaction.reference),
            _tag("tx_amount", transaction.amount),
            _tag("tx_currency", currency),
            "<creditcard>",
            _tag("cc_name", (card.name or "").strip().upper()),
            _tag("cc_number", card.number),
            _tag("cc_expMonth", card.exp_month),
            _tag("cc_expYear", card.exp_year),
            _tag("cc_cvv", card.cvv),
            "</creditcard>",
            "<billing>",
            _tag("bl_billingPhone", billing.phone),
            _tag("bl_billingEmail", billing.email),
            "</billing>",
            _tag("tx_urlResponse", response_url),
            _tag("tx_cobro", self.config.default_cobro),
            _tag("tx_browserIP", billing.ip),
            "</transaction>",
            "</TRANSACTION3DS>",
        ]
        xml = "\n".join(lines)
        log.debug(
            "transaction xml built reference=%s merchant=%s amount=%s length=%d",
            transaction.reference,
            merchant,
            transaction.amount,
            len(xml),
        )
        return xml

    def build_form_xml(self, encrypted: str) -> str:
        data0 = (self.config.data0 or "").strip()
        if not data0:
            raise ConfigurationError("MITEC_DATA0 is not configured", missing=["MITEC_DATA0"])
        return f"<pgs><data0>{escape(data0)}</data0><data>{encrypted}</data></pgs>"
