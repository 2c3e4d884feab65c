"""Monetary arithmetic used by checkout and invoicing: unit prices, cart totals, CFDI concepts.

Stateless; every input is an explicit parameter. Decimal with half-up rounding throughout,
so 0.005 always rounds away from zero the way the invoicing provider expects.
"""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple

CENT = Decimal("0.01")

# Billing plan -> number of charges per year. Anything unknown bills monthly.
PAYMENTS_PER_YEAR = {
    "onetime": 0,
    "annual": 1,
    "triennial": 0,
}

_TERM_RE = re.compile(r"^p(\d)(\w)", re.IGNORECASE)

CFDI_DEFAULTS = {
    "product_service_code": "43232408",
    "unit_code": "E48",
    "unit": "Unidad de servicio",
}


def _dec(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _q(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount) -> int:
    """'100.00' / 100 / Decimal('43.10') -> centavos."""
    return int(_q(_dec(amount)) * 100)


def from_cents(cents: int) -> str:
    """4310 -> '43.10'."""
    return str(_q(Decimal(cents) / 100))


def unit_price_divisor(term_duration: str | None, billing_plan: str) -> int:
    """How many charges a list price is spread over.

    ``P3Y`` + ``Monthly`` is 36, ``P3Y`` + ``Annual`` is 3, one-time and triennial plans are 1.
    Terms not measured in years (``P1M``) count as zero years, so the divisor floors at 1.
    """
    pays_per_year = PAYMENTS_PER_YEAR.get((billing_plan or "").lower(), 12)
    term_years = 0
    m = _TERM_RE.match(term_duration or "")
    if m and m.group(2).lower() == "y":
        term_years = int(m.group(1))
    return max(term_years * pays_per_year, 1)


def calculate_unit_price(
    unit_price,
    billing_plan: str,
    term_duration: str | None,
    multiplier=0,
) -> str:
    """Per-charge price with the percentage markup applied, as a 2-decimal string."""
    price = max(_dec(unit_price), Decimal(0))
    per_charge = price / unit_price_divisor(term_duration, billing_plan)
    with_markup = per_charge + (per_charge * _dec(multiplier)) / 100
    return str(_q(with_markup))


class CartTotals(NamedTuple):
    subtotal_cents: int
    tax_cents: int
    total_cents: int


def cart_totals(line_totals_cents: Iterable[int], tax_rate) -> CartTotals:
    """Subtotal of the given lines, tax rounded to the cent, total = subtotal + tax."""
    subtotal = sum(line_totals_cents)
    tax = int((Decimal(subtotal) * _dec(tax_rate)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return CartTotals(subtotal_cents=subtotal, tax_cents=tax, total_cents=subtotal + tax)


def format_cfdi_concepts(
    items: Iterable[dict],
    total_amount,
    exchange_rate,
    taxes: dict,
    defaults: dict | None = None,
) -> list[dict]:
    """Split an order total into per-item CFDI concepts.

    ``items``: dicts with ``line_total``, ``quantity`` and ``title``.
    ``taxes``: ``rate`` (0.16), ``tax_code`` ("002"), ``factor_type`` ("Tasa").
    The order total (in invoice currency) is authoritative; each item receives its
    line-total share of the subtotal and of the tax.
    """
    items = list(items)
    defaults = {**CFDI_DEFAULTS, **(defaults or {})}
    rate = _dec(exchange_rate or 1)
    tax_rate = _dec(taxes["rate"])

    total_value = _q(_dec(total_amount) * rate)
    order_subtotal = _q(total_value / (tax_rate + 1))
    order_tax = _q(order_subtotal * tax_rate)

    items_total = sum((_dec(i["line_total"]) for i in items), Decimal(0))
    if items_total <= 0:
        return []

    concepts = []
    for item in items:
        ratio = _dec(item["line_total"]) / items_total
        quantity = int(item.get("quantity") or 1)
        item_subtotal = order_subtotal * ratio
        item_tax = order_tax * ratio
        concepts.append(
            {
                "ClaveProdServ": defaults["product_service_code"],
                "Cantidad": str(quantity),
                "ClaveUnidad": defaults["unit_code"],
                "Unidad": defaults["unit"],
                "Descripcion": item.get("title") or "Producto sin nombre",
                "ValorUnitario": str(_q(item_subtotal / quantity)),
                "Importe": str(_q(item_subtotal)),
                "ObjetoImp": "02",
                "Impuestos": {
                    "Traslados": [
                        {
                            "Base": str(_q(item_subtotal)),
                            "Impuesto": taxes.get("tax_code", "002"),
                            "TipoFactor": taxes.get("factor_type", "Tasa"),
                            "TasaOCuota": str(tax_rate.quantize(Decimal("0.000001"))),
                            "Importe": str(_q(item_tax)),
                        }
                    ]
                },
            }
        )
    return concepts
