"""
Unit conversion between purchase containers, secondary units and base units.

Every surface that does container math (inventory create/edit, restock,
display) goes through this module so there is one rounding policy:
quantities are Decimals quantized to 0.01 with ROUND_HALF_UP.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Any, Dict

from pos.exceptions import StaleContainerMathError

QUANT = Decimal('0.01')
ONE = Decimal('1')
THOUSAND = Decimal('1000')
# Largest magnitude a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal('9999999999.99')

# base unit -> (display unit once the value reaches 1000)
_SCALED_UNITS = {
    'g': 'kg',
    'ml': 'L',
}


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a number coming from a form, JSON payload or DB row.

    Returns None for None, blank strings, garbage, NaN and infinities.
    Floats go through str() so 0.1 stays 0.1.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            result = Decimal(text)
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def quantize(value: Decimal) -> Decimal:
    """Apply the single stock/money rounding policy."""
    return Decimal(value).quantize(QUANT, rounding=ROUND_HALF_UP)


def to_amount(value: Any) -> Optional[Decimal]:
    """
    Parse and quantize a quantity or price that is about to be stored.

    None when it does not parse or does not fit a Numeric(12, 2) column.
    """
    parsed = to_decimal(value)
    if parsed is None or abs(parsed) > MAX_AMOUNT:
        return None
    return quantize(parsed)


def _positive(*values):
    parsed = [to_decimal(v) for v in values]
    if any(v is None or v <= 0 or v > MAX_AMOUNT for v in parsed):
        return None
    return parsed


def compute_total_from_containers(number_of_containers, container_quantity, quantity_per_unit) -> Optional[Decimal]:
    """
    Base-unit stock held in the given containers.

    2 boxes x 10 pieces x 200 ml = 4000 ml. Returns None (not yet computable)
    unless all three inputs are positive finite numbers and the total fits a
    stock column; callers must then leave current_stock alone.
    """
    parsed = _positive(number_of_containers, container_quantity, quantity_per_unit)
    if parsed is None:
        return None
    n, q, u = parsed
    total = n * q * u
    if total > MAX_AMOUNT:
        return None
    return quantize(total)


def require_total_from_containers(number_of_containers, container_quantity, quantity_per_unit) -> Decimal:
    """Same as compute_total_from_containers but raises when indeterminate."""
    total = compute_total_from_containers(number_of_containers, container_quantity, quantity_per_unit)
    if total is None:
        raise StaleContainerMathError()
    return total


def compute_secondary_units_from_stock(current_stock, quantity_per_unit, number_of_containers) -> Optional[Decimal]:
    """Inverse of compute_total_from_containers: secondary units per container."""
    stock = to_decimal(current_stock)
    parsed = _positive(quantity_per_unit, number_of_containers)
    if stock is None or parsed is None:
        return None
    u, n = parsed
    per_container = stock / (u * n)
    if abs(per_container) > MAX_AMOUNT:
        return None
    return quantize(per_container)


def _trim(value: Decimal) -> Decimal:
    """At most 2 decimals, no trailing zeros, no exponent."""
    value = quantize(value)
    if value == value.to_integral_value():
        return value.quantize(ONE)
    return value.normalize()


def format_for_display(value, unit: str) -> Dict[str, Any]:
    """
    Human display of a base-unit quantity.

    g/ml switch to kg/L once the value reaches 1000 (after rounding to a
    whole number, so 999.6 g shows as 1 kg rather than 1000 g); below that
    they show as whole numbers. Everything else keeps its unit with at most
    two decimals. Applying it to its own output returns the same result.
    """
    number = to_decimal(value)
    if number is None:
        number = Decimal('0')

    scaled_unit = _SCALED_UNITS.get(unit)
    if scaled_unit is not None:
        whole = number.quantize(ONE, rounding=ROUND_HALF_UP)
        if whole >= THOUSAND:
            return {'value': _trim(number / THOUSAND), 'unit': scaled_unit}
        return {'value': whole, 'unit': unit}

    return {'value': _trim(number), 'unit': unit}


def display_string(value, unit: str) -> str:
    shown = format_for_display(value, unit)
    return f"{shown['value']} {shown['unit']}"


def describe_container_math(item) -> str:
    """One-line explanation of how an item's stock follows from its containers."""
    if item.is_direct:
        return display_string(item.current_stock, item.unit)

    total = compute_total_from_containers(
        item.number_of_containers, item.container_quantity, item.quantity_per_unit
    )
    if total is None:
        return f"{display_string(item.current_stock, item.unit)} (container details incomplete)"

    n = _trim(to_decimal(item.number_of_containers))
    plural = 'es' if item.container_type.endswith(('x', 's')) else 's'
    container = item.container_type if n == ONE else f"{item.container_type}{plural}"
    return (
        f"{n} {container} x {_trim(to_decimal(item.container_quantity))} "
        f"{item.secondary_unit or 'units'} x {_trim(to_decimal(item.quantity_per_unit))} "
        f"{item.unit}/unit = {_trim(total)} {item.unit}"
    )
