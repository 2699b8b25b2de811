"""
Boundary parser for addresses.

Clients send the address either as a structured object (English or the
legacy Portuguese keys) or as one free-form line. Anything else is
rejected here so business code only ever sees ``Address`` or None.
"""

from ..exceptions import ValidationError
from ..validators import digits_only
from .types import Address

_KEYS = {
    "street": ("street", "rua", "logradouro"),
    "number": ("number", "numero"),
    "complement": ("complement", "complemento"),
    "neighborhood": ("neighborhood", "bairro"),
    "city": ("city", "cidade"),
    "state": ("state", "estado", "uf"),
    "postal_code": ("postal_code", "postalCode", "zipCode", "cep"),
}


def _first(raw: dict, keys) -> str:
    for key in keys:
        value = raw.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def parse_address(raw):
    """
    Return an ``Address`` for a dict or non-empty string, None for
    missing/blank input.

    Raises ValidationError(INVALID_ADDRESS) for any other shape.
    """
    if raw is None:
        return None

    if isinstance(raw, str):
        line = raw.strip()
        return Address(street=line) if line else None

    if isinstance(raw, dict):
        values = {name: _first(raw, keys) for name, keys in _KEYS.items()}
        values["postal_code"] = digits_only(values["postal_code"])
        address = Address(**values)
        return None if address.is_empty() else address

    raise ValidationError(
        message="Address must be an object or a single line of text",
        code="INVALID_ADDRESS",
        detail={"received_type": type(raw).__name__},
    )


def address_from_profile(value):
    """Profiles store an address object keyed like ``Address``; tolerate empty/legacy values."""
    if not value:
        return None
    try:
        return parse_address(value)
    except ValidationError:
        return None
