"""
Pure validation helpers for patient contact data.

No database access; safe to call from intake, services and tests.
"""

import re

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email

NON_DIGIT_RE = re.compile(r"\D")
PHONE_RE = re.compile(r"^\d{10,11}$")


def digits_only(value) -> str:
    return NON_DIGIT_RE.sub("", str(value or ""))


def is_valid_national_id(value) -> bool:
    """
    Validate a Brazilian CPF (with or without punctuation).

    11 digits, not all equal, and both check digits must match the
    mod-11 weighted sums of the preceding digits.
    """
    cpf = digits_only(value)
    if len(cpf) != 11 or cpf == cpf[0] * 11:
        return False

    for check_pos in (9, 10):
        total = sum(int(cpf[i]) * (check_pos + 1 - i) for i in range(check_pos))
        remainder = total % 11
        expected = 0 if remainder < 2 else 11 - remainder
        if int(cpf[check_pos]) != expected:
            return False
    return True


def is_valid_email(value) -> bool:
    if not value:
        return False
    try:
        validate_email(str(value).strip())
    except DjangoValidationError:
        return False
    return True


def is_valid_postal_code(value) -> bool:
    """CEP: exactly 8 digits once punctuation is stripped."""
    return len(digits_only(value)) == 8


def is_valid_phone(value) -> bool:
    return bool(PHONE_RE.match(digits_only(value)))

