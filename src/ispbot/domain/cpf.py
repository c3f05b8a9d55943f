"""CPF (Brazilian taxpayer id) validation."""

import re

CPF_LENGTH = 11

_REPEATED_DIGITS = re.compile(r"^(\d)\1{10}$")


def _check_digit(digits: str, weight_start: int) -> int:
    total = sum(int(d) * w for d, w in zip(digits, range(weight_start, 1, -1)))
    digit = 11 - (total % 11)
    return 0 if digit >= 10 else digit


def validate_cpf(cpf: str) -> bool:
    """Validate an 11-digit CPF string with its two mod-11 check digits.

    Formatting characters are ignored. Eleven identical digits are always
    invalid even though their check digits work out.
    """
    if not cpf:
        return False

    digits = re.sub(r"\D", "", cpf)
    if len(digits) != CPF_LENGTH:
        return False
    if _REPEATED_DIGITS.match(digits):
        return False

    if _check_digit(digits[:9], 10) != int(digits[9]):
        return False
    return _check_digit(digits[:10], 11) == int(digits[10])
