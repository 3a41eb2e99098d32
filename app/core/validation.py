"""
Input Validation Utilities

Validation shared by the request schemas and the services:
- Monetary amounts (positive, at most two decimals)
- Rule values (rates in [0, 1], amounts >= 0)
- Payout account references
- Free text sanitization (addresses, notes, issue reports)
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any


class ValidationPatterns:
    """Regex patterns for validation"""

    # IBAN-like (letters/digits, optional spaces) or a mobile money number
    ACCOUNT_REF = re.compile(r"^[A-Za-z0-9+][A-Za-z0-9 \-]{3,49}$")

    # Latin letters with accents, digits, common address punctuation
    ADDRESS = re.compile(r"^[\w\s,.\-/'\"#°()]+$", re.UNICODE)

    XSS_PATTERNS = [
        re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
        re.compile(r"javascript:", re.IGNORECASE),
        # Word boundary avoids false positives like "condition = fragile"
        re.compile(r"\bon\w+=", re.IGNORECASE),
        re.compile(r"<iframe", re.IGNORECASE),
        re.compile(r"<object", re.IGNORECASE),
    ]


class TextSanitizer:
    """Text sanitization for storage"""

    @staticmethod
    def sanitize(text: str, max_length: int = 1000) -> str:
        """
        Trim, cap length, drop null bytes and control characters, collapse spaces.

        HTML escaping is left to whoever renders the text.
        """
        if not text:
            return ""

        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        sanitized = "".join(
            char for char in sanitized
            if char >= " " or char in "\n\r\t"
        )
        return re.sub(r" +", " ", sanitized)

    @staticmethod
    def check_for_injection(text: str) -> tuple[bool, str | None]:
        """
        Check text for script injection.

        Returns:
            Tuple of (is_safe, detected_pattern)
        """
        if not text:
            return True, None

        for pattern in ValidationPatterns.XSS_PATTERNS:
            if pattern.search(text):
                return False, "Script injection pattern detected"

        return True, None


class AddressValidator:
    """Pickup and drop-off address validation"""

    MIN_LENGTH = 5
    MAX_LENGTH = 255

    @staticmethod
    def validate(address: str) -> tuple[bool, str | None]:
        """
        Validate address format.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not address or not address.strip():
            return False, "Address is required"

        address = address.strip()

        if len(address) < AddressValidator.MIN_LENGTH:
            return False, f"Address too short (minimum {AddressValidator.MIN_LENGTH} characters)"

        if len(address) > AddressValidator.MAX_LENGTH:
            return False, f"Address too long (maximum {AddressValidator.MAX_LENGTH} characters)"

        if not ValidationPatterns.ADDRESS.match(address):
            return False, "Address contains invalid characters"

        is_safe, pattern = TextSanitizer.check_for_injection(address)
        if not is_safe:
            return False, f"Invalid address: {pattern}"

        return True, None

    @staticmethod
    def normalize(address: str) -> str:
        return re.sub(r"\s+", " ", address.strip())


class AccountReferenceValidator:
    """Payout destination (IBAN or mobile money number)"""

    @staticmethod
    def validate(account_ref: str) -> tuple[bool, str | None]:
        if not account_ref or not account_ref.strip():
            return False, "Account reference is required"
        if not ValidationPatterns.ACCOUNT_REF.match(account_ref.strip()):
            return False, "Account reference contains invalid characters"
        return True, None

    @staticmethod
    def mask(account_ref: str) -> str:
        """Keep the last four characters for logs and notifications"""
        cleaned = account_ref.replace(" ", "")
        if len(cleaned) <= 4:
            return "****"
        return "****" + cleaned[-4:]


class AmountValidator:
    """Monetary amount validation"""

    MAX_VALUE = Decimal("100000")

    @staticmethod
    def parse(value: Any) -> Decimal | None:
        """Coerce input to Decimal, None when it is not a finite number.

        Floats go through ``str`` so 10.1 stays 10.1 and not its binary expansion.
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, float):
            value = str(value)
        try:
            parsed = Decimal(value) if not isinstance(value, Decimal) else value
        except (InvalidOperation, TypeError, ValueError):
            return None
        if not parsed.is_finite():
            return None
        return parsed

    @staticmethod
    def validate(
        amount: Decimal,
        min_value: Decimal = Decimal("0"),
        max_value: Decimal = MAX_VALUE
    ) -> tuple[bool, str | None]:
        """
        Validate a positive monetary amount.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if amount <= min_value:
            return False, f"Amount must be greater than {min_value}"

        if amount > max_value:
            return False, f"Amount cannot exceed {max_value}"

        if amount != amount.quantize(Decimal("0.01")):
            return False, "Amount cannot have more than 2 decimal places"

        return True, None


class RuleValueValidator:
    """Range checks for courier rule values"""

    # courier_rule_entries.value is Numeric(12, 4)
    MAX_DECIMAL_PLACES = 4

    @staticmethod
    def validate_precision(value: Decimal) -> tuple[bool, str | None]:
        places = RuleValueValidator.MAX_DECIMAL_PLACES
        if value != value.quantize(Decimal(1).scaleb(-places)):
            return False, f"cannot have more than {places} decimal places"
        return True, None

    @staticmethod
    def validate_rate(value: Decimal) -> tuple[bool, str | None]:
        if value < 0 or value > 1:
            return False, "rate must be between 0 and 1"
        return RuleValueValidator.validate_precision(value)

    @staticmethod
    def validate_amount(value: Decimal) -> tuple[bool, str | None]:
        if value < 0:
            return False, "amount must not be negative"
        if value > AmountValidator.MAX_VALUE:
            return False, f"amount cannot exceed {AmountValidator.MAX_VALUE}"
        return RuleValueValidator.validate_precision(value)


# Pydantic field validators for reuse
def address_validator(v: str | None) -> str | None:
    """Pydantic field validator for addresses"""
    if v is None:
        return None
    is_valid, error = AddressValidator.validate(v)
    if not is_valid:
        raise ValueError(error)
    return AddressValidator.normalize(v)


def account_ref_validator(v: str) -> str:
    """Pydantic field validator for payout account references"""
    is_valid, error = AccountReferenceValidator.validate(v)
    if not is_valid:
        raise ValueError(error)
    return v.strip()


def sanitized_text_validator(v: str | None, max_length: int = 1000) -> str | None:
    """Pydantic field validator for sanitized text"""
    if v is None:
        return None
    is_safe, pattern = TextSanitizer.check_for_injection(v)
    if not is_safe:
        raise ValueError(f"Invalid input: {pattern}")
    return TextSanitizer.sanitize(v, max_length)
