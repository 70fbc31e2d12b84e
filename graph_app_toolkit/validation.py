"""Input patterns checked before any tenant, store or vault call."""

from __future__ import annotations

import re

from .errors import ValidationError

PREFIX_PATTERN = re.compile(r"^[A-Z0-9]{2,4}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
GUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
THUMBPRINT_PATTERN = re.compile(r"^[A-Fa-f0-9]{40}$")


def validate_prefix(prefix: str) -> str:
    if not isinstance(prefix, str) or not PREFIX_PATTERN.fullmatch(prefix):
        raise ValidationError(
            f"App prefix {prefix!r} must be 2-4 upper-case letters or digits."
        )
    return prefix


def validate_email(email: str) -> str:
    if not isinstance(email, str) or not EMAIL_PATTERN.fullmatch(email):
        raise ValidationError(f"{email!r} is not a valid email address.")
    return email


def validate_guid(value: str) -> str:
    if not isinstance(value, str) or not GUID_PATTERN.fullmatch(value):
        raise ValidationError(f"{value!r} is not a valid GUID.")
    return value


def validate_thumbprint(thumbprint: str) -> str:
    """Return the thumbprint upper-cased, the form the certificate store keys on."""
    if not isinstance(thumbprint, str) or not THUMBPRINT_PATTERN.fullmatch(thumbprint):
        raise ValidationError(
            f"Certificate thumbprint {thumbprint!r} must be 40 hexadecimal characters."
        )
    return thumbprint.upper()
