"""
PII (Personally Identifiable Information) masking for log output.
"""
import re
from typing import Any

UUID_RE = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.I)
PHONE_RE = re.compile(r'^[\d\s\+\-\(\)]+$')

# Compared after lower-casing and dropping underscores, so both
# ``phone_number`` and ``phoneNumber`` match.
PII_FIELDS = {
    "email", "guestemail",
    "phone", "phonenumber", "guestphonenumber",
    "name", "fullname", "firstname", "lastname", "customername",
    "addressline1", "addressline2", "postalcode",
    "lineuserid",
}


def mask_email(email: str) -> str:
    """Mask email address."""
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    if len(local) <= 2:
        masked = "**"
    else:
        masked = local[:2] + "*" * (len(local) - 2)
    return f"{masked}@{domain}"


def mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return "*" * len(phone)
    return phone[:2] + "*" * (len(phone) - 4) + phone[-2:]


def mask_name(name: str) -> str:
    if len(name) <= 2:
        return "**"
    return name[0] + "*" * (len(name) - 2) + name[-1]


def mask_uuid(uuid_str: str) -> str:
    """Mask UUID (show first 8 chars only)."""
    if len(uuid_str) < 8:
        return "*" * len(uuid_str)
    return uuid_str[:8] + "-****-****-****-************"


def mask_value(key: str, value: Any) -> Any:
    """Mask a single scalar based on its key and shape."""
    if not isinstance(value, str) or not value:
        return value
    normalized = key.lower().replace("_", "")
    if "@" in value:
        return mask_email(value)
    if UUID_RE.match(value):
        return mask_uuid(value)
    if normalized in PII_FIELDS or normalized.endswith("id"):
        if PHONE_RE.match(value):
            return mask_phone(value)
        if "name" in normalized:
            return mask_name(value)
        return mask_uuid(value) if len(value) > 10 else mask_name(value)
    return value


def mask_pii_in_dict(data: dict) -> dict:
    """Mask PII in dictionary recursively."""
    masked = {}
    for key, value in data.items():
        if isinstance(value, dict):
            masked[key] = mask_pii_in_dict(value)
        elif isinstance(value, list):
            masked[key] = [
                mask_pii_in_dict(item) if isinstance(item, dict) else mask_value(key, item)
                for item in value
            ]
        else:
            masked[key] = mask_value(key, value)
    return masked
