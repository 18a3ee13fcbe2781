"""PII masking for log events.

Keeps customer emails and phone numbers out of INFO-level logs, which may be
shipped to third-party aggregators.
"""


def mask_email(email: str | None) -> str:
    """Mask an email address for logging: 'user@domain.com' -> 'u***@domain.com'."""
    if not email or "@" not in email:
        return "***"
    local, domain = email.rsplit("@", 1)
    if len(local) <= 1:
        return f"{local}***@{domain}"
    return f"{local[0]}***@{domain}"


def mask_phone(phone: str | None) -> str:
    """Keep only the last two digits: '+1 555 123 4567' -> '***67'."""
    digits = "".join(ch for ch in phone or "" if ch.isdigit())
    if len(digits) < 4:
        return "***"
    return f"***{digits[-2:]}"
