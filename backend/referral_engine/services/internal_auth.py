import secrets


def is_valid_internal_token(*, expected_token: str, received_token: str | None) -> bool:
    """Constant-time check of a shared-secret header. An unset secret rejects everything."""
    if not expected_token or not received_token:
        return False
    return secrets.compare_digest(expected_token, received_token)
