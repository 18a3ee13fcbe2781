from referral_engine.services.internal_auth import is_valid_internal_token
from referral_engine.utils.log_mask import mask_email, mask_phone


def test_valid_token():
    assert is_valid_internal_token(expected_token="abc", received_token="abc")


def test_wrong_or_missing_token():
    assert not is_valid_internal_token(expected_token="abc", received_token="abd")
    assert not is_valid_internal_token(expected_token="abc", received_token=None)


def test_empty_expected_token_rejects_everything():
    assert not is_valid_internal_token(expected_token="", received_token="")
    assert not is_valid_internal_token(expected_token="", received_token="anything")


def test_mask_email():
    assert mask_email("john@example.com") == "j***@example.com"
    assert mask_email("not-an-email") == "***"
    assert mask_email(None) == "***"


def test_mask_phone():
    assert mask_phone("+1 555 123 4567") == "***67"
    assert mask_phone("12") == "***"
