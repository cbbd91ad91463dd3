"""Tests for bearer token verification."""

import pytest

from repo_backup.auth import AuthGate
from repo_backup.exceptions import AuthError


@pytest.fixture
def gate():
    return AuthGate("s3cret-token")


def test_valid_token(gate):
    gate.authorize("Bearer s3cret-token")
    gate.authorize("bearer s3cret-token")
    gate.authorize("  Bearer   s3cret-token  ")


@pytest.mark.parametrize("header", [
    None,
    "",
    "s3cret-token",
    "Basic s3cret-token",
    "Bearer",
    "Bearer wrong-token",
    "Bearer s3cret-token-extra",
])
def test_rejected_headers(gate, header):
    with pytest.raises(AuthError) as exc_info:
        gate.authorize(header)
    assert exc_info.value.reason == "Unauthorized"


def test_failures_are_indistinguishable(gate):
    reasons = set()
    for header in (None, "Bearer wrong-token", "Token s3cret-token"):
        with pytest.raises(AuthError) as exc_info:
            gate.authorize(header)
        reasons.add(str(exc_info.value))
    assert reasons == {"Unauthorized"}


def test_token_is_not_logged(gate, caplog):
    with pytest.raises(AuthError):
        gate.authorize("Bearer guessed-secret")
    assert "guessed-secret" not in caplog.text
