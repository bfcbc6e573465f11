"""Tests for OAuthStateManager (signed state: tenant_id:nonce:signature)."""

import pytest

from mailbridge.infrastructure.external.email.oauth_state import OAuthStateManager


@pytest.fixture
def manager() -> OAuthStateManager:
    return OAuthStateManager(secret_key="state-test-secret")


def test_create_and_verify_round_trip(manager: OAuthStateManager) -> None:
    """A freshly signed state verifies and yields its tenant id."""
    state = manager.create_signed_state("tenant-1")
    assert state.startswith("tenant-1:")
    assert manager.verify_and_extract(state) == "tenant-1"


def test_nonce_may_contain_colons(manager: OAuthStateManager) -> None:
    state = manager.create_signed_state("tenant-1", nonce="a:b:c")
    assert manager.verify_and_extract(state) == "tenant-1"


def test_each_state_gets_a_new_nonce(manager: OAuthStateManager) -> None:
    assert manager.create_signed_state("t") != manager.create_signed_state("t")


def test_tampered_tenant_is_rejected(manager: OAuthStateManager) -> None:
    """Swapping the tenant invalidates the signature."""
    state = manager.create_signed_state("tenant-1")
    _, rest = state.split(":", 1)
    with pytest.raises(ValueError, match="signature"):
        manager.verify_and_extract(f"tenant-2:{rest}")


def test_state_signed_with_other_secret_is_rejected(manager: OAuthStateManager) -> None:
    other = OAuthStateManager(secret_key="another-secret")
    with pytest.raises(ValueError):
        manager.verify_and_extract(other.create_signed_state("tenant-1"))


@pytest.mark.parametrize("state", ["", "no-colons", "tenant-only:sig", ":nonce:sig"])
def test_malformed_state_is_rejected(manager: OAuthStateManager, state: str) -> None:
    with pytest.raises(ValueError):
        manager.verify_and_extract(state)
