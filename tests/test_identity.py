import threading

import pytest

import identity
from identity import IdentityTimeoutError, SupabaseIdentityProvider, close_identity_provider, get_identity_provider


@pytest.fixture
def provider():
    provider = SupabaseIdentityProvider(url="http://auth.test", anon_key="anon", service_role_key="service", timeout=0.05)
    yield provider
    provider.close()


def test_slow_auth_call_times_out(provider):
    release = threading.Event()
    with pytest.raises(IdentityTimeoutError, match="timed out"):
        provider._with_timeout(lambda: release.wait(1))
    release.set()


def test_fast_auth_call_returns_result(provider):
    assert provider._with_timeout(lambda: "ok") == "ok"


def test_closed_provider_refuses_new_work(provider):
    provider.close()
    with pytest.raises(RuntimeError):
        provider._with_timeout(lambda: "late")


def test_close_identity_provider_releases_cached_instance(monkeypatch):
    monkeypatch.setattr(identity, "_CACHED_PROVIDER", None)
    cached = get_identity_provider()
    assert get_identity_provider() is cached

    close_identity_provider()
    assert identity._CACHED_PROVIDER is None
    with pytest.raises(RuntimeError):
        cached._executor.submit(lambda: None)

    # Safe to call again once released.
    close_identity_provider()
