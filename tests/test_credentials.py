"""Unit tests for credential providers."""

import threading

import pytest

from appgen.credentials import ConfigCredentialProvider, Credentials, RuntimeCredentialStore
from appgen.errors import ConfigurationError
from conftest import HOSTNAME, PASSWORD, USERNAME, make_config


class TestConfigCredentialProvider:
    """Credentials read from settings."""

    def test_returns_configured_credentials(self):
        provider = ConfigCredentialProvider(make_config(dev_env_id="env-1"))

        credentials = provider.get_credentials()

        assert credentials == Credentials(HOSTNAME, USERNAME, PASSWORD, "env-1")

    def test_missing_values_are_named(self):
        provider = ConfigCredentialProvider(make_config(hostname=None, password=""))

        with pytest.raises(ConfigurationError) as exc_info:
            provider.get_credentials()

        assert "OS_HOSTNAME" in str(exc_info.value)
        assert "OS_PASSWORD" in str(exc_info.value)
        assert "OS_USERNAME" not in str(exc_info.value)

    def test_password_hidden_from_repr(self):
        credentials = ConfigCredentialProvider(make_config()).get_credentials()

        assert PASSWORD not in repr(credentials)


class TestRuntimeCredentialStore:
    """Runtime-set credentials with fallback."""

    def test_runtime_credentials_take_priority(self):
        store = RuntimeCredentialStore(fallback=ConfigCredentialProvider(make_config()))
        runtime = Credentials("other.outsystems.dev", "ops@acme.com", "pw")

        store.set(runtime)

        assert store.has_credentials() is True
        assert store.get_credentials() is runtime

    def test_falls_back_when_empty(self):
        store = RuntimeCredentialStore(fallback=ConfigCredentialProvider(make_config()))

        assert store.has_credentials() is False
        assert store.get_credentials().hostname == HOSTNAME

    def test_clear_restores_fallback(self):
        store = RuntimeCredentialStore(fallback=ConfigCredentialProvider(make_config()))
        store.set(Credentials("other.outsystems.dev", "ops@acme.com", "pw"))

        store.clear()

        assert store.get_credentials().hostname == HOSTNAME

    def test_no_fallback_raises(self):
        store = RuntimeCredentialStore()

        with pytest.raises(ConfigurationError):
            store.get_credentials()

    def test_concurrent_set_and_get(self):
        store = RuntimeCredentialStore()
        store.set(Credentials(HOSTNAME, USERNAME, PASSWORD))
        seen = []

        def reader():
            for _ in range(200):
                seen.append(store.get_credentials().hostname)

        def writer():
            for i in range(200):
                store.set(Credentials(f"t{i}.outsystems.dev", USERNAME, PASSWORD))

        threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(seen) == 200
        assert all(host.endswith(".outsystems.dev") for host in seen)
