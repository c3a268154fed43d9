from pathlib import Path

import pytest

from peervault_e2e.config import (
    DEFAULT_CDP_PORT,
    CdpConfig,
    CdpEndpoint,
    HarnessConfig,
    default_cdp_endpoints,
    load_config_from_env,
)


def test_defaults_without_environment():
    config = load_config_from_env(environ={})

    assert config.cdp.port == DEFAULT_CDP_PORT
    assert config.cdp.host == "127.0.0.1"
    assert [v.name for v in config.vaults] == ["TEST", "TEST2"]
    assert config.test_vault.ws_url is None
    assert config.sync.default_timeout_s == HarnessConfig().sync.default_timeout_s
    assert not config.slow


def test_environment_overrides():
    config = load_config_from_env(
        environ={
            "CDP_PORT": "9333",
            "CDP_HOST": " 10.0.0.5 ",
            "TEST_VAULT_PATH": "/vaults/one",
            "TEST2_VAULT_PATH": "/vaults/two",
            "TEST2_VAULT_WS_URL": "ws://127.0.0.1:9333/devtools/page/ABC",
            "E2E_FIXTURES_PATH": "/data/fixtures",
        },
        verbose=True,
    )

    assert config.cdp.port == 9333
    assert config.cdp.host == "10.0.0.5"
    assert config.test_vault.path == Path("/vaults/one")
    assert config.test2_vault.path == Path("/vaults/two")
    assert config.test_vault.ws_url is None
    assert config.test2_vault.ws_url == "ws://127.0.0.1:9333/devtools/page/ABC"
    assert config.fixtures_path == Path("/data/fixtures")
    assert config.verbose


@pytest.mark.parametrize("value", ["abc", "0", "70000"])
def test_bad_port_rejected(value):
    with pytest.raises(ValueError, match="CDP_PORT"):
        load_config_from_env(environ={"CDP_PORT": value})


def test_blank_values_fall_back_to_defaults():
    config = load_config_from_env(environ={"CDP_PORT": "", "CDP_HOST": "   ", "TEST_VAULT_WS_URL": ""})

    assert config.cdp.port == DEFAULT_CDP_PORT
    assert config.cdp.host == "127.0.0.1"
    assert config.test_vault.ws_url is None


def test_ws_url_must_be_websocket():
    with pytest.raises(ValueError, match="TEST_VAULT_WS_URL"):
        load_config_from_env(environ={"TEST_VAULT_WS_URL": "http://127.0.0.1:9222/json"})


def test_slow_mode_uses_longer_timings():
    fast = load_config_from_env(environ={})
    slow = load_config_from_env(environ={}, slow=True)

    assert slow.slow
    assert slow.sync.default_timeout_s > fast.sync.default_timeout_s
    assert slow.sync.min_poll_interval_s > fast.sync.min_poll_interval_s
    assert slow.sync.backoff_policy().max_interval_s == slow.sync.max_poll_interval_s


def test_scaled_endpoints_from_environment():
    config = load_config_from_env(environ={"E2E_CDP_ENDPOINTS": "localhost:9222, 10.0.0.7:9300,,"})

    assert config.cdp_endpoints == (
        CdpEndpoint("client-1", "localhost", 9222),
        CdpEndpoint("client-2", "10.0.0.7", 9300),
    )
    assert load_config_from_env(environ={}).cdp_endpoints == ()


@pytest.mark.parametrize("value", ["localhost", "localhost:", ":9222", "localhost:http", "localhost:70000"])
def test_bad_scaled_endpoint_rejected(value):
    with pytest.raises(ValueError, match="E2E_CDP_ENDPOINTS"):
        load_config_from_env(environ={"E2E_CDP_ENDPOINTS": value})


def test_default_endpoints_count_up_from_base_port():
    endpoints = default_cdp_endpoints(3, CdpConfig(host="docker", port=9400))

    assert [(e.name, e.host, e.port) for e in endpoints] == [
        ("client-1", "docker", 9400),
        ("client-2", "docker", 9401),
        ("client-3", "docker", 9402),
    ]
    with pytest.raises(ValueError):
        default_cdp_endpoints(0)
