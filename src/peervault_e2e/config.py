from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping

from .backoff import BackoffPolicy

DEFAULT_CDP_PORT = 9222
DEFAULT_CDP_HOST = "127.0.0.1"


@dataclass(frozen=True)
class CdpConfig:
    port: int = DEFAULT_CDP_PORT
    host: str = DEFAULT_CDP_HOST
    connection_timeout_s: float = 10.0
    evaluate_timeout_s: float = 30.0
    max_reconnect_attempts: int = 3
    reconnect_delay_s: float = 1.0
    max_console_messages: int = 1000
    auto_reconnect: bool = True


@dataclass(frozen=True)
class SyncConfig:
    # Generous default; CRDT convergence across relays is slow to settle.
    default_timeout_s: float = 20.0
    min_poll_interval_s: float = 0.05
    max_poll_interval_s: float = 0.5
    backoff_multiplier: float = 1.5

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            min_interval_s=self.min_poll_interval_s,
            max_interval_s=self.max_poll_interval_s,
            multiplier=self.backoff_multiplier,
        )


@dataclass(frozen=True)
class VaultConfig:
    name: str
    path: Path
    # When set, discovery is skipped and the client connects here directly.
    ws_url: str | None = None


@dataclass(frozen=True)
class CdpEndpoint:
    """One DevTools listener in scaled mode, normally one container per vault."""

    name: str
    host: str
    port: int


@dataclass(frozen=True)
class HarnessConfig:
    cdp: CdpConfig = field(default_factory=CdpConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    test_vault: VaultConfig = field(
        default_factory=lambda: VaultConfig("TEST", Path.home() / "Documents" / "TEST")
    )
    test2_vault: VaultConfig = field(
        default_factory=lambda: VaultConfig("TEST2", Path.home() / "Documents" / "TEST2")
    )
    fixtures_path: Path = Path("e2e/fixtures")
    discovery_timeout_s: float = 30.0
    verbose: bool = False
    slow: bool = False
    # Scaled mode only; empty means one endpoint per client from cdp.port upwards.
    cdp_endpoints: tuple[CdpEndpoint, ...] = ()

    @property
    def vaults(self) -> tuple[VaultConfig, VaultConfig]:
        return self.test_vault, self.test2_vault


def _parse_port(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if not (1 <= parsed <= 65535):
        raise ValueError(f"{name} must be between 1 and 65535")
    return parsed


def _parse_str(environ: Mapping[str, str], name: str) -> str | None:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _parse_ws_url(environ: Mapping[str, str], name: str) -> str | None:
    raw = _parse_str(environ, name)
    if raw is None:
        return None
    if not raw.startswith(("ws://", "wss://")):
        raise ValueError(f"{name} must be a ws:// or wss:// URL")
    return raw


def parse_cdp_endpoints(raw: str, *, name: str = "E2E_CDP_ENDPOINTS") -> tuple[CdpEndpoint, ...]:
    """Parse ``"host:port,host:port"`` into endpoints named client-1, client-2, ..."""

    endpoints: list[CdpEndpoint] = []
    for item in (part.strip() for part in raw.split(",")):
        if not item:
            continue
        host, sep, port = item.rpartition(":")
        if not (sep and host and port):
            raise ValueError(f"{name} entries must look like host:port, got {item!r}")
        endpoints.append(
            CdpEndpoint(f"client-{len(endpoints) + 1}", host, _parse_port({name: port}, name, DEFAULT_CDP_PORT))
        )
    if not endpoints:
        raise ValueError(f"{name} must list at least one host:port")
    return tuple(endpoints)


def default_cdp_endpoints(count: int, cdp: CdpConfig | None = None) -> tuple[CdpEndpoint, ...]:
    cdp = cdp or CdpConfig()
    if count < 1:
        raise ValueError("client count must be at least 1")
    return tuple(CdpEndpoint(f"client-{i + 1}", cdp.host, cdp.port + i) for i in range(count))


def load_config_from_env(
    *,
    slow: bool = False,
    verbose: bool = False,
    environ: Mapping[str, str] | None = None,
) -> HarnessConfig:
    """Build the harness configuration, applying environment overrides.

    Recognised variables: ``CDP_PORT``, ``CDP_HOST``, ``TEST_VAULT_PATH``,
    ``TEST2_VAULT_PATH``, ``TEST_VAULT_WS_URL``, ``TEST2_VAULT_WS_URL``,
    ``E2E_FIXTURES_PATH`` and ``E2E_CDP_ENDPOINTS`` (scaled mode). ``slow``
    swaps in conservative sync timings for debugging against a sluggish host.
    """

    env = os.environ if environ is None else environ
    base = HarnessConfig()

    cdp = replace(
        base.cdp,
        port=_parse_port(env, "CDP_PORT", base.cdp.port),
        host=_parse_str(env, "CDP_HOST") or base.cdp.host,
    )

    test_path = _parse_str(env, "TEST_VAULT_PATH")
    test2_path = _parse_str(env, "TEST2_VAULT_PATH")
    test_vault = replace(
        base.test_vault,
        path=Path(test_path) if test_path else base.test_vault.path,
        ws_url=_parse_ws_url(env, "TEST_VAULT_WS_URL"),
    )
    test2_vault = replace(
        base.test2_vault,
        path=Path(test2_path) if test2_path else base.test2_vault.path,
        ws_url=_parse_ws_url(env, "TEST2_VAULT_WS_URL"),
    )

    fixtures = _parse_str(env, "E2E_FIXTURES_PATH")
    endpoints = _parse_str(env, "E2E_CDP_ENDPOINTS")

    sync = base.sync
    if slow:
        sync = replace(
            sync,
            default_timeout_s=30.0,
            min_poll_interval_s=0.2,
            max_poll_interval_s=1.0,
        )

    return HarnessConfig(
        cdp=cdp,
        sync=sync,
        test_vault=test_vault,
        test2_vault=test2_vault,
        fixtures_path=Path(fixtures) if fixtures else base.fixtures_path,
        discovery_timeout_s=base.discovery_timeout_s,
        verbose=verbose,
        slow=slow,
        cdp_endpoints=parse_cdp_endpoints(endpoints) if endpoints else (),
    )
