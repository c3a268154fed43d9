"""End-to-end harness driving Obsidian vaults over the Chrome DevTools Protocol."""

from .backoff import BackoffPolicy, PollResult, poll_with_backoff
from .cdp_client import CdpClient, ConnectionState, EvaluateResult, create_cdp_client
from .config import CdpConfig, CdpEndpoint, HarnessConfig, SyncConfig, VaultConfig, load_config_from_env
from .discovery import VaultPage, discover_vaults, extract_vault_name, wait_for_vaults
from .errors import (
    CdpConnectionError,
    CdpTimeoutError,
    DiscoveryError,
    EvaluationError,
    HarnessAssertionError,
    HarnessError,
    ReconnectExhausted,
    SyncTimeoutError,
)
from .events import ConsoleMessage, EventCollector

__all__ = [
    "BackoffPolicy",
    "CdpClient",
    "CdpConfig",
    "CdpConnectionError",
    "CdpEndpoint",
    "CdpTimeoutError",
    "ConnectionState",
    "ConsoleMessage",
    "DiscoveryError",
    "EvaluateResult",
    "EvaluationError",
    "EventCollector",
    "HarnessAssertionError",
    "HarnessConfig",
    "HarnessError",
    "PollResult",
    "ReconnectExhausted",
    "SyncConfig",
    "SyncTimeoutError",
    "VaultConfig",
    "VaultPage",
    "create_cdp_client",
    "discover_vaults",
    "extract_vault_name",
    "load_config_from_env",
    "poll_with_backoff",
    "wait_for_vaults",
]
