"""Assertion helpers for end-to-end tests.

Failures raise ``HarnessAssertionError`` so the runner can tell a failed
expectation apart from a harness or transport error.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Iterable, Optional

from .backoff import BackoffPolicy, poll_with_backoff
from .errors import HarnessAssertionError
from .plugin_api import PluginAPI, SyncStatus
from .vault import VaultController


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def assert_that(condition: Any, message: str) -> None:
    if not condition:
        raise HarnessAssertionError(message)


def assert_equal(actual: Any, expected: Any, message: Optional[str] = None) -> None:
    if actual != expected:
        raise HarnessAssertionError(message or f"Expected {expected!r}, got {actual!r}")


def assert_not_equal(actual: Any, not_expected: Any, message: Optional[str] = None) -> None:
    if actual == not_expected:
        raise HarnessAssertionError(message or f"Expected value to not equal {not_expected!r}")


def assert_truthy(value: Any, message: Optional[str] = None) -> None:
    if not value:
        raise HarnessAssertionError(message or f"Expected truthy value, got {value!r}")


def assert_falsy(value: Any, message: Optional[str] = None) -> None:
    if value:
        raise HarnessAssertionError(message or f"Expected falsy value, got {value!r}")


def assert_contains(items: Iterable[Any], value: Any, message: Optional[str] = None) -> None:
    if value not in list(items):
        raise HarnessAssertionError(message or f"Expected collection to contain {value!r}")


def assert_not_contains(items: Iterable[Any], value: Any, message: Optional[str] = None) -> None:
    if value in list(items):
        raise HarnessAssertionError(message or f"Expected collection to not contain {value!r}")


def assert_includes(text: str, substring: str, message: Optional[str] = None) -> None:
    if substring not in text:
        raise HarnessAssertionError(message or f'Expected "{text}" to include "{substring}"')


def assert_matches(text: str, pattern: str | re.Pattern[str], message: Optional[str] = None) -> None:
    if re.search(pattern, text) is None:
        raise HarnessAssertionError(message or f'Expected "{text}" to match {pattern!r}')


def assert_greater_than(actual: float, expected: float, message: Optional[str] = None) -> None:
    if not actual > expected:
        raise HarnessAssertionError(message or f"Expected {actual} to be greater than {expected}")


def assert_less_than(actual: float, expected: float, message: Optional[str] = None) -> None:
    if not actual < expected:
        raise HarnessAssertionError(message or f"Expected {actual} to be less than {expected}")


async def assert_raises(func: Callable[[], Awaitable[Any]], expected_message: Optional[str] = None) -> Exception:
    try:
        await func()
    except Exception as exc:  # noqa: BLE001 - any failure satisfies the assertion
        if expected_message and expected_message not in str(exc):
            raise HarnessAssertionError(
                f'Expected error message to include "{expected_message}", got "{exc}"'
            ) from exc
        return exc
    raise HarnessAssertionError("Expected function to raise")


async def assert_file_exists(vault: VaultController, path: str) -> None:
    if not await vault.file_exists(path):
        raise HarnessAssertionError(f'File "{path}" does not exist in {vault.vault_name}')


async def assert_file_not_exists(vault: VaultController, path: str) -> None:
    if await vault.file_exists(path):
        raise HarnessAssertionError(f'File "{path}" exists in {vault.vault_name} but should not')


async def assert_file_content(vault: VaultController, path: str, expected: str) -> None:
    content = await vault.read_file(path)
    if content != expected:
        raise HarnessAssertionError(
            f'File "{path}" content mismatch.\n'
            f'Expected: "{_preview(expected, 200)}"\n'
            f'Got: "{_preview(content, 200)}"'
        )


async def assert_file_contains(vault: VaultController, path: str, substring: str) -> None:
    if substring not in await vault.read_file(path):
        raise HarnessAssertionError(f'File "{path}" does not contain "{substring}"')


async def assert_file_count(vault: VaultController, expected: int) -> None:
    files = await vault.list_files()
    if len(files) != expected:
        raise HarnessAssertionError(f"Expected {expected} files, got {len(files)}")


async def assert_vault_empty(vault: VaultController) -> None:
    files = await vault.list_files()
    if files:
        raise HarnessAssertionError(f"Vault is not empty. Found files: {', '.join(files)}")


async def assert_plugin_status(plugin: PluginAPI, expected: SyncStatus) -> None:
    status = await plugin.get_status()
    if status != expected:
        raise HarnessAssertionError(f'Expected plugin status "{expected}", got "{status}"')


async def assert_plugin_enabled(plugin: PluginAPI) -> None:
    if not await plugin.is_enabled():
        raise HarnessAssertionError("Plugin is not enabled")


async def assert_no_peers(plugin: PluginAPI) -> None:
    peers = await plugin.get_connected_peers()
    if peers:
        ids = ", ".join(p.node_id[:8] for p in peers)
        raise HarnessAssertionError(f"Expected no peers, but found {len(peers)}: {ids}")


async def assert_peer_count(plugin: PluginAPI, expected: int) -> None:
    peers = await plugin.get_connected_peers()
    if len(peers) != expected:
        raise HarnessAssertionError(f"Expected {expected} peers, got {len(peers)}")


async def assert_peer_connected(plugin: PluginAPI, node_id: str) -> None:
    for peer in await plugin.get_connected_peers():
        if peer.matches(node_id):
            if peer.connection_state != "connected":
                raise HarnessAssertionError(
                    f"Peer {node_id[:8]} is not connected (state: {peer.connection_state})"
                )
            return
    raise HarnessAssertionError(f"Peer {node_id[:8]} not found")


async def assert_in_crdt(plugin: PluginAPI, path: str) -> None:
    if path not in await plugin.get_crdt_files():
        raise HarnessAssertionError(f'File "{path}" not found in CRDT')


async def assert_not_in_crdt(plugin: PluginAPI, path: str) -> None:
    if path in await plugin.get_crdt_files():
        raise HarnessAssertionError(f'File "{path}" should not be in CRDT but is')


async def assert_vaults_in_sync(first: VaultController, second: VaultController) -> None:
    files1, files2 = await asyncio.gather(first.list_files(), second.list_files())
    if sorted(files1) != sorted(files2):
        only1 = sorted(set(files1) - set(files2))
        only2 = sorted(set(files2) - set(files1))
        raise HarnessAssertionError(
            "Vaults are not in sync.\n"
            f"Only in {first.vault_name}: [{', '.join(only1)}]\n"
            f"Only in {second.vault_name}: [{', '.join(only2)}]"
        )


async def assert_file_in_sync(first: VaultController, second: VaultController, path: str) -> None:
    content1, content2 = await asyncio.gather(first.read_file(path), second.read_file(path))
    if content1 != content2:
        raise HarnessAssertionError(
            f'File "{path}" content differs between vaults.\n'
            f'{first.vault_name}: "{_preview(content1, 100)}"\n'
            f'{second.vault_name}: "{_preview(content2, 100)}"'
        )


async def assert_eventually(
    condition: Callable[[], Awaitable[bool]],
    *,
    timeout_s: float = 10.0,
    poll_interval_s: float = 0.2,
    message: Optional[str] = None,
) -> None:
    """Poll ``condition`` until it returns True; errors along the way are tolerated."""

    result = await poll_with_backoff(
        condition, bool, timeout_s=timeout_s, policy=BackoffPolicy.fixed(poll_interval_s)
    )
    if result.success:
        return
    details = f" (last error: {result.last_error})" if result.last_error is not None else ""
    raise HarnessAssertionError(f"{message or 'Condition did not become true'} after {timeout_s:.1f}s{details}")


async def assert_stable(
    condition: Callable[[], Awaitable[bool]],
    *,
    duration_s: float = 2.0,
    poll_interval_s: float = 0.2,
    message: Optional[str] = None,
) -> None:
    """Fail as soon as ``condition`` turns False within ``duration_s``."""

    loop = asyncio.get_running_loop()
    started = loop.time()
    while loop.time() - started < duration_s:
        if not await condition():
            elapsed = loop.time() - started
            raise HarnessAssertionError(message or f"Condition became false after {elapsed:.1f}s")
        await asyncio.sleep(poll_interval_s)
