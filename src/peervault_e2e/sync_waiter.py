"""Waits for state to settle within one vault or converge across two.

Each wait is a check/predicate pair handed to ``poll_with_backoff``; on
timeout a ``SyncTimeoutError`` names the values that never matched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .backoff import BackoffPolicy, poll_with_backoff
from .cdp_client import CdpClient
from .config import SyncConfig
from .errors import EvaluationError, HarnessError, SyncTimeoutError
from .plugin_api import PluginAPI, SyncStatus
from .vault import VaultController

logger = logging.getLogger(__name__)


def _preview(text: str, limit: int = 100) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


@dataclass
class _Read:
    found: bool
    content: Optional[str] = None
    error: Optional[BaseException] = None


class SyncWaiter:
    def __init__(self, client: CdpClient, vault_name: str, sync_config: SyncConfig | None = None) -> None:
        self.client = client
        self.vault_name = vault_name
        self.sync_config = sync_config or SyncConfig()
        self.vault = VaultController(client, vault_name)
        self.plugin = PluginAPI(client, vault_name)

    @property
    def policy(self) -> BackoffPolicy:
        return self.sync_config.backoff_policy()

    def _timeout(self, timeout_s: float | None) -> float:
        return self.sync_config.default_timeout_s if timeout_s is None else timeout_s

    async def _read(self, path: str) -> _Read:
        try:
            return _Read(True, await self.vault.read_file(path))
        except EvaluationError as exc:
            if "not found" not in str(exc):
                logger.warning("%s: unexpected error reading %s: %s", self.vault_name, path, exc)
            return _Read(False, error=exc)

    async def wait_for_file(self, path: str, *, timeout_s: float | None = None) -> None:
        timeout = self._timeout(timeout_s)
        result = await poll_with_backoff(
            lambda: self.vault.file_exists(path), bool, timeout_s=timeout, policy=self.policy
        )
        if not result.success:
            raise SyncTimeoutError(f'File "{path}" not found in vault "{self.vault_name}" after {timeout:.1f}s')

    async def wait_for_file_deletion(self, path: str, *, timeout_s: float | None = None) -> None:
        timeout = self._timeout(timeout_s)
        result = await poll_with_backoff(
            lambda: self.vault.file_exists(path), lambda exists: not exists, timeout_s=timeout, policy=self.policy
        )
        if not result.success:
            raise SyncTimeoutError(f'File "{path}" still exists in vault "{self.vault_name}" after {timeout:.1f}s')

    async def wait_for_content(self, path: str, expected: str, *, timeout_s: float | None = None) -> None:
        timeout = self._timeout(timeout_s)
        result = await poll_with_backoff(
            lambda: self._read(path),
            lambda r: r.found and r.content == expected,
            timeout_s=timeout,
            policy=self.policy,
        )
        if result.success:
            return
        last = result.value
        if last is not None and last.found:
            details = f'Got: "{_preview(last.content or "")}"'
        elif last is not None and last.error is not None:
            details = f"Error: {last.error}"
        else:
            details = "File not found"
        raise SyncTimeoutError(
            f'File "{path}" content mismatch in "{self.vault_name}" after {timeout:.1f}s. '
            f'Expected: "{_preview(expected)}". {details}'
        )

    async def wait_for_content_contains(self, path: str, substring: str, *, timeout_s: float | None = None) -> None:
        timeout = self._timeout(timeout_s)
        result = await poll_with_backoff(
            lambda: self._read(path),
            lambda r: r.found and substring in (r.content or ""),
            timeout_s=timeout,
            policy=self.policy,
        )
        if result.success:
            return
        last = result.value
        details = ""
        if last is not None and last.found:
            details = f' Current content: "{_preview(last.content or "")}"'
        elif last is not None and last.error is not None:
            details = f" Error: {last.error}"
        raise SyncTimeoutError(f'File "{path}" does not contain "{substring}" after {timeout:.1f}s.{details}')

    async def wait_for_status(self, status: SyncStatus, *, timeout_s: float | None = None) -> None:
        timeout = self._timeout(timeout_s)
        result = await poll_with_backoff(
            self.plugin.get_status, lambda current: current == status, timeout_s=timeout, policy=self.policy
        )
        if not result.success:
            raise SyncTimeoutError(f'Plugin status not "{status}" after {timeout:.1f}s. Current: "{result.value}"')

    async def wait_for_sync_complete(self, *, timeout_s: float | None = None) -> None:
        """Wait until the plugin goes back to idle.

        Without a "syncing" reading first, a second idle reading is required
        so a check that lands between two syncs does not end the wait early.
        """

        timeout = self._timeout(timeout_s)
        seen = {"syncing": False, "idle": 0}

        async def check() -> str:
            status = await self.plugin.get_status()
            if status == "syncing":
                seen["syncing"] = True
            elif status == "idle":
                seen["idle"] += 1
            if status == "error":
                return "error"
            if status == "idle" and (seen["syncing"] or seen["idle"] >= 2):
                return "done"
            return "pending"

        result = await poll_with_backoff(
            check, lambda outcome: outcome != "pending", timeout_s=timeout, policy=self.policy
        )
        if result.success and result.value == "error":
            raise HarnessError(f"Sync failed with error status in {self.vault_name}")
        if not result.success:
            raise SyncTimeoutError(f"Sync did not complete in {self.vault_name} after {timeout:.1f}s")

    async def wait_for_peer_connected(self, node_id: str, *, timeout_s: float | None = None) -> None:
        timeout = self._timeout(timeout_s)

        async def check() -> bool:
            for peer in await self.plugin.get_connected_peers():
                if peer.matches(node_id):
                    return peer.connection_state == "connected"
            return False

        result = await poll_with_backoff(check, bool, timeout_s=timeout, policy=self.policy)
        if not result.success:
            raise SyncTimeoutError(f"Peer {node_id[:8]} not connected to {self.vault_name} after {timeout:.1f}s")

    async def wait_for_session_state(self, peer_id: str, target_state: str, *, timeout_s: float | None = None) -> None:
        timeout = self._timeout(timeout_s)
        result = await poll_with_backoff(
            self.plugin.get_session_states,
            lambda sessions: any(s.matches(peer_id) and s.state == target_state for s in sessions),
            timeout_s=timeout,
            policy=self.policy,
        )
        if not result.success:
            sessions = ", ".join(f"{s.peer_id[:8]}:{s.state}" for s in result.value or [])
            raise SyncTimeoutError(
                f'Session for {peer_id[:8]} not in state "{target_state}" after {timeout:.1f}s. '
                f"Sessions: [{sessions}]"
            )

    async def get_version(self) -> str:
        return await self.plugin.get_document_version()

    async def get_crdt_files(self) -> list[str]:
        return await self.plugin.get_crdt_files()


async def wait_for_version_convergence(
    first: SyncWaiter, second: SyncWaiter, *, timeout_s: float | None = None
) -> str:
    """Wait until both peers report the same non-empty document version."""

    timeout = first._timeout(timeout_s)

    async def check() -> tuple[str, str]:
        v1, v2 = await asyncio.gather(first.get_version(), second.get_version())
        return v1, v2

    result = await poll_with_backoff(
        check, lambda pair: bool(pair[0]) and pair[0] == pair[1], timeout_s=timeout, policy=first.policy
    )
    if result.success:
        return result.value[0]
    v1, v2 = result.value or ("unknown", "unknown")
    message = (
        f"Versions did not converge after {timeout:.1f}s. "
        f"{first.vault_name}: {v1 or 'unknown'}, {second.vault_name}: {v2 or 'unknown'}"
    )
    if result.last_error is not None:
        message += f" ({result.describe_last()})"
    raise SyncTimeoutError(message)


async def wait_for_file_list_convergence(
    first: SyncWaiter, second: SyncWaiter, *, timeout_s: float | None = None
) -> list[str]:
    """Wait until both peers track the same set of paths."""

    timeout = first._timeout(timeout_s)

    async def check() -> tuple[list[str], list[str]]:
        files1, files2 = await asyncio.gather(first.get_crdt_files(), second.get_crdt_files())
        return sorted(files1), sorted(files2)

    result = await poll_with_backoff(
        check, lambda pair: pair[0] == pair[1], timeout_s=timeout, policy=first.policy
    )
    if result.success:
        return result.value[0]
    files1, files2 = result.value or ([], [])
    only1 = sorted(set(files1) - set(files2))
    only2 = sorted(set(files2) - set(files1))
    raise SyncTimeoutError(
        f"File lists did not converge after {timeout:.1f}s. "
        f"Only in {first.vault_name}: [{', '.join(only1)}], "
        f"Only in {second.vault_name}: [{', '.join(only2)}]"
    )


async def wait_for_file_sync(
    source: SyncWaiter, target: SyncWaiter, path: str, *, timeout_s: float | None = None
) -> None:
    if path not in await source.get_crdt_files():
        raise HarnessError(f'File "{path}" not found in source CRDT of {source.vault_name}')
    await target.wait_for_file(path, timeout_s=timeout_s)
