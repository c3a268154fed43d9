"""Scaled mode: N vaults, one DevTools endpoint each (usually one container per vault).

Each endpoint is expected to show exactly one Obsidian vault window. Vault
names can repeat across containers, so vaults are addressed by endpoint name
(``client-1``, ``client-2``, ...).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Sequence

from .backoff import BackoffPolicy, poll_with_backoff
from .cdp_client import CdpClient, create_cdp_client
from .config import CdpEndpoint, HarnessConfig
from .context import VaultContext
from .discovery import VaultPage, fetch_targets, select_vault_pages
from .errors import DiscoveryError, HarnessError, SyncTimeoutError

logger = logging.getLogger(__name__)

# Consecutive identical polls before N vaults count as converged.
REQUIRED_STABLE_CHECKS = 3

ADD_PEER_GRACE_S = 5.0

_ACCEPT_TRUST_DIALOG_JS = """
  (function() {
    const modal = document.querySelector('.modal.mod-trust-folder');
    if (!modal) return false;
    const button = Array.from(modal.querySelectorAll('button')).find(b =>
      b.textContent.toLowerCase().includes('trust') ||
      b.textContent.toLowerCase().includes('enable')
    );
    if (!button) return false;
    button.click();
    return true;
  })()
"""


@dataclass(frozen=True)
class VaultSnapshot:
    name: str
    version: str
    files: tuple[str, ...]


class _Stability:
    """Counts how many polls in a row produced the same converged state."""

    def __init__(self, required: int) -> None:
        self.required = required
        self.key: object = None
        self.count = 0

    def reset(self) -> None:
        self.key = None
        self.count = 0

    def observe(self, key: object) -> bool:
        if key == self.key:
            self.count += 1
        else:
            self.key = key
            self.count = 1
        return self.count >= self.required


def _agreed(snapshots: Sequence[VaultSnapshot]) -> bool:
    first = snapshots[0]
    return bool(first.version) and all(
        s.version == first.version and s.files == first.files for s in snapshots
    )


@dataclass
class ScaledTestContext:
    __test__ = False

    vaults: list[VaultContext]
    config: HarnessConfig

    def __len__(self) -> int:
        return len(self.vaults)

    def get_client(self, index: int) -> VaultContext:
        if not 0 <= index < len(self.vaults):
            raise IndexError(f"Client index {index} out of range (0-{len(self.vaults) - 1})")
        return self.vaults[index]

    def get_client_by_name(self, name: str) -> VaultContext | None:
        for vault in self.vaults:
            if vault.name == name:
                return vault
        return None

    async def snapshot(self) -> list[VaultSnapshot]:
        async def one(vault: VaultContext) -> VaultSnapshot:
            version, files = await asyncio.gather(vault.sync.get_version(), vault.sync.get_crdt_files())
            return VaultSnapshot(vault.name, version, tuple(sorted(files)))

        return list(await asyncio.gather(*(one(v) for v in self.vaults)))

    async def wait_for_convergence(self, timeout_s: float | None = None) -> str:
        """Wait until every vault reports the same version and file list.

        The agreed state has to hold for ``REQUIRED_STABLE_CHECKS`` polls in
        a row, since N peers can briefly agree while edits are still in flight.
        """

        timeout = self.config.sync.default_timeout_s if timeout_s is None else timeout_s
        stability = _Stability(REQUIRED_STABLE_CHECKS)

        async def check() -> list[VaultSnapshot]:
            try:
                return await self.snapshot()
            except Exception:
                stability.reset()
                raise

        def settled(snapshots: list[VaultSnapshot]) -> bool:
            if not _agreed(snapshots):
                stability.reset()
                return False
            return stability.observe([(s.version, s.files) for s in snapshots])

        result = await poll_with_backoff(
            check, settled, timeout_s=timeout, policy=self.config.sync.backoff_policy()
        )
        if result.success:
            return result.value[0].version

        states = ", ".join(
            f"{s.name}: {s.version or 'unknown'} ({len(s.files)} files)" for s in result.value or []
        )
        message = f"{len(self.vaults)} vaults did not converge after {timeout:.1f}s. {states or 'no state read'}"
        if result.last_error is not None:
            message += f" ({result.describe_last()})"
        raise SyncTimeoutError(message)

    async def wait_for_file_everywhere(self, path: str, *, timeout_s: float | None = None) -> None:
        await asyncio.gather(*(v.sync.wait_for_file(path, timeout_s=timeout_s) for v in self.vaults))

    async def pair_clients(self, first: VaultContext, second: VaultContext, *, timeout_s: float | None = None) -> None:
        """Invite ``second`` from ``first`` and wait until ``first`` sees it connected."""

        logger.info("Pairing %s with %s", first.name, second.name)
        invite, second_id = await asyncio.gather(first.plugin.generate_invite(), second.plugin.get_node_id())

        # addPeer can block until the connection is up.
        task = asyncio.ensure_future(second.plugin.add_peer(invite))
        done, _ = await asyncio.wait({task}, timeout=ADD_PEER_GRACE_S)
        if task in done:
            task.result()
        else:
            task.add_done_callback(lambda t: t.cancelled() or t.exception())

        await first.sync.wait_for_peer_connected(second_id, timeout_s=timeout_s)
        logger.info("%s <-> %s paired", first.name, second.name)

    async def _peer_counts(self) -> list[int]:
        peers = await asyncio.gather(*(v.plugin.get_connected_peers() for v in self.vaults))
        return [sum(1 for p in found if p.connection_state == "connected") for found in peers]

    async def wait_for_full_mesh(self, timeout_s: float | None = None) -> bool:
        expected = len(self.vaults) - 1
        timeout = self.config.sync.default_timeout_s if timeout_s is None else timeout_s
        result = await poll_with_backoff(
            self._peer_counts,
            lambda counts: all(c >= expected for c in counts),
            timeout_s=timeout,
            policy=self.config.sync.backoff_policy(),
        )
        return result.success

    async def create_full_mesh(self, *, gossip_timeout_s: float | None = None) -> None:
        """Pair the first vault with every other one, then let gossip fill in the rest.

        Hub pairings run one at a time; concurrent invites race each other.
        Pairs still missing once gossip has had its chance are paired directly.
        """

        if len(self.vaults) < 2:
            return
        hub, spokes = self.vaults[0], self.vaults[1:]
        for spoke in spokes:
            await self.pair_clients(hub, spoke)

        gossip_timeout = 5.0 + 2.0 * len(self.vaults) if gossip_timeout_s is None else gossip_timeout_s
        if await self.wait_for_full_mesh(gossip_timeout):
            logger.info("Full mesh of %d vaults formed via gossip", len(self.vaults))
            return

        node_ids = await asyncio.gather(*(v.plugin.get_node_id() for v in self.vaults))
        for i, vault in enumerate(spokes, start=1):
            peers = await vault.plugin.get_connected_peers()
            for j in range(i + 1, len(self.vaults)):
                if not any(p.matches(node_ids[j]) for p in peers):
                    await self.pair_clients(vault, self.vaults[j])

        if not await self.wait_for_full_mesh():
            counts = await self._peer_counts()
            summary = ", ".join(f"{v.name}: {c}" for v, c in zip(self.vaults, counts))
            raise SyncTimeoutError(
                f"Full mesh did not form; expected {len(self.vaults) - 1} peers each. {summary}"
            )

    def cleanup_between_tests(self) -> None:
        for vault in self.vaults:
            vault.client.clear_console_messages()

    async def reset_files(self) -> None:
        await asyncio.gather(*(v.state.reset_vault_files() for v in self.vaults))

    async def reset_all(self) -> None:
        await asyncio.gather(*(v.state.reset_all() for v in self.vaults))

    async def close(self) -> None:
        await asyncio.gather(*(v.client.close() for v in self.vaults))


async def discover_endpoint_page(
    endpoint: CdpEndpoint,
    *,
    timeout_s: float = 30.0,
    poll_interval_s: float = 1.0,
) -> VaultPage:
    """Wait for the one vault window an endpoint is expected to serve."""

    result = await poll_with_backoff(
        lambda: fetch_targets(endpoint.port, host=endpoint.host),
        lambda targets: bool(select_vault_pages(targets)),
        timeout_s=timeout_s,
        policy=BackoffPolicy.fixed(poll_interval_s),
    )
    if not result.success:
        message = f"No vault window found at {endpoint.host}:{endpoint.port} ({endpoint.name}) after {timeout_s:.0f}s"
        if result.last_error is not None:
            message += f": {result.last_error}"
        raise DiscoveryError(message)
    pages = select_vault_pages(result.value)
    return next(iter(pages.values()))


async def accept_trust_dialog(client: CdpClient) -> bool:
    """Click through the "Trust folder" modal a fresh container vault shows."""

    return bool(await client.evaluate(_ACCEPT_TRUST_DIALOG_JS))


async def _connect_endpoint(endpoint: CdpEndpoint, config: HarnessConfig) -> VaultContext:
    page = await discover_endpoint_page(endpoint, timeout_s=config.discovery_timeout_s)
    client = await create_cdp_client(page.ws_url, config.cdp)
    try:
        if await accept_trust_dialog(client):
            logger.info("%s: accepted trust dialog", endpoint.name)
        ctx = VaultContext.build(page, client, config)
    except BaseException:
        await client.close()
        raise
    return replace(ctx, name=endpoint.name)


async def create_scaled_test_context(
    endpoints: Iterable[CdpEndpoint],
    config: HarnessConfig,
    *,
    output: Callable[[str], None] = print,
) -> ScaledTestContext:
    """Connect to every endpoint concurrently; any failure closes the rest."""

    endpoints = list(endpoints)
    if not endpoints:
        raise HarnessError("No CDP endpoints configured")
    output(f"Connecting to {len(endpoints)} client(s)...")
    results = await asyncio.gather(
        *(_connect_endpoint(endpoint, config) for endpoint in endpoints),
        return_exceptions=True,
    )
    vaults = [r for r in results if isinstance(r, VaultContext)]
    errors = [r for r in results if isinstance(r, BaseException)]
    if errors:
        await asyncio.gather(*(v.client.close() for v in vaults))
        raise errors[0]

    ctx = ScaledTestContext(vaults, config)
    try:
        node_ids = await asyncio.gather(*(v.plugin.get_node_id() for v in vaults))
        for vault, node_id in zip(vaults, node_ids):
            output(f"  {vault.name} ({vault.page.name}): {node_id[:16] or 'unknown'}...")
        await asyncio.gather(*(v.plugin.enable_auto_accept_vault_adoption() for v in vaults))
    except BaseException:
        await ctx.close()
        raise
    output(f"Connected to {len(vaults)} client(s); auto-accept enabled")
    return ctx
