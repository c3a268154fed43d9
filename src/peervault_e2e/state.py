"""Reset vault and plugin state between tests."""

from __future__ import annotations

from dataclasses import dataclass

from .backoff import BackoffPolicy, poll_with_backoff
from .cdp_client import CdpClient
from .errors import HarnessError
from .plugin_api import PluginAPI
from .vault import DeleteAllResult, VaultController


@dataclass(frozen=True)
class StateSummary:
    file_count: int
    peer_count: int
    session_count: int
    crdt_file_count: int
    pending_pairing_count: int

    @property
    def is_clean(self) -> bool:
        return (
            self.file_count == 0
            and self.peer_count == 0
            and self.session_count == 0
            and self.pending_pairing_count == 0
        )


class StateManager:
    def __init__(self, client: CdpClient, vault_name: str) -> None:
        self.client = client
        self.vault_name = vault_name
        self.vault = VaultController(client, vault_name)
        self.plugin = PluginAPI(client, vault_name)

    async def reset_vault_files(self) -> DeleteAllResult:
        return await self.vault.delete_all_files()

    async def reset_peers(self) -> None:
        """Remove every peer, then force-clear the peer store.

        Removing a peer on one side notifies the other, so the maps are cleared
        directly afterwards to beat that race.
        """

        await self.plugin.clear_all_peers()
        await self.client.evaluate(
            """
      (async function() {
        const plugin = window.app?.plugins?.plugins?.["peervault"];
        const pm = plugin?.peerManager;
        if (!pm) return;
        pm.pendingPairingRequests?.clear();
        pm.peers?.clear();
        pm.sessions?.clear();
        pm.reconnectAttempts?.clear();
        if (pm.storage) {
          const data = new TextEncoder().encode(JSON.stringify([]));
          await pm.storage.write("peervault-peers", data);
        }
      })()
    """
        )

    async def reset_crdt_state(self) -> None:
        """Close sessions and delete the plugin's CRDT storage and blob store."""

        await self.client.evaluate(
            """
      (async function() {
        const plugin = window.app?.plugins?.plugins?.["peervault"];
        if (!plugin) return;
        const pm = plugin.peerManager;
        if (pm?.sessions) {
          for (const [id, session] of pm.sessions) {
            try {
              await session.close();
            } catch (e) {
              console.warn("Failed to close session:", id, e);
            }
          }
          pm.sessions.clear();
        }
        const adapter = window.app.vault.adapter;
        const root = window.app.vault.configDir + "/plugins/peervault/";
        for (const dir of ["peervault-storage", "blobs"]) {
          const path = root + dir;
          try {
            if (await adapter.exists(path)) {
              const listing = await adapter.list(path);
              for (const file of listing.files) {
                await adapter.remove(file);
              }
              await adapter.rmdir(path, true);
            }
          } catch (e) {
            console.log("[E2E] Error deleting " + path + ":", e);
          }
        }
      })()
    """
        )

    async def reset_all(self) -> DeleteAllResult:
        # Peers first so nothing syncs while files are being removed.
        await self.reset_peers()
        await self.reset_crdt_state()
        return await self.reset_vault_files()

    async def reload_plugin(self) -> None:
        await self.plugin.reload()

    async def get_state_summary(self) -> StateSummary:
        raw = await self.client.evaluate(
            """
      (function() {
        const vault = window.app.vault;
        const plugin = window.app?.plugins?.plugins?.["peervault"];
        const pm = plugin?.peerManager;
        const dm = plugin?.documentManager;
        return {
          fileCount: vault.getFiles().filter(f => !f.path.startsWith('.obsidian/')).length,
          peerCount: pm?.peers?.size || 0,
          sessionCount: pm?.sessions?.size || 0,
          crdtFileCount: dm?.listAllPaths?.()?.length || 0,
          pendingPairingCount: pm?.pendingPairingRequests?.size || 0,
        };
      })()
    """
        ) or {}
        return StateSummary(
            file_count=int(raw.get("fileCount", 0)),
            peer_count=int(raw.get("peerCount", 0)),
            session_count=int(raw.get("sessionCount", 0)),
            crdt_file_count=int(raw.get("crdtFileCount", 0)),
            pending_pairing_count=int(raw.get("pendingPairingCount", 0)),
        )

    async def wait_for_clean_state(self, timeout_s: float = 10.0) -> StateSummary:
        result = await poll_with_backoff(
            self.get_state_summary,
            lambda summary: summary.is_clean,
            timeout_s=timeout_s,
            policy=BackoffPolicy.fixed(0.5),
        )
        if result.success:
            return result.value
        final = result.value
        if final is None:
            raise HarnessError(f"{self.vault_name} not clean after {timeout_s:.0f}s, {result.describe_last()}")
        raise HarnessError(
            f"{self.vault_name} not clean after {timeout_s:.0f}s. "
            f"Files: {final.file_count}, Peers: {final.peer_count}, "
            f"Sessions: {final.session_count}, Pending: {final.pending_pairing_count}"
        )

    async def verify_empty(self) -> bool:
        return not await self.vault.list_files()

    async def verify_no_peers(self) -> bool:
        return not await self.plugin.get_connected_peers()
