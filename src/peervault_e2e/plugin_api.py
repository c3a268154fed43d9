"""Typed access to the PeerVault plugin inside an Obsidian window.

Every call goes through ``window.app.plugins.plugins["peervault"]``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

from .cdp_client import CdpClient

logger = logging.getLogger(__name__)

SyncStatus = Literal["idle", "syncing", "offline", "error"]

PLUGIN_ID = "peervault"
_PLUGIN_JS = f'window.app?.plugins?.plugins?.["{PLUGIN_ID}"]'


@dataclass(frozen=True)
class PeerInfo:
    node_id: str
    connection_state: str
    trusted: bool = False
    hostname: Optional[str] = None
    nickname: Optional[str] = None
    last_seen: Optional[int] = None
    last_synced: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PeerInfo":
        return cls(
            node_id=str(payload.get("nodeId", "")),
            connection_state=str(payload.get("connectionState", "disconnected")),
            trusted=bool(payload.get("trusted", False)),
            hostname=payload.get("hostname"),
            nickname=payload.get("nickname"),
            last_seen=payload.get("lastSeen"),
            last_synced=payload.get("lastSynced"),
        )

    def matches(self, node_id: str) -> bool:
        return (
            self.node_id == node_id
            or self.node_id.startswith(node_id[:8])
            or node_id.startswith(self.node_id[:8])
        )


@dataclass(frozen=True)
class SessionState:
    peer_id: str
    state: str
    is_initiator: bool = False

    def matches(self, peer_id: str) -> bool:
        return self.peer_id == peer_id or self.peer_id.startswith(peer_id[:8])


class PluginAPI:
    def __init__(self, client: CdpClient, vault_name: str) -> None:
        self.client = client
        self.vault_name = vault_name

    async def _eval(self, body: str) -> Any:
        return await self.client.evaluate(
            f"""
      (async function() {{
        const plugin = {_PLUGIN_JS};
        {body}
      }})()
    """
        )

    async def is_enabled(self) -> bool:
        return bool(await self._eval("return !!plugin;"))

    async def get_version(self) -> str:
        return await self._eval('return plugin?.manifest?.version || "unknown";')

    async def get_status(self) -> SyncStatus:
        return await self._eval('return plugin?.getStatus?.() || "offline";')

    async def get_node_id(self) -> str:
        return await self._eval('return plugin?.getNodeId?.() || "";')

    async def get_connected_peers(self) -> list[PeerInfo]:
        raw = await self._eval(
            """
        const peers = plugin?.getConnectedPeers?.() || [];
        return peers.map(p => ({
          nodeId: p.nodeId,
          hostname: p.hostname,
          nickname: p.nickname,
          connectionState: p.connectionState,
          trusted: p.trusted,
          lastSeen: p.lastSeen,
          lastSynced: p.lastSynced,
        }));
        """
        )
        return [PeerInfo.from_payload(p) for p in raw or []]

    async def generate_invite(self) -> str:
        return await self._eval(
            """
        if (!plugin?.generateInvite) {
          throw new Error("Plugin not available or generateInvite not found");
        }
        return await plugin.generateInvite();
        """
        )

    async def add_peer(self, ticket: str) -> None:
        await self._eval(
            f"""
        if (!plugin?.addPeer) {{
          throw new Error("Plugin not available or addPeer not found");
        }}
        await plugin.addPeer({json.dumps(ticket)});
        """
        )

    async def sync(self) -> None:
        await self._eval(
            """
        if (!plugin?.sync) {
          throw new Error("Plugin not available or sync not found");
        }
        await plugin.sync();
        """
        )

    async def force_reconnect(self) -> None:
        """Close every sync session and ask the peer manager to start fresh ones."""

        await self._eval(
            """
        const pm = plugin?.peerManager;
        if (!pm) return;
        if (pm.sessions) {
          for (const [id, session] of pm.sessions) {
            try {
              await session.close();
            } catch (e) {
              console.warn("[E2E] Failed to close session:", id, e);
            }
          }
          pm.sessions.clear();
        }
        await new Promise(r => setTimeout(r, 500));
        if (pm.syncAll) {
          await pm.syncAll();
        }
        """
        )

    async def get_document_version(self) -> str:
        """Content fingerprint of the CRDT: a hash over sorted paths and lengths.

        Loro's own version vector can differ between peers holding identical
        content, so convergence is judged on this fingerprint instead.
        """

        return await self._eval(
            """
        const dm = plugin?.documentManager;
        if (!dm?.listAllPaths) return "";
        const files = dm.listAllPaths().sort();
        if (files.length === 0) return "empty";
        const fingerprint = [];
        for (const path of files) {
          const content = dm.getFileContent?.(path);
          fingerprint.push(path + ":" + (content ? content.length : 0));
        }
        const str = fingerprint.join("|");
        let hash = 0;
        for (let i = 0; i < str.length; i++) {
          hash = ((hash << 5) - hash) + str.charCodeAt(i);
          hash = hash & hash;
        }
        return (hash >>> 0).toString(16).padStart(8, '0');
        """
        )

    async def get_crdt_files(self) -> list[str]:
        return await self._eval(
            """
        const dm = plugin?.documentManager;
        if (!dm?.listAllPaths) return [];
        return dm.listAllPaths();
        """
        ) or []

    async def get_vault_id(self) -> str:
        return await self._eval('return plugin?.documentManager?.getVaultId?.() || "";')

    async def get_session_states(self) -> list[SessionState]:
        raw = await self._eval(
            """
        const pm = plugin?.peerManager;
        if (!pm?.sessions) return [];
        return Array.from(pm.sessions.entries()).map(([id, session]) => ({
          peerId: id,
          state: session.getState?.() || "unknown",
        }));
        """
        )
        return [SessionState(peer_id=s["peerId"], state=s["state"]) for s in raw or []]

    async def get_active_sessions(self) -> list[SessionState]:
        raw = await self._eval(
            """
        const pm = plugin?.peerManager;
        if (!pm?.sessions) return [];
        const sessions = [];
        for (const [peerId, session] of pm.sessions.entries()) {
          sessions.push({
            peerId: peerId,
            state: session.getState?.() ?? session.state ?? "unknown",
            isInitiator: session.isInitiator || false,
          });
        }
        return sessions;
        """
        )
        return [
            SessionState(peer_id=s["peerId"], state=s["state"], is_initiator=bool(s.get("isInitiator")))
            for s in raw or []
        ]

    async def is_session_healthy(self, peer_id: str) -> bool:
        for session in await self.get_session_states():
            if session.matches(peer_id):
                return session.state == "live"
        return False

    async def ensure_active_sessions(self, *, attempts: int = 30, interval_s: float = 0.5) -> bool:
        """Return True once at least one session is live, forcing a resync if none is."""

        if any(s.state == "live" for s in await self.get_active_sessions()):
            return True

        await self.force_reconnect()
        for attempt in range(attempts):
            sessions = await self.get_active_sessions()
            if any(s.state == "live" for s in sessions):
                return True
            if attempt and attempt % 5 == 0:
                states = ", ".join(f"{s.peer_id[:8]}:{s.state}" for s in sessions)
                logger.info("%s: waiting for live session (%d/%d) [%s]", self.vault_name, attempt, attempts, states)
            await asyncio.sleep(interval_s)
        return any(s.state == "live" for s in await self.get_active_sessions())

    async def remove_peer(self, node_id: str) -> None:
        await self._eval(
            f"""
        const pm = plugin?.peerManager;
        if (!pm?.removePeer) {{
          throw new Error("removePeer not available");
        }}
        await pm.removePeer({json.dumps(node_id)});
        """
        )

    async def clear_all_peers(self) -> None:
        await self._eval(
            """
        const pm = plugin?.peerManager;
        if (!pm?.peers) return;
        for (const id of Array.from(pm.peers.keys())) {
          try {
            await pm.removePeer(id);
          } catch (e) {
            console.warn("Failed to remove peer:", id, e);
          }
        }
        """
        )

    async def enable_auto_accept_vault_adoption(self) -> None:
        """Auto-confirm the "Join Sync Network" modal shown on first pairing."""

        await self.client.evaluate(
            """
      (function() {
        if (window.__peervaultAutoAcceptEnabled) return;
        window.__peervaultAutoAcceptEnabled = true;
        function accept() {
          for (const modal of document.querySelectorAll('.modal-container')) {
            const title = modal.querySelector('h2');
            if (title && title.textContent?.includes('Join Sync Network')) {
              modal.querySelector('button.mod-cta')?.click();
            }
          }
        }
        new MutationObserver(accept).observe(document.body, { childList: true, subtree: true });
        setInterval(accept, 1000);
      })()
    """
        )

    async def reload(self, *, ready_timeout_s: float = 10.0) -> None:
        """Disable and re-enable the plugin, then wait until it answers again."""

        await self.client.evaluate(
            f"""
      (async function() {{
        const plugins = window.app.plugins;
        await plugins.disablePlugin("{PLUGIN_ID}");
        await new Promise(r => setTimeout(r, 500));
        await plugins.enablePlugin("{PLUGIN_ID}");
      }})()
    """
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + ready_timeout_s
        while loop.time() < deadline:
            if await self._eval("return !!plugin?.getNodeId?.();"):
                return
            await asyncio.sleep(0.2)
        raise TimeoutError(f"{PLUGIN_ID} did not become ready in {self.vault_name} after {ready_timeout_s:.0f}s")
