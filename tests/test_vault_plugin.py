import base64
import json
import unittest
from collections import deque

from peervault_e2e.errors import HarnessError
from peervault_e2e.plugin_api import PLUGIN_ID, PeerInfo, PluginAPI, SessionState
from peervault_e2e.state import StateManager
from peervault_e2e.vault import FileStat, VaultController


class ScriptedClient:
    """Answers ``evaluate`` calls from a queue and records each expression."""

    def __init__(self, *responses):
        self.responses = deque(responses)
        self.expressions = []

    async def evaluate(self, expression, *, timeout_s=None):
        self.expressions.append(expression)
        response = self.responses.popleft() if self.responses else None
        if isinstance(response, BaseException):
            raise response
        return response


class VaultControllerTests(unittest.IsolatedAsyncioTestCase):
    async def test_text_file_is_embedded_as_json(self):
        client = ScriptedClient()
        vault = VaultController(client, "TEST")

        await vault.create_file('notes/say "hi".md', "line one\nline 'two'")

        expression = client.expressions[0]
        self.assertIn(json.dumps('notes/say "hi".md'), expression)
        self.assertIn(json.dumps("line one\nline 'two'"), expression)
        self.assertIn("vault.create(path, content)", expression)

    async def test_binary_file_is_base64_encoded(self):
        client = ScriptedClient()
        vault = VaultController(client, "TEST")
        payload = bytes(range(256))

        await vault.create_file("img.png", payload, overwrite=True)

        expression = client.expressions[0]
        self.assertIn(json.dumps(base64.b64encode(payload).decode("ascii")), expression)
        self.assertIn("if (true)", expression)
        self.assertIn("if (!true)", expression)

    async def test_read_binary_file_decodes(self):
        vault = VaultController(ScriptedClient(base64.b64encode(b"\x89PNG").decode()), "TEST")

        self.assertEqual(await vault.read_binary_file("img.png"), b"\x89PNG")

    async def test_file_stat(self):
        vault = VaultController(ScriptedClient({"size": 10, "ctime": 1, "mtime": 2}, None), "TEST")

        self.assertEqual(await vault.get_file_stat("a.md"), FileStat(10, 1, 2))
        self.assertIsNone(await vault.get_file_stat("missing.md"))

    async def test_delete_all_files_reports_failures(self):
        raw = {"deleted": 2, "failed": 1, "failedPaths": ["locked.md"]}
        vault = VaultController(ScriptedClient(raw, raw), "TEST")

        result = await vault.delete_all_files()
        self.assertEqual((result.deleted, result.failed, result.failed_paths), (2, 1, ["locked.md"]))

        with self.assertRaises(HarnessError) as caught:
            await vault.delete_all_files(throw_on_failure=True)
        self.assertIn("locked.md", str(caught.exception))


class PluginApiTests(unittest.IsolatedAsyncioTestCase):
    async def test_expressions_target_plugin(self):
        client = ScriptedClient("0.4.1")
        plugin = PluginAPI(client, "TEST")

        self.assertEqual(await plugin.get_version(), "0.4.1")
        self.assertIn(f'plugins?.["{PLUGIN_ID}"]', client.expressions[0])

    async def test_add_peer_escapes_ticket(self):
        client = ScriptedClient()
        await PluginAPI(client, "TEST").add_peer('ticket"with-quote')

        self.assertIn(json.dumps('ticket"with-quote'), client.expressions[0])

    async def test_connected_peers_parsed(self):
        client = ScriptedClient(
            [{"nodeId": "abcdef0123", "connectionState": "connected", "trusted": True, "hostname": "laptop"}]
        )

        peers = await PluginAPI(client, "TEST").get_connected_peers()

        self.assertEqual(peers, [PeerInfo("abcdef0123", "connected", True, "laptop")])
        self.assertTrue(peers[0].matches("abcdef01ffff"))
        self.assertFalse(peers[0].matches("12345678"))

    async def test_crdt_files_default_to_empty(self):
        self.assertEqual(await PluginAPI(ScriptedClient(None), "TEST").get_crdt_files(), [])

    async def test_ensure_active_sessions_short_circuits(self):
        client = ScriptedClient([{"peerId": "p1", "state": "live"}])

        self.assertTrue(await PluginAPI(client, "TEST").ensure_active_sessions())
        self.assertEqual(len(client.expressions), 1)

    async def test_ensure_active_sessions_forces_reconnect(self):
        client = ScriptedClient(
            [{"peerId": "p1", "state": "syncing"}],
            None,
            [{"peerId": "p1", "state": "syncing"}],
            [{"peerId": "p1", "state": "live", "isInitiator": True}],
        )

        self.assertTrue(await PluginAPI(client, "TEST").ensure_active_sessions(interval_s=0))
        self.assertIn("pm.sessions.clear()", client.expressions[1])

    async def test_session_health(self):
        client = ScriptedClient([{"peerId": "abcdef0123", "state": "live"}], [])
        plugin = PluginAPI(client, "TEST")

        self.assertTrue(await plugin.is_session_healthy("abcdef01"))
        self.assertFalse(await plugin.is_session_healthy("abcdef01"))
        self.assertTrue(SessionState("abcdef0123", "live").matches("abcdef01"))

    async def test_reload_times_out_when_plugin_never_ready(self):
        plugin = PluginAPI(ScriptedClient(), "TEST")

        with self.assertRaises(TimeoutError):
            await plugin.reload(ready_timeout_s=0.05)


class StateManagerTests(unittest.IsolatedAsyncioTestCase):
    async def test_summary_of_clean_state(self):
        client = ScriptedClient(
            {"fileCount": 0, "peerCount": 0, "sessionCount": 0, "crdtFileCount": 0, "pendingPairingCount": 0}
        )

        summary = await StateManager(client, "TEST").get_state_summary()

        self.assertTrue(summary.is_clean)


if __name__ == "__main__":
    unittest.main()
