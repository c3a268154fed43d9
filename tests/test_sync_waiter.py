import unittest
from unittest.mock import AsyncMock, Mock

from peervault_e2e.config import SyncConfig
from peervault_e2e.errors import EvaluationError, HarnessError, SyncTimeoutError
from peervault_e2e.plugin_api import PeerInfo, SessionState
from peervault_e2e.sync_waiter import (
    SyncWaiter,
    wait_for_file_list_convergence,
    wait_for_file_sync,
    wait_for_version_convergence,
)

QUICK = SyncConfig(default_timeout_s=0.3, min_poll_interval_s=0.001, max_poll_interval_s=0.01)


def _waiter(name: str) -> SyncWaiter:
    return SyncWaiter(Mock(), name, QUICK)


class ConvergenceTests(unittest.IsolatedAsyncioTestCase):
    async def test_versions_converge_once_both_match(self):
        first, second = _waiter("TEST"), _waiter("TEST2")
        first.get_version = AsyncMock(side_effect=["abc", "xyz", "xyz"])
        second.get_version = AsyncMock(side_effect=["", "abc", "xyz"])

        version = await wait_for_version_convergence(first, second)

        self.assertEqual(version, "xyz")
        self.assertEqual(first.get_version.await_count, 3)
        self.assertEqual(second.get_version.await_count, 3)

    async def test_empty_versions_never_converge(self):
        first, second = _waiter("TEST"), _waiter("TEST2")
        first.get_version = AsyncMock(return_value="")
        second.get_version = AsyncMock(return_value="")

        with self.assertRaises(SyncTimeoutError):
            await wait_for_version_convergence(first, second, timeout_s=0.05)

    async def test_version_timeout_names_both_sides(self):
        first, second = _waiter("TEST"), _waiter("TEST2")
        first.get_version = AsyncMock(return_value="v1")
        second.get_version = AsyncMock(return_value="v2")

        with self.assertRaises(SyncTimeoutError) as caught:
            await wait_for_version_convergence(first, second, timeout_s=0.05)
        self.assertIn("TEST: v1, TEST2: v2", str(caught.exception))

    async def test_file_lists_compare_as_sets(self):
        first, second = _waiter("TEST"), _waiter("TEST2")
        first.get_crdt_files = AsyncMock(return_value=["b.md", "a.md"])
        second.get_crdt_files = AsyncMock(return_value=["a.md", "b.md"])

        self.assertEqual(await wait_for_file_list_convergence(first, second), ["a.md", "b.md"])

    async def test_file_list_timeout_reports_symmetric_difference(self):
        first, second = _waiter("TEST"), _waiter("TEST2")
        first.get_crdt_files = AsyncMock(return_value=["a.md", "shared.md"])
        second.get_crdt_files = AsyncMock(return_value=["b.md", "shared.md"])

        with self.assertRaises(SyncTimeoutError) as caught:
            await wait_for_file_list_convergence(first, second, timeout_s=0.05)
        message = str(caught.exception)
        self.assertIn("Only in TEST: [a.md]", message)
        self.assertIn("Only in TEST2: [b.md]", message)

    async def test_file_sync_requires_path_in_source(self):
        source, target = _waiter("TEST"), _waiter("TEST2")
        source.get_crdt_files = AsyncMock(return_value=["other.md"])
        target.wait_for_file = AsyncMock()

        with self.assertRaises(HarnessError) as caught:
            await wait_for_file_sync(source, target, "note.md")
        self.assertNotIsInstance(caught.exception, SyncTimeoutError)
        self.assertIn('"note.md"', str(caught.exception))
        target.wait_for_file.assert_not_awaited()

        source.get_crdt_files = AsyncMock(return_value=["note.md"])
        await wait_for_file_sync(source, target, "note.md", timeout_s=1)
        target.wait_for_file.assert_awaited_once_with("note.md", timeout_s=1)


class SingleVaultWaitTests(unittest.IsolatedAsyncioTestCase):
    async def test_wait_for_content_tolerates_missing_file(self):
        waiter = _waiter("TEST2")
        waiter.vault.read_file = AsyncMock(
            side_effect=[EvaluationError("File not found: n.md"), "old", "new"]
        )

        await waiter.wait_for_content("n.md", "new")

        self.assertEqual(waiter.vault.read_file.await_count, 3)

    async def test_wait_for_content_logs_unexpected_errors(self):
        waiter = _waiter("TEST2")
        waiter.vault.read_file = AsyncMock(side_effect=EvaluationError("permission denied"))

        with self.assertLogs("peervault_e2e.sync_waiter", "WARNING"):
            with self.assertRaises(SyncTimeoutError) as caught:
                await waiter.wait_for_content("n.md", "new", timeout_s=0.05)
        self.assertIn("permission denied", str(caught.exception))

    async def test_wait_for_content_mismatch_shows_current_value(self):
        waiter = _waiter("TEST2")
        waiter.vault.read_file = AsyncMock(return_value="stale")

        with self.assertRaises(SyncTimeoutError) as caught:
            await waiter.wait_for_content("n.md", "fresh", timeout_s=0.05)
        self.assertIn('Got: "stale"', str(caught.exception))

    async def test_wait_for_file_and_deletion(self):
        waiter = _waiter("TEST")
        waiter.vault.file_exists = AsyncMock(side_effect=[False, True, True, False])

        await waiter.wait_for_file("x.md")
        await waiter.wait_for_file_deletion("x.md")

        waiter.vault.file_exists = AsyncMock(return_value=False)
        with self.assertRaises(SyncTimeoutError):
            await waiter.wait_for_file("x.md", timeout_s=0.05)

    async def test_sync_complete_after_syncing_then_idle(self):
        waiter = _waiter("TEST")
        waiter.plugin.get_status = AsyncMock(side_effect=["syncing", "syncing", "idle"])

        await waiter.wait_for_sync_complete()

        self.assertEqual(waiter.plugin.get_status.await_count, 3)

    async def test_sync_complete_needs_two_idle_readings(self):
        waiter = _waiter("TEST")
        waiter.plugin.get_status = AsyncMock(side_effect=["idle", "idle"])

        await waiter.wait_for_sync_complete()

        self.assertEqual(waiter.plugin.get_status.await_count, 2)

    async def test_sync_error_status_fails_immediately(self):
        waiter = _waiter("TEST")
        waiter.plugin.get_status = AsyncMock(return_value="error")

        with self.assertRaises(HarnessError) as caught:
            await waiter.wait_for_sync_complete()
        self.assertNotIsInstance(caught.exception, SyncTimeoutError)

    async def test_peer_connected_matches_prefix(self):
        waiter = _waiter("TEST")
        waiter.plugin.get_connected_peers = AsyncMock(
            side_effect=[
                [PeerInfo("abcdef0123456789", "connecting")],
                [PeerInfo("abcdef0123456789", "connected")],
            ]
        )

        await waiter.wait_for_peer_connected("abcdef01")

    async def test_session_state_timeout_lists_sessions(self):
        waiter = _waiter("TEST")
        waiter.plugin.get_session_states = AsyncMock(return_value=[SessionState("abcdef0123", "syncing")])

        with self.assertRaises(SyncTimeoutError) as caught:
            await waiter.wait_for_session_state("abcdef01", "live", timeout_s=0.05)
        self.assertIn("abcdef01:syncing", str(caught.exception))


if __name__ == "__main__":
    unittest.main()
