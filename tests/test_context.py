import unittest
from dataclasses import replace
from pathlib import Path

from peervault_e2e.cdp_client import ConnectionState
from peervault_e2e.config import CdpConfig, HarnessConfig, SyncConfig, VaultConfig
from peervault_e2e.context import create_test_context
from peervault_e2e.errors import CdpConnectionError

from tests.fake_cdp import FakeCdp, value_result

FAST = CdpConfig(connection_timeout_s=1.0, evaluate_timeout_s=2.0, reconnect_delay_s=0.05)


class CreateTestContextTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fake = await FakeCdp().start()
        self.fake.add_page("A1", "TEST - Obsidian v1.5.3")
        self.fake.add_page("B2", "TEST2 - Obsidian v1.5.3")
        self.lines = []

    async def asyncTearDown(self):
        await self.fake.close()

    def _config(self, **overrides) -> HarnessConfig:
        return HarnessConfig(
            cdp=overrides.get("cdp", FAST),
            sync=SyncConfig(default_timeout_s=0.5, min_poll_interval_s=0.01, max_poll_interval_s=0.05),
            test_vault=overrides.get("test_vault", VaultConfig("TEST", Path("/tmp/TEST"))),
            test2_vault=overrides.get("test2_vault", VaultConfig("TEST2", Path("/tmp/TEST2"))),
            discovery_timeout_s=1.0,
        )

    async def test_direct_ws_urls_skip_discovery(self):
        self.fake.json_status = 500
        config = self._config(
            test_vault=VaultConfig("TEST", Path("/tmp/TEST"), ws_url=self.fake.ws_url("A1")),
            test2_vault=VaultConfig("TEST2", Path("/tmp/TEST2"), ws_url=self.fake.ws_url("B2")),
        )

        ctx = await create_test_context(config, output=self.lines.append)
        try:
            self.assertEqual([v.name for v in ctx.vaults], ["TEST", "TEST2"])
            self.assertNotIn("Discovering vaults...", self.lines)
            self.assertEqual(self.fake.connections, 2)
            self.assertEqual(self.fake.methods().count("Console.enable"), 2)
            self.assertEqual(self.fake.methods().count("Runtime.evaluate"), 2)
            self.assertIn("Auto-accept enabled on both vaults", self.lines)
        finally:
            await ctx.close()
        self.assertIs(ctx.test.client.state, ConnectionState.PERMANENTLY_CLOSED)

    async def test_discovers_pages_and_checks_convergence(self):
        async def evaluate(frame):
            if "listAllPaths().sort()" in frame["params"]["expression"]:
                return value_result("0badc0de")
            return value_result(None)

        self.fake.handlers["Runtime.evaluate"] = evaluate
        config = self._config(cdp=replace(FAST, port=self.fake.port, host=self.fake.server.host))

        ctx = await create_test_context(config, output=self.lines.append)
        try:
            self.assertIn("Discovering vaults...", self.lines)
            self.assertEqual(ctx.test2.page.target_id, "B2")
            self.assertEqual(await ctx.wait_for_convergence(), "0badc0de")

            ctx.test.client.events.handle_notification(
                {"method": "Console.messageAdded", "params": {"message": {"text": "x"}}}
            )
            ctx.cleanup_between_tests()
            self.assertEqual(ctx.test.client.console_messages(), [])
        finally:
            await ctx.close()

    async def test_connection_failure_closes_other_client(self):
        config = self._config(
            test_vault=VaultConfig("TEST", Path("/tmp/TEST"), ws_url=self.fake.ws_url("A1")),
            test2_vault=VaultConfig("TEST2", Path("/tmp/TEST2"), ws_url="ws://127.0.0.1:1/devtools/page/none"),
        )

        with self.assertRaises(CdpConnectionError):
            await create_test_context(config, output=self.lines.append)
        self.assertNotIn("Connected to both vaults", self.lines)


if __name__ == "__main__":
    unittest.main()
