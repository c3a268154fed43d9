import typing
import unittest
from typing import Callable

import pytest

from peervault_e2e.discovery import (
    VaultPage,
    discover_vault,
    discover_vaults,
    extract_vault_name,
    print_discovered_vaults,
    select_vault_pages,
    wait_for_vaults,
)
from peervault_e2e.errors import DiscoveryError

from tests.fake_cdp import FakeCdp


@pytest.mark.parametrize(
    "title, expected",
    [
        ("TEST - Obsidian v1.5.3", "TEST"),
        ("My Note - TEST2 - Obsidian v1.5.3", "TEST2"),
        ("Folder - Deep Note - Work Vault - Obsidian v1.6.0", "Work Vault"),
        ("Untitled", None),
        ("", None),
    ],
)
def test_extract_vault_name(title, expected):
    assert extract_vault_name(title) == expected


def test_annotations_resolve():
    assert typing.get_type_hints(print_discovered_vaults)["output"] == Callable[[str], None]
    assert typing.get_type_hints(discover_vault)["return"] == (VaultPage | None)
    assert typing.get_type_hints(select_vault_pages)["return"] == dict[str, VaultPage]


def test_select_vault_pages_keeps_obsidian_pages_only():
    targets = [
        {
            "id": "A1",
            "type": "page",
            "title": "Daily - TEST - Obsidian v1.5.3",
            "url": "app://obsidian.md/index.html",
            "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/page/A1",
        },
        {
            "id": "SW",
            "type": "service_worker",
            "title": "TEST2 - Obsidian v1.5.3",
            "url": "app://obsidian.md/sw.js",
            "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/page/SW",
        },
        {
            "id": "EX",
            "type": "page",
            "title": "Other - Obsidian v1.5.3",
            "url": "https://example.com/",
            "webSocketDebuggerUrl": "ws://127.0.0.1:9222/devtools/page/EX",
        },
    ]

    pages = select_vault_pages(targets)

    assert list(pages) == ["TEST"]
    assert pages["TEST"].target_id == "A1"
    assert pages["TEST"].ws_url.endswith("/A1")


def test_select_vault_pages_skips_targets_without_socket():
    targets = [{"id": "X", "type": "page", "title": "TEST - Obsidian", "url": "app://obsidian.md/index.html"}]

    assert select_vault_pages(targets) == {}


class DiscoveryServerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.fake = await FakeCdp().start()
        self.fake.add_page("A1", "TEST - Obsidian v1.5.3")
        self.fake.add_page("B2", "Note - TEST2 - Obsidian v1.5.3")

    async def asyncTearDown(self):
        await self.fake.close()

    async def test_discover_vaults_reads_target_list(self):
        vaults = await discover_vaults(self.fake.port, host=self.fake.server.host)

        self.assertEqual(sorted(vaults), ["TEST", "TEST2"])
        self.assertEqual(vaults["TEST2"].ws_url, self.fake.ws_url("B2"))

        page = await discover_vault("TEST", self.fake.port, host=self.fake.server.host)
        self.assertEqual(page.target_id, "A1")
        self.assertIsNone(await discover_vault("MISSING", self.fake.port, host=self.fake.server.host))

    async def test_http_error_raises_discovery_error(self):
        self.fake.json_status = 500
        with self.assertRaises(DiscoveryError) as caught:
            await discover_vaults(self.fake.port, host=self.fake.server.host)
        self.assertIn("HTTP 500", str(caught.exception))

    async def test_wait_for_vaults_returns_requested_pages(self):
        pages = await wait_for_vaults(
            ["TEST2", "TEST"], port=self.fake.port, host=self.fake.server.host, timeout_s=2, poll_interval_s=0.05
        )
        self.assertEqual(list(pages), ["TEST2", "TEST"])

    async def test_wait_for_vaults_names_missing_and_found(self):
        self.fake.targets.pop()
        with self.assertRaises(DiscoveryError) as caught:
            await wait_for_vaults(
                ["TEST", "TEST2"],
                port=self.fake.port,
                host=self.fake.server.host,
                timeout_s=0.3,
                poll_interval_s=0.05,
            )
        message = str(caught.exception)
        self.assertIn("Missing: [TEST2]", message)
        self.assertIn("Found: [TEST]", message)

    async def test_print_discovered_vaults(self):
        lines = []
        code = await print_discovered_vaults(self.fake.port, host=self.fake.server.host, output=lines.append)
        self.assertEqual(code, 0)
        self.assertIn("Found 2 vault(s):", lines)
        self.assertIn("  - TEST", lines)

        self.fake.json_status = 503
        lines.clear()
        code = await print_discovered_vaults(self.fake.port, host=self.fake.server.host, output=lines.append)
        self.assertEqual(code, 1)
        self.assertTrue(lines[-1].startswith("Discovery failed:"))


if __name__ == "__main__":
    unittest.main()
