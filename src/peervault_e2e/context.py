"""Test context spanning both vaults, plus result tracking for the runner."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .cdp_client import CdpClient, create_cdp_client
from .config import HarnessConfig, VaultConfig
from .discovery import VaultPage, wait_for_vaults
from .plugin_api import PluginAPI
from .state import StateManager
from .sync_waiter import SyncWaiter, wait_for_file_list_convergence, wait_for_version_convergence
from .vault import VaultController


@dataclass
class VaultContext:
    name: str
    page: VaultPage
    client: CdpClient
    vault: VaultController
    plugin: PluginAPI
    state: StateManager
    sync: SyncWaiter

    @classmethod
    def build(cls, page: VaultPage, client: CdpClient, config: HarnessConfig) -> "VaultContext":
        return cls(
            name=page.name,
            page=page,
            client=client,
            vault=VaultController(client, page.name),
            plugin=PluginAPI(client, page.name),
            state=StateManager(client, page.name),
            sync=SyncWaiter(client, page.name, config.sync),
        )


@dataclass
class TestContext:
    __test__ = False

    test: VaultContext
    test2: VaultContext
    config: HarnessConfig

    @property
    def vaults(self) -> tuple[VaultContext, VaultContext]:
        return self.test, self.test2

    async def wait_for_convergence(self, timeout_s: float | None = None) -> str:
        return await wait_for_version_convergence(self.test.sync, self.test2.sync, timeout_s=timeout_s)

    async def wait_for_file_list_match(self, timeout_s: float | None = None) -> list[str]:
        return await wait_for_file_list_convergence(self.test.sync, self.test2.sync, timeout_s=timeout_s)

    def cleanup_between_tests(self) -> None:
        for ctx in self.vaults:
            ctx.client.clear_console_messages()

    async def reset_files(self) -> None:
        """Delete files in both vaults but keep the pairing."""

        await asyncio.gather(self.test.state.reset_vault_files(), self.test2.state.reset_vault_files())

    async def reset_all(self) -> None:
        await asyncio.gather(self.test.state.reset_all(), self.test2.state.reset_all())

    async def close(self) -> None:
        await asyncio.gather(self.test.client.close(), self.test2.client.close())


def _direct_page(vault: VaultConfig) -> VaultPage:
    return VaultPage(name=vault.name, target_id="", ws_url=vault.ws_url or "", title=vault.name)


async def _resolve_pages(config: HarnessConfig, output: Callable[[str], None]) -> list[VaultPage]:
    to_discover = [v.name for v in config.vaults if v.ws_url is None]
    discovered: dict[str, VaultPage] = {}
    if to_discover:
        output("Discovering vaults...")
        discovered = await wait_for_vaults(
            to_discover,
            port=config.cdp.port,
            host=config.cdp.host,
            timeout_s=config.discovery_timeout_s,
        )
    pages = []
    for vault in config.vaults:
        page = discovered[vault.name] if vault.ws_url is None else _direct_page(vault)
        output(f"Found vault: {page.name} ({page.target_id or page.ws_url})")
        pages.append(page)
    return pages


async def create_test_context(config: HarnessConfig, *, output: Callable[[str], None] = print) -> TestContext:
    """Connect to both vaults and enable auto-accept of vault adoption."""

    first, second = await _resolve_pages(config, output)

    output("Connecting to vaults via CDP...")
    results = await asyncio.gather(
        create_cdp_client(first.ws_url, config.cdp),
        create_cdp_client(second.ws_url, config.cdp),
        return_exceptions=True,
    )
    clients = [r for r in results if isinstance(r, CdpClient)]
    errors = [r for r in results if isinstance(r, BaseException)]
    if errors:
        await asyncio.gather(*(c.close() for c in clients))
        raise errors[0]
    output("Connected to both vaults")

    ctx = TestContext(
        test=VaultContext.build(first, clients[0], config),
        test2=VaultContext.build(second, clients[1], config),
        config=config,
    )
    try:
        await asyncio.gather(*(v.plugin.enable_auto_accept_vault_adoption() for v in ctx.vaults))
    except BaseException:
        await ctx.close()
        raise
    output("Auto-accept enabled on both vaults")
    return ctx


TestFn = Callable[[TestContext], Awaitable[None]]


@dataclass(frozen=True)
class TestDef:
    __test__ = False

    name: str
    fn: TestFn
    skip: bool = False
    parallel: bool = False
    # Skipped when the context holds fewer vaults.
    min_vaults: int = 0


@dataclass
class TestResult:
    __test__ = False

    name: str
    suite: str
    passed: bool
    duration_s: float
    skipped: bool = False
    error: Optional[BaseException] = None


@dataclass
class SuiteResult:
    name: str
    tests: list[TestResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for t in self.tests if t.passed)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tests if not t.passed)

    @property
    def duration_s(self) -> float:
        return sum(t.duration_s for t in self.tests)


async def run_test(name: str, suite: str, fn: Callable[[], Awaitable[None]]) -> TestResult:
    started = time.monotonic()
    try:
        await fn()
    except Exception as exc:  # noqa: BLE001 - a failing test is a result, not a crash
        return TestResult(name, suite, False, time.monotonic() - started, error=exc)
    return TestResult(name, suite, True, time.monotonic() - started)


class TestReporter:
    __test__ = False

    def __init__(self, output: Callable[[str], None] = print) -> None:
        self.output = output
        self.suites: list[SuiteResult] = []
        self._current: Optional[SuiteResult] = None

    def start_suite(self, name: str) -> None:
        self._current = SuiteResult(name)

    def end_suite(self) -> Optional[SuiteResult]:
        result, self._current = self._current, None
        if result is not None:
            self.suites.append(result)
        return result

    def add_test(self, result: TestResult) -> None:
        if self._current is not None:
            self._current.tests.append(result)
        if result.skipped:
            self.output(f"⊘ {result.name} (skipped)")
        elif result.passed:
            self.output(f"✓ {result.name} ({result.duration_s:.2f}s)")
        else:
            self.output(f"✗ {result.name} ({result.duration_s:.2f}s)\n    Error: {result.error}")

    def totals(self) -> tuple[int, int, float]:
        passed = sum(s.passed for s in self.suites)
        failed = sum(s.failed for s in self.suites)
        duration = sum(s.duration_s for s in self.suites)
        return passed, failed, duration

    def has_failures(self) -> bool:
        return any(s.failed for s in self.suites)

    def print_summary(self) -> None:
        self.output("\n" + "=" * 60)
        self.output("TEST SUMMARY")
        self.output("=" * 60)
        for suite in self.suites:
            mark = "✓" if suite.failed == 0 else "✗"
            self.output(
                f"\n{mark} {suite.name}: {suite.passed}/{len(suite.tests)} passed ({suite.duration_s:.2f}s)"
            )
            for test in suite.tests:
                if not test.passed:
                    self.output(f"    ✗ {test.name}: {test.error}")

        passed, failed, duration = self.totals()
        self.output("\n" + "-" * 60)
        self.output(f"Total: {passed}/{passed + failed} passed ({duration:.2f}s)")
        if failed:
            self.output(f"\n{failed} test(s) failed")
        else:
            self.output("\nAll tests passed!")
