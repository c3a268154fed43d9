"""Command-line runner for the PeerVault end-to-end suites.

Usage: peervault-e2e [--suite NAME] [--verbose] [--restart] [--fresh] ...
       peervault-e2e-scaled [--clients N] [--suite NAME] [--verbose] ...
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
from typing import Callable, Optional, Sequence

from .config import HarnessConfig, default_cdp_endpoints, load_config_from_env
from .context import TestContext, TestDef, TestReporter, TestResult, create_test_context, run_test
from .discovery import print_discovered_vaults
from .errors import HarnessError
from .obsidian import install_plugins_via_brat, kill_obsidian, prepare_fresh_install, start_obsidian
from .scaled import ScaledTestContext, create_scaled_test_context

# Execution order matters: later suites rely on the pairing made by earlier ones.
SUITES: dict[str, str] = {
    "00-setup": "setup",
    "01-pairing": "pairing",
    "02-sync-basic": "sync_basic",
    "03-sync-advanced": "sync_advanced",
    "04-conflicts": "conflicts",
    "05-error-recovery": "error_recovery",
    "06-edge-cases": "edge_cases",
}

SCALED_SUITES: dict[str, str] = {
    "scaled-00-setup": "scaled_setup",
    "scaled-01-mesh": "scaled_mesh",
    "scaled-02-stress": "scaled_stress",
}

DEFAULT_SCALED_CLIENTS = 3

SELF_CONTAINED_SUITES = frozenset({"00-setup", "01-pairing"})

MAX_CONSECUTIVE_FAILURES = 3


def load_suite(name: str) -> list[TestDef]:
    module_name = SUITES.get(name) or SCALED_SUITES[name]
    module = importlib.import_module(f"{__package__}.suites.{module_name}")
    return list(module.TESTS)


class FailFastTracker:
    """Trips after ``limit`` failures in a row; a pass resets the streak."""

    def __init__(self, enabled: bool = True, limit: int = MAX_CONSECUTIVE_FAILURES) -> None:
        self.enabled = enabled
        self.limit = limit
        self.consecutive_failures = 0
        self.triggered = False

    @property
    def should_abort(self) -> bool:
        return self.enabled and self.triggered

    def record(self, passed: bool) -> None:
        if passed:
            self.consecutive_failures = 0
            return
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.limit:
            self.triggered = True


class SuiteRunner:
    def __init__(
        self,
        ctx: TestContext | ScaledTestContext,
        reporter: TestReporter,
        fail_fast: FailFastTracker,
        *,
        sequential: bool = False,
        output: Callable[[str], None] = print,
    ) -> None:
        self.ctx = ctx
        self.reporter = reporter
        self.fail_fast = fail_fast
        self.sequential = sequential
        self.output = output

    def _record(self, result: TestResult) -> None:
        was_triggered = self.fail_fast.triggered
        self.reporter.add_test(result)
        self.fail_fast.record(result.passed)
        if self.fail_fast.should_abort and not was_triggered:
            self.output(f"\nABORTING: {self.fail_fast.limit} consecutive test failures\n")

    async def _run_one(self, suite: str, test: TestDef) -> None:
        self._record(await run_test(test.name, suite, lambda: test.fn(self.ctx)))
        self.ctx.cleanup_between_tests()

    async def _flush(self, suite: str, batch: list[TestDef]) -> None:
        if not batch or self.fail_fast.should_abort:
            batch.clear()
            return
        if len(batch) == 1:
            await self._run_one(suite, batch[0])
        else:
            self.output(f"  Running {len(batch)} tests in parallel...")
            results = await asyncio.gather(
                *(run_test(t.name, suite, lambda t=t: t.fn(self.ctx)) for t in batch)
            )
            for result in results:
                self._record(result)
            self.ctx.cleanup_between_tests()
        batch.clear()

    async def run_suite(self, suite: str, tests: Sequence[TestDef]) -> None:
        """Run ``tests`` in order, batching consecutive parallel ones."""

        self.reporter.start_suite(suite)
        batch: list[TestDef] = []
        try:
            for test in tests:
                if self.fail_fast.should_abort:
                    break
                if test.skip or len(self.ctx.vaults) < test.min_vaults:
                    await self._flush(suite, batch)
                    self.reporter.add_test(TestResult(test.name, suite, True, 0.0, skipped=True))
                elif test.parallel and not self.sequential:
                    batch.append(test)
                else:
                    await self._flush(suite, batch)
                    if self.fail_fast.should_abort:
                        break
                    await self._run_one(suite, test)
            await self._flush(suite, batch)
        finally:
            self.reporter.end_suite()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peervault-e2e",
        description="End-to-end tests for PeerVault against two live Obsidian vaults",
        epilog=(
            "Prerequisites without --restart: Obsidian running with "
            "--remote-debugging-port, TEST and TEST2 vaults open, plugin installed in both. "
            "Environment: CDP_PORT, CDP_HOST, TEST_VAULT_PATH, TEST2_VAULT_PATH, "
            "TEST_VAULT_WS_URL, TEST2_VAULT_WS_URL, E2E_FIXTURES_PATH."
        ),
    )
    parser.add_argument("--suite", metavar="NAME", help=f"Run only the named suite ({', '.join(SUITES)})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--discover", action="store_true", help="Only list discovered vaults")
    parser.add_argument("-r", "--restart", action="store_true", help="Kill and restart Obsidian before tests")
    parser.add_argument(
        "-f", "--fresh", action="store_true", help="Delete the plugin, restart and reinstall via BRAT"
    )
    parser.add_argument("-s", "--sequential", action="store_true", help="Disable parallel test execution")
    parser.add_argument("--slow", action="store_true", help="Use longer sync timeouts for debugging")
    parser.add_argument(
        "--no-fail-fast",
        dest="fail_fast",
        action="store_false",
        help=f"Keep going after {MAX_CONSECUTIVE_FAILURES} consecutive failures",
    )
    return parser


def _print_header(config: HarnessConfig, args: argparse.Namespace, output: Callable[[str], None]) -> None:
    output("PeerVault E2E Test Runner")
    output("=" * 60)
    output(f"CDP: {config.cdp.host}:{config.cdp.port}")
    output(f"Test Vault: {config.test_vault.name}")
    output(f"Test2 Vault: {config.test2_vault.name}")
    output(f"Mode: {'sequential' if args.sequential else 'parallel'}")
    output(f"Timeouts: {'slow' if args.slow else 'fast'}")
    fail_fast = f"enabled ({MAX_CONSECUTIVE_FAILURES} failures)" if args.fail_fast else "disabled"
    output(f"Fail-fast: {fail_fast}")


async def _warn_if_unpaired(ctx: TestContext, output: Callable[[str], None]) -> None:
    output("\nRunning isolated suite - checking peer connection...")
    try:
        peers = await ctx.test.plugin.get_connected_peers()
    except HarnessError as exc:
        output(f"Warning: Could not check peer status: {exc}")
        return
    if peers:
        output(f"Found {len(peers)} connected peer(s)")
    else:
        output("Warning: No peers connected. Sync tests may fail.")
        output("Run the full test run or 01-pairing first to establish peers.")


async def run(args: argparse.Namespace, *, output: Callable[[str], None] = print) -> int:
    if args.suite and args.suite not in SUITES:
        output(f"Unknown suite: {args.suite}")
        output(f"Available: {', '.join(SUITES)}")
        return 1
    try:
        config = load_config_from_env(slow=args.slow, verbose=args.verbose)
    except ValueError as exc:
        output(f"Invalid configuration: {exc}")
        return 1
    _print_header(config, args, output)

    if args.discover:
        output("")
        return await print_discovered_vaults(config.cdp.port, host=config.cdp.host, output=output)

    if args.fresh:
        output("\n=== Fresh Install Mode ===")
        prepare_fresh_install(config, output=output)
    if args.restart or args.fresh:
        await kill_obsidian(output=output)
        await start_obsidian(config, output=output)
        if args.fresh:
            await install_plugins_via_brat(config, output=output)

    suites = [args.suite] if args.suite else list(SUITES)
    output(f"\nSuites to run: {', '.join(suites)}")
    output("=" * 60)

    try:
        ctx = await create_test_context(config, output=output)
    except Exception as exc:  # noqa: BLE001 - reported, then exit 1
        output(f"\nFailed to create test context: {exc}")
        output("\nMake sure:")
        output(f"  1. Obsidian is running with --remote-debugging-port={config.cdp.port}")
        output(f"  2. Both {config.test_vault.name} and {config.test2_vault.name} vaults are open")
        return 1

    reporter = TestReporter(output)
    fail_fast = FailFastTracker(enabled=args.fail_fast)
    runner = SuiteRunner(ctx, reporter, fail_fast, sequential=args.sequential, output=output)
    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        if args.suite and args.suite not in SELF_CONTAINED_SUITES:
            await _warn_if_unpaired(ctx, output)
        for suite in suites:
            if fail_fast.should_abort:
                output("\nSkipping remaining suites due to fail-fast abort")
                break
            output(f"\n{'=' * 60}\nSuite: {suite}\n{'=' * 60}")
            await runner.run_suite(suite, load_suite(suite))
    finally:
        await ctx.close()

    reporter.print_summary()
    output(f"\nTotal time: {loop.time() - started:.1f}s")
    return 1 if reporter.has_failures() else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


def cli() -> None:
    sys.exit(main())


def build_scaled_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peervault-e2e-scaled",
        description="End-to-end tests for PeerVault across N vaults, one CDP endpoint each",
        epilog=(
            "Environment: E2E_CDP_ENDPOINTS=host:port,host:port,... overrides --clients; "
            "without it endpoints count up from CDP_HOST:CDP_PORT."
        ),
    )
    parser.add_argument(
        "--clients",
        type=int,
        default=DEFAULT_SCALED_CLIENTS,
        metavar="N",
        help=f"Number of clients when E2E_CDP_ENDPOINTS is unset (default: {DEFAULT_SCALED_CLIENTS})",
    )
    parser.add_argument("--suite", metavar="NAME", help=f"Run only the named suite ({', '.join(SCALED_SUITES)})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--slow", action="store_true", help="Use longer sync timeouts for debugging")
    parser.add_argument(
        "--no-fail-fast",
        dest="fail_fast",
        action="store_false",
        help=f"Keep going after {MAX_CONSECUTIVE_FAILURES} consecutive failures",
    )
    return parser


async def run_scaled(args: argparse.Namespace, *, output: Callable[[str], None] = print) -> int:
    if args.suite and args.suite not in SCALED_SUITES:
        output(f"Unknown suite: {args.suite}")
        output(f"Available: {', '.join(SCALED_SUITES)}")
        return 1
    try:
        config = load_config_from_env(slow=args.slow, verbose=args.verbose)
        endpoints = config.cdp_endpoints or default_cdp_endpoints(args.clients, config.cdp)
    except ValueError as exc:
        output(f"Invalid configuration: {exc}")
        return 1

    output("PeerVault Scaled E2E Test Runner")
    output("=" * 60)
    output(f"Clients: {len(endpoints)}")
    output("CDP Endpoints:")
    for endpoint in endpoints:
        output(f"  - {endpoint.name}: {endpoint.host}:{endpoint.port}")
    output("=" * 60)

    try:
        ctx = await create_scaled_test_context(endpoints, config, output=output)
    except Exception as exc:  # noqa: BLE001 - reported, then exit 1
        output(f"\nFailed to create scaled context: {exc}")
        output("\nMake sure:")
        output("  1. Every vault container is running and healthy")
        output("  2. CDP ports are exposed and reachable")
        output("  3. E2E_CDP_ENDPOINTS is set correctly (or use --clients N)")
        return 1

    suites = [args.suite] if args.suite else list(SCALED_SUITES)
    output(f"\nSuites to run: {', '.join(suites)}")
    output("=" * 60)

    reporter = TestReporter(output)
    fail_fast = FailFastTracker(enabled=args.fail_fast)
    # Scaled suites share N vaults, so tests never run in parallel.
    runner = SuiteRunner(ctx, reporter, fail_fast, sequential=True, output=output)
    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        for suite in suites:
            if fail_fast.should_abort:
                output("\nSkipping remaining suites due to fail-fast abort")
                break
            output(f"\n{'=' * 60}\nSuite: {suite}\n{'=' * 60}")
            await runner.run_suite(suite, load_suite(suite))
    finally:
        await ctx.close()

    reporter.print_summary()
    output(f"\nTotal time: {loop.time() - started:.1f}s")
    return 1 if reporter.has_failures() else 0


def scaled_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_scaled_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run_scaled(args))


def scaled_cli() -> None:
    sys.exit(scaled_main())
