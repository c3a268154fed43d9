import asyncio

from ..assertions import assert_no_peers, assert_plugin_enabled, assert_that, assert_vault_empty
from ..context import TestContext, TestDef


def _vault_name_check(which: str):
    async def fn(ctx: TestContext) -> None:
        vault = getattr(ctx, which)
        name = await vault.vault.get_vault_name()
        assert_that(name == vault.name, f'Expected vault name "{vault.name}", got "{name}"')

    return fn


def _plugin_enabled(which: str):
    async def fn(ctx: TestContext) -> None:
        await assert_plugin_enabled(getattr(ctx, which).plugin)

    return fn


def _has_node_id(which: str):
    async def fn(ctx: TestContext) -> None:
        vault = getattr(ctx, which)
        node_id = await vault.plugin.get_node_id()
        assert_that(node_id, f"{vault.name} should have a node ID")
        assert_that(len(node_id) >= 40, f"Node ID should be at least 40 chars, got {len(node_id)}")

    return fn


def _reset(which: str):
    async def fn(ctx: TestContext) -> None:
        vault = getattr(ctx, which)
        before = await vault.state.get_state_summary()
        print(f"  Initial {vault.name} state: {before}")
        result = await vault.state.reset_all()
        print(f"  Deleted {result.deleted} files from {vault.name}")
        await vault.state.wait_for_clean_state(5.0)

    return fn


async def distinct_node_ids(ctx: TestContext) -> None:
    first, second = await asyncio.gather(ctx.test.plugin.get_node_id(), ctx.test2.plugin.get_node_id())
    assert_that(first != second, f"Vaults should have different node IDs, both have: {first}")


async def plugin_versions_match(ctx: TestContext) -> None:
    first, second = await asyncio.gather(ctx.test.plugin.get_version(), ctx.test2.plugin.get_version())
    assert_that(first == second, f"Plugin versions should match: {ctx.test.name}={first}, {ctx.test2.name}={second}")
    assert_that(first != "unknown", "Plugin version should not be unknown")


async def vaults_empty(ctx: TestContext) -> None:
    await assert_vault_empty(ctx.test.vault)
    await assert_vault_empty(ctx.test2.vault)


async def no_peers(ctx: TestContext) -> None:
    await assert_no_peers(ctx.test.plugin)
    await assert_no_peers(ctx.test2.plugin)


async def reload_plugins(ctx: TestContext) -> None:
    for vault in ctx.vaults:
        await vault.plugin.reload()
        assert_that(await vault.plugin.is_enabled(), f"Plugin should be enabled in {vault.name} after reload")


TESTS = [
    TestDef("CDP connection to TEST vault works", _vault_name_check("test"), parallel=True),
    TestDef("CDP connection to TEST2 vault works", _vault_name_check("test2"), parallel=True),
    TestDef("Plugin is enabled in TEST", _plugin_enabled("test"), parallel=True),
    TestDef("Plugin is enabled in TEST2", _plugin_enabled("test2"), parallel=True),
    TestDef("TEST vault has node ID", _has_node_id("test"), parallel=True),
    TestDef("TEST2 vault has node ID", _has_node_id("test2"), parallel=True),
    TestDef("Both vaults have different node IDs", distinct_node_ids),
    TestDef("Plugin versions match", plugin_versions_match),
    TestDef("Reset TEST vault state", _reset("test")),
    TestDef("Reset TEST2 vault state", _reset("test2")),
    TestDef("Both vaults are empty", vaults_empty),
    TestDef("Neither vault has peers", no_peers),
    TestDef("Reload plugins", reload_plugins),
]
