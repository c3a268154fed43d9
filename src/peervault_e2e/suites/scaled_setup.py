import asyncio

from ..assertions import assert_no_peers, assert_plugin_enabled, assert_that
from ..context import TestDef
from ..scaled import ScaledTestContext


async def clients_connected(ctx: ScaledTestContext) -> None:
    assert_that(len(ctx) > 0, "No clients connected")
    for vault in ctx.vaults:
        assert_that(vault.client.is_connected, f"{vault.name} CDP connection is down")
    print(f"  Connected to {len(ctx)} client(s)")


async def plugins_enabled(ctx: ScaledTestContext) -> None:
    await asyncio.gather(*(assert_plugin_enabled(v.plugin) for v in ctx.vaults))


async def node_ids_distinct(ctx: ScaledTestContext) -> None:
    node_ids = await asyncio.gather(*(v.plugin.get_node_id() for v in ctx.vaults))
    for vault, node_id in zip(ctx.vaults, node_ids):
        assert_that(len(node_id) >= 32, f"{vault.name} has invalid node ID: {node_id!r}")
        print(f"  {vault.name}: {node_id[:16]}...")
    assert_that(len(set(node_ids)) == len(node_ids), "Clients should all have different node IDs")


async def reset_all(ctx: ScaledTestContext) -> None:
    await ctx.reset_all()
    for vault in ctx.vaults:
        await assert_no_peers(vault.plugin)
    print("  All clients reset to clean state")


TESTS = [
    TestDef("All clients connected", clients_connected),
    TestDef("Plugin is enabled on every client", plugins_enabled),
    TestDef("All plugins have distinct node IDs", node_ids_distinct),
    TestDef("Reset all clients to clean state", reset_all),
]
