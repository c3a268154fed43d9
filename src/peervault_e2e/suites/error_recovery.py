import asyncio

from ..assertions import assert_eventually, assert_plugin_enabled
from ..context import TestContext, TestDef


async def sync_after_reload(ctx: TestContext) -> None:
    await ctx.test.vault.create_file("pre-reload.md", "Created before reload")
    await ctx.test2.sync.wait_for_file("pre-reload.md", timeout_s=30.0)
    await ctx.test.plugin.reload()
    await assert_plugin_enabled(ctx.test.plugin)
    await asyncio.sleep(5.0)
    await ctx.test.vault.create_file("post-reload.md", "Created after reload")
    await ctx.test2.sync.wait_for_file("post-reload.md", timeout_s=60.0)


async def both_reload(ctx: TestContext) -> None:
    await asyncio.gather(ctx.test.plugin.reload(), ctx.test2.plugin.reload())
    # Both sides fail their first dial while the other is still loading.
    await asyncio.sleep(20.0)
    await assert_plugin_enabled(ctx.test.plugin)
    await assert_plugin_enabled(ctx.test2.plugin)
    await ctx.test2.vault.create_file("after-both-reload.md", "Created after both reloaded")
    await ctx.test.sync.wait_for_file("after-both-reload.md", timeout_s=60.0)


async def peers_reconnect(ctx: TestContext) -> None:
    before = len(await ctx.test.plugin.get_connected_peers())
    await ctx.test.plugin.reload()

    async def reconnected() -> bool:
        peers = await ctx.test.plugin.get_connected_peers()
        return sum(1 for p in peers if p.connection_state == "connected") >= max(before, 1)

    await assert_eventually(
        reconnected, timeout_s=60.0, poll_interval_s=2.0, message="Peers did not reconnect after reload"
    )


async def cdp_channel_recovers(ctx: TestContext) -> None:
    """Dropping the DevTools socket must not lose the vault; calls resume after reconnect."""

    client = ctx.test.client
    await client.drop_connection()
    await client.ensure_connected()
    name = await ctx.test.vault.get_vault_name()
    print(f"  CDP channel recovered, vault {name} answering")


async def versions_converge(ctx: TestContext) -> None:
    await ctx.wait_for_convergence(60.0)


TESTS = [
    TestDef("Sync resumes after plugin reload", sync_after_reload),
    TestDef("Both plugins reload and reconnect", both_reload),
    TestDef("Peers reconnect after reload", peers_reconnect),
    TestDef("CDP channel recovers after socket drop", cdp_channel_recovers),
    TestDef("CRDT versions converge after recovery", versions_converge),
]
