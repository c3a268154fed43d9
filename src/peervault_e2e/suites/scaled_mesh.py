import time

from ..assertions import assert_file_content, assert_that
from ..context import TestDef
from ..scaled import ScaledTestContext

SESSION_WAIT_S = 30.0


async def full_mesh(ctx: ScaledTestContext) -> None:
    await ctx.create_full_mesh()
    expected = len(ctx) - 1
    for vault in ctx.vaults:
        peers = await vault.plugin.get_connected_peers()
        assert_that(len(peers) >= expected, f"{vault.name} only has {len(peers)}/{expected} peers")
    print(f"  Full mesh created with {len(ctx)} clients")


async def sessions_live(ctx: ScaledTestContext) -> None:
    expected = len(ctx) - 1
    for vault in ctx.vaults:
        # Each pair shares one session, so every vault needs expected live ones.
        for peer in await vault.plugin.get_connected_peers():
            await vault.sync.wait_for_session_state(peer.node_id, "live", timeout_s=SESSION_WAIT_S)
        live = [s for s in await vault.plugin.get_session_states() if s.state == "live"]
        assert_that(len(live) >= expected, f"{vault.name} has {len(live)}/{expected} live sessions")


async def mesh_sync_file(ctx: ScaledTestContext) -> None:
    origin = ctx.get_client(0)
    path = f"mesh-test-{int(time.time() * 1000)}.md"
    content = f"# Mesh Test\n\nCreated by {origin.name}\nClients: {len(ctx)}"

    await origin.vault.create_file(path, content)
    await ctx.wait_for_file_everywhere(path, timeout_s=30.0)
    await ctx.wait_for_convergence(30.0)
    for vault in ctx.vaults[1:]:
        await assert_file_content(vault.vault, path, content)
    print(f"  File synced to all {len(ctx)} clients")

    await origin.vault.delete_file(path)
    await ctx.wait_for_convergence(10.0)


TESTS = [
    TestDef("Create full mesh network", full_mesh, min_vaults=2),
    TestDef("All sessions reach live state", sessions_live, min_vaults=2),
    TestDef("Mesh sync test file", mesh_sync_file, min_vaults=2),
]
