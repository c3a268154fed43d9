import asyncio
import time

from ..assertions import assert_that
from ..context import TestDef
from ..errors import EvaluationError
from ..scaled import ScaledTestContext


async def _missing(ctx: ScaledTestContext, paths: list[str]) -> list[str]:
    missing = []
    for vault in ctx.vaults:
        files = set(await vault.vault.list_files())
        missing.extend(f"{path} on {vault.name}" for path in paths if path not in files)
    return missing


async def _delete_quietly(ctx: ScaledTestContext, paths: list[str]) -> None:
    origin = ctx.get_client(0)
    for path in paths:
        try:
            await origin.vault.delete_file(path)
        except EvaluationError as exc:
            print(f"  Cleanup of {path} failed: {exc}")


async def concurrent_creation(ctx: ScaledTestContext) -> None:
    prefix = f"concurrent-{int(time.time() * 1000)}"
    paths = [f"{prefix}-{i}.md" for i in range(len(ctx))]

    await asyncio.gather(
        *(
            vault.vault.create_file(path, f"# File from {vault.name}\n\nIndex: {i}")
            for i, (vault, path) in enumerate(zip(ctx.vaults, paths))
        )
    )
    print(f"  Created {len(paths)} files concurrently")

    await ctx.wait_for_convergence(60.0)
    missing = await _missing(ctx, paths)
    assert_that(not missing, f"{len(missing)} file(s) missing after concurrent creation: {missing[:5]}")
    print(f"  All {len(paths)} files synced to all {len(ctx)} clients")

    await _delete_quietly(ctx, paths)
    await ctx.wait_for_convergence(10.0)


async def round_robin_edits(ctx: ScaledTestContext) -> None:
    timeout = 10.0 + 2.0 * len(ctx)
    origin = ctx.get_client(0)
    path = f"round-robin-{int(time.time() * 1000)}.md"
    await origin.vault.create_file(path, "# Round Robin Test\n\nEditors:\n")
    await ctx.wait_for_convergence(timeout)

    for i, vault in enumerate(ctx.vaults, start=1):
        current = await vault.vault.read_file(path)
        await vault.vault.modify_file(path, current + f"- {vault.name} (round {i})\n")
        await ctx.wait_for_convergence(timeout)

    final = await origin.vault.read_file(path)
    for vault in ctx.vaults:
        assert_that(await vault.vault.read_file(path) == final, f"Content mismatch on {vault.name}")
        assert_that(vault.name in final, f"Edit from {vault.name} not found in final content")

    await origin.vault.delete_file(path)
    await ctx.wait_for_convergence(timeout)


async def bulk_sync(ctx: ScaledTestContext) -> None:
    prefix = f"bulk-{int(time.time() * 1000)}"
    # 2 clients: 10 files each, 5 clients: 4, 10 clients: 3.
    per_client = max(3, 20 // len(ctx))
    file_delay_s = max(0.05, 0.01 * len(ctx))

    async def create_many(index: int) -> list[str]:
        vault = ctx.vaults[index]
        created = []
        for i in range(per_client):
            # Flat names; concurrent folder creation conflicts.
            path = f"{prefix}-c{index}-f{i}.md"
            await vault.vault.create_file(path, f"# Bulk file {i}\n\nClient: {vault.name}\nIndex: {i}")
            created.append(path)
            await asyncio.sleep(file_delay_s)
        return created

    paths = [p for created in await asyncio.gather(*(create_many(i) for i in range(len(ctx)))) for p in created]
    print(f"  Created {len(paths)} files across {len(ctx)} clients")

    await ctx.wait_for_convergence(min(180.0, 60.0 + 0.1 * len(paths) * len(ctx)))
    missing = await _missing(ctx, paths)
    assert_that(not missing, f"{len(missing)} file(s) missing after bulk sync: {missing[:5]}")
    print(f"  All {len(paths)} files synced to all {len(ctx)} clients")

    await _delete_quietly(ctx, paths)
    await ctx.wait_for_convergence(30.0)


TESTS = [
    TestDef("Concurrent file creation from all clients", concurrent_creation, min_vaults=2),
    # Concurrent text merges conflict on large meshes.
    TestDef("Round-robin edit propagation", round_robin_edits, skip=True, min_vaults=3),
    TestDef("Bulk file sync (scaled per client count)", bulk_sync, min_vaults=2),
]
