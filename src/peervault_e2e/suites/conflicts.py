import asyncio

from ..assertions import assert_equal, assert_that
from ..context import TestContext, TestDef

SETTLE_S = 5.0


async def _create_synced(ctx: TestContext, path: str, content: str) -> None:
    await ctx.test.vault.create_file(path, content)
    await ctx.test2.sync.wait_for_file(path, timeout_s=30.0)


async def _read_both(ctx: TestContext, path: str) -> tuple[str, str]:
    first, second = await asyncio.gather(ctx.test.vault.read_file(path), ctx.test2.vault.read_file(path))
    return first, second


async def concurrent_edits(ctx: TestContext) -> None:
    path = "concurrent-edit.md"
    await _create_synced(ctx, path, "# Concurrent Edit Test\n\nInitial content.")
    await asyncio.gather(
        ctx.test.vault.modify_file(path, "# Concurrent Edit Test\n\nEdited in TEST.\n\nNew paragraph from TEST."),
        ctx.test2.vault.modify_file(path, "# Concurrent Edit Test\n\nEdited in TEST2.\n\nNew paragraph from TEST2."),
    )
    await asyncio.sleep(SETTLE_S)
    await ctx.wait_for_convergence(30.0)
    first, second = await _read_both(ctx, path)
    assert_equal(first, second, f"Content differs after concurrent edit:\nTEST: {first[:200]}\nTEST2: {second[:200]}")


async def concurrent_appends(ctx: TestContext) -> None:
    path = "concurrent-append.md"
    initial = "# Append Test\n\n- Item 1\n"
    await _create_synced(ctx, path, initial)
    await asyncio.gather(
        ctx.test.vault.modify_file(path, initial + "- Item from TEST\n"),
        ctx.test2.vault.modify_file(path, initial + "- Item from TEST2\n"),
    )
    await asyncio.sleep(SETTLE_S)
    await ctx.wait_for_convergence(30.0)
    first, second = await _read_both(ctx, path)
    assert_equal(first, second, "Content should be identical")
    print(f"  Final content:\n{first}")


async def edit_delete(ctx: TestContext) -> None:
    path = "edit-delete-conflict.md"
    await _create_synced(ctx, path, "Original content")
    await asyncio.gather(
        ctx.test.vault.modify_file(path, "Edited content"),
        ctx.test2.vault.delete_file(path),
    )
    await asyncio.sleep(SETTLE_S)
    await ctx.wait_for_convergence(30.0)
    exists = await asyncio.gather(ctx.test.vault.file_exists(path), ctx.test2.vault.file_exists(path))
    assert_that(exists[0] == exists[1], f"Vaults disagree on {path}: TEST={exists[0]}, TEST2={exists[1]}")
    print(f"  Resolved with file {'kept' if exists[0] else 'deleted'} on both vaults")


TESTS = [
    TestDef("Concurrent edits to same file are merged", concurrent_edits),
    TestDef("Concurrent appends converge", concurrent_appends),
    TestDef("Edit and delete conflict resolves identically", edit_delete),
]
