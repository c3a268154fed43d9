import asyncio
import zlib

from ..assertions import assert_eventually, assert_file_exists
from ..context import TestContext, TestDef
from ..fixtures import FixtureFile, load_fixtures_into_vault

BULK_COUNT = 20


def _png(width: int = 4, height: int = 4) -> bytes:
    """A tiny valid grey PNG, built by hand."""

    def chunk(kind: bytes, data: bytes) -> bytes:
        body = kind + data
        return len(data).to_bytes(4, "big") + body + zlib.crc32(body).to_bytes(4, "big")

    header = width.to_bytes(4, "big") + height.to_bytes(4, "big") + bytes([8, 0, 0, 0, 0])
    raw = b"".join(b"\x00" + b"\x80" * width for _ in range(height))
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", zlib.compress(raw)) + chunk(b"IEND", b"")


async def bulk_create(ctx: TestContext) -> None:
    files = [FixtureFile(f"bulk/note-{i:03d}.md", f"# Bulk note {i}\n") for i in range(BULK_COUNT)]
    await load_fixtures_into_vault(ctx.test.vault, files)
    await ctx.wait_for_file_list_match(60.0)
    for fixture in files:
        await assert_file_exists(ctx.test2.vault, fixture.path)
    print(f"  {BULK_COUNT} files synced")


async def binary_file(ctx: TestContext) -> None:
    path = "test-image.png"
    data = _png()
    await ctx.test.vault.create_file(path, data, overwrite=True)
    await ctx.test2.sync.wait_for_file(path, timeout_s=30.0)

    async def same_bytes() -> bool:
        return await ctx.test2.vault.read_binary_file(path) == data

    # The file entry can land before its blob does.
    await assert_eventually(
        same_bytes, timeout_s=10.0, poll_interval_s=0.5, message=f"Binary content of {path} differs after sync"
    )
    print(f"  {len(data)} byte binary synced intact")


async def interleaved_writes(ctx: TestContext) -> None:
    paths = [f"stress/both-{i}.md" for i in range(5)]
    await asyncio.gather(
        *(ctx.test.vault.create_file(p, f"TEST {p}") for p in paths[::2]),
        *(ctx.test2.vault.create_file(p, f"TEST2 {p}") for p in paths[1::2]),
    )
    await ctx.wait_for_file_list_match(60.0)
    await ctx.wait_for_convergence(60.0)


async def bulk_delete(ctx: TestContext) -> None:
    for i in range(BULK_COUNT):
        await ctx.test.vault.delete_file(f"bulk/note-{i:03d}.md")
    await ctx.wait_for_file_list_match(60.0)


TESTS = [
    TestDef("Bulk creation syncs every file", bulk_create),
    TestDef("Binary file syncs byte for byte", binary_file),
    TestDef("Interleaved writes from both vaults converge", interleaved_writes),
    TestDef("Bulk deletion syncs", bulk_delete),
]
