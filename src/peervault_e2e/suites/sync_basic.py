import asyncio

from ..assertions import (
    assert_file_content,
    assert_file_exists,
    assert_file_not_exists,
    assert_in_crdt,
    assert_not_in_crdt,
    assert_that,
)
from ..context import TestContext, TestDef
from ..fixtures import markdown_with_frontmatter

SYNCED_PATHS = ("sync-test-1.md", "sync-test-2.md", "links-test.md")


async def ensure_sessions(ctx: TestContext) -> None:
    for vault in ctx.vaults:
        active = await vault.plugin.ensure_active_sessions()
        assert_that(active, f"{vault.name} should have an active sync session after force sync")
    print("  Active sync sessions confirmed on both vaults")


async def create_in_test(ctx: TestContext) -> None:
    path, content = "sync-test-1.md", "# Sync Test 1\n\nCreated in TEST, should sync to TEST2."
    await ctx.test.vault.create_file(path, content)
    await ctx.test2.sync.wait_for_file(path)
    await assert_file_content(ctx.test2.vault, path, content)


async def create_in_test2(ctx: TestContext) -> None:
    path, content = "sync-test-2.md", "# Sync Test 2\n\nCreated in TEST2, should sync to TEST."
    await ctx.test2.vault.create_file(path, content)
    await ctx.test.sync.wait_for_file(path)
    await assert_file_content(ctx.test.vault, path, content)


async def batch_create(ctx: TestContext) -> None:
    files = {f"batch/file-{i}.md": f"Batch file {i}" for i in range(1, 4)}
    for path, content in files.items():
        await ctx.test.vault.create_file(path, content)
    for path in files:
        await ctx.test2.sync.wait_for_file(path)
    for path, content in files.items():
        await assert_file_content(ctx.test2.vault, path, content)
    print(f"  {len(files)} files synced")


async def frontmatter(ctx: TestContext) -> None:
    fixture = markdown_with_frontmatter(
        "frontmatter-test.md",
        {"title": "Frontmatter Test", "tags": ["sync", "test"], "date": "2024-01-15"},
        "# Frontmatter Test\n\nThis file has YAML frontmatter.",
    )
    await ctx.test.vault.create_file(fixture.path, fixture.content)
    await ctx.test2.sync.wait_for_file(fixture.path)
    await assert_file_content(ctx.test2.vault, fixture.path, fixture.content)


async def internal_links(ctx: TestContext) -> None:
    path = "links-test.md"
    content = (
        "# Links Test\n\nThis links to [[sync-test-1]] and [[sync-test-2]].\n\n"
        "Also [[batch/file-1|with alias]].\n\nAnd an embed: ![[sync-test-1]]"
    )
    await ctx.test2.vault.create_file(path, content)
    await ctx.test.sync.wait_for_file(path)
    await assert_file_content(ctx.test.vault, path, content)


async def tracked_in_crdt(ctx: TestContext) -> None:
    for vault in ctx.vaults:
        for path in SYNCED_PATHS:
            await assert_in_crdt(vault.plugin, path)


async def versions_converge(ctx: TestContext) -> None:
    version = await ctx.wait_for_convergence()
    print(f"  CRDT versions converged at {version}")


async def modify_in_test(ctx: TestContext) -> None:
    path, content = "sync-test-1.md", "# Sync Test 1 - Modified\n\nThis content was updated in TEST."
    await ctx.test.vault.modify_file(path, content)
    await ctx.test2.sync.wait_for_content(path, content)


async def rapid_modifications(ctx: TestContext) -> None:
    path = "rapid-modify.md"
    await ctx.test.vault.create_file(path, "Version 0")
    await ctx.test2.sync.wait_for_file(path)
    for i in range(1, 6):
        await ctx.test.vault.modify_file(path, f"Version {i}")
        await asyncio.sleep(0.2)
    await ctx.test2.sync.wait_for_content(path, "Version 5")


async def large_modification(ctx: TestContext) -> None:
    path = "large-modify.md"
    await ctx.test.vault.create_file(path, "Initial small content")
    await ctx.test2.sync.wait_for_file(path)
    content = "\n".join(["This is a line of content for testing large modifications. "] * 2000)
    await ctx.test.vault.modify_file(path, content)
    await ctx.test2.sync.wait_for_content_contains(path, "large modifications", timeout_s=30.0)
    await assert_file_content(ctx.test2.vault, path, content)
    print(f"  Large modification ({len(content)} bytes) synced")


async def delete_in_test(ctx: TestContext) -> None:
    path = "delete-test-1.md"
    await ctx.test.vault.create_file(path, "# Delete Test 1\n\nThis file will be deleted.")
    await ctx.test2.sync.wait_for_file(path, timeout_s=30.0)
    await assert_file_exists(ctx.test2.vault, path)
    await ctx.test.vault.delete_file(path)
    await ctx.test2.sync.wait_for_file_deletion(path, timeout_s=30.0)
    await assert_file_not_exists(ctx.test.vault, path)
    await assert_not_in_crdt(ctx.test.plugin, path)


async def rename_in_test2(ctx: TestContext) -> None:
    old, new = "rename-before.md", "renamed/rename-after.md"
    content = "# Rename Test"
    await ctx.test2.vault.create_file(old, content)
    await ctx.test.sync.wait_for_file(old, timeout_s=30.0)
    await ctx.test2.vault.rename_file(old, new)
    await ctx.test.sync.wait_for_file(new, timeout_s=30.0)
    await ctx.test.sync.wait_for_file_deletion(old, timeout_s=30.0)
    await assert_file_content(ctx.test.vault, new, content)


async def file_lists_match(ctx: TestContext) -> None:
    files = await ctx.wait_for_file_list_match()
    print(f"  Both vaults track {len(files)} file(s)")


TESTS = [
    TestDef("Ensure active sync sessions before testing", ensure_sessions),
    TestDef("Create file in TEST syncs to TEST2", create_in_test, parallel=True),
    TestDef("Create file in TEST2 syncs to TEST", create_in_test2, parallel=True),
    TestDef("Multiple files created quickly sync correctly", batch_create, parallel=True),
    TestDef("File with frontmatter syncs correctly", frontmatter, parallel=True),
    TestDef("File with internal links syncs correctly", internal_links, parallel=True),
    TestDef("Files appear in CRDT on both vaults", tracked_in_crdt),
    TestDef("CRDT versions converge", versions_converge),
    TestDef("Modify file in TEST syncs to TEST2", modify_in_test, parallel=True),
    TestDef("Multiple rapid modifications sync correctly", rapid_modifications, parallel=True),
    TestDef("Large modification syncs correctly", large_modification),
    TestDef("Delete file in TEST removes from TEST2", delete_in_test),
    TestDef("Rename in TEST2 moves file in TEST", rename_in_test2),
    TestDef("File lists converge", file_lists_match),
    TestDef("CRDT versions converge after modifications", versions_converge),
]
