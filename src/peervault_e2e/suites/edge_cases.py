from ..context import TestContext, TestDef
from ..fixtures import (
    deep_nesting_fixtures,
    large_file,
    load_fixture_set,
    load_fixtures_into_vault,
    special_char_fixtures,
    unicode_fixtures,
)


async def _sync_fixtures(ctx: TestContext, files) -> None:
    count = await load_fixtures_into_vault(ctx.test.vault, files)
    for fixture in files:
        if fixture.is_binary:
            await ctx.test2.sync.wait_for_file(fixture.path, timeout_s=30.0)
        else:
            await ctx.test2.sync.wait_for_content(fixture.path, fixture.content, timeout_s=30.0)
    print(f"  {count} file(s) synced")


async def unicode_names(ctx: TestContext) -> None:
    await _sync_fixtures(ctx, unicode_fixtures())


async def special_characters(ctx: TestContext) -> None:
    await _sync_fixtures(ctx, special_char_fixtures())


async def deep_nesting(ctx: TestContext) -> None:
    await _sync_fixtures(ctx, deep_nesting_fixtures(10))


async def large_text_file(ctx: TestContext) -> None:
    await _sync_fixtures(ctx, [large_file("large-file.md", 512)])


async def fixture_directory(ctx: TestContext) -> None:
    path = ctx.config.fixtures_path / "edge-cases"
    if not path.is_dir():
        print(f"  No fixture set at {path}, nothing to load")
        return
    await _sync_fixtures(ctx, load_fixture_set(ctx.config.fixtures_path, "edge-cases").files)


async def final_cleanup(ctx: TestContext) -> None:
    await ctx.reset_files()
    await ctx.wait_for_file_list_match(30.0)


TESTS = [
    TestDef("Sync files with unicode names", unicode_names),
    TestDef("Sync files with special characters in names", special_characters),
    TestDef("Sync deeply nested folders", deep_nesting),
    TestDef("Sync a large text file", large_text_file),
    TestDef("Sync edge-cases fixture directory", fixture_directory),
    TestDef("Final cleanup leaves both vaults empty", final_cleanup),
]
