import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from peervault_e2e import fixtures


def _write_set(root):
    (root / "sub").mkdir(parents=True)
    (root / "a.md").write_text("# A", encoding="utf-8")
    (root / "sub" / "b.md").write_text("# B", encoding="utf-8")
    (root / "img.PNG").write_bytes(b"\x89PNG\r\n")


def test_load_fixture_set_reads_text_and_binary(tmp_path):
    _write_set(tmp_path / "basic")

    fixture_set = fixtures.load_fixture_set(tmp_path, "basic")

    assert fixture_set.name == "basic"
    by_path = {f.path: f for f in fixture_set.files}
    assert sorted(by_path) == ["a.md", "img.PNG", "sub/b.md"]
    assert by_path["img.PNG"].is_binary
    assert by_path["img.PNG"].content == b"\x89PNG\r\n"
    assert not by_path["sub/b.md"].is_binary


def test_missing_fixture_set(tmp_path):
    with pytest.raises(FileNotFoundError):
        fixtures.load_fixture_set(tmp_path, "absent")


def test_load_all_fixture_sets_ignores_files(tmp_path):
    _write_set(tmp_path / "one")
    (tmp_path / "two").mkdir()
    (tmp_path / "README.md").write_text("not a set", encoding="utf-8")

    assert [s.name for s in fixtures.load_all_fixture_sets(tmp_path)] == ["one", "two"]


def test_large_file_is_exact_size():
    fixture = fixtures.large_file("large.md", 100)

    assert len(fixture.content) == 100 * 1024


def test_frontmatter_rendering():
    fixture = fixtures.markdown_with_frontmatter("fm.md", {"title": "T", "tags": ["a", "b"]}, "Body")

    assert fixture.content == '---\ntitle: "T"\ntags: ["a", "b"]\n---\n\nBody'


def test_deep_nesting_paths():
    files = fixtures.deep_nesting_fixtures(3)

    assert [f.path for f in files] == [
        "level-1/file.md",
        "level-1/level-2/file.md",
        "level-1/level-2/level-3/file.md",
    ]


def test_generated_sets_have_unique_paths():
    for generated in (fixtures.standard_test_set(), fixtures.unicode_fixtures(), fixtures.special_char_fixtures()):
        paths = [f.path for f in generated]
        assert len(paths) == len(set(paths))
        assert all(not f.is_binary for f in generated)


def test_load_fixtures_into_vault():
    vault = Mock()
    vault.create_file = AsyncMock()
    files = fixtures.standard_test_set()

    loaded = asyncio.run(fixtures.load_fixtures_into_vault(vault, files, overwrite=False))

    assert loaded == len(files)
    vault.create_file.assert_any_await("test-1.md", files[0].content, overwrite=False)
