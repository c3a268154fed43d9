"""Test fixtures: on-disk fixture sets and generated vault content."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from .vault import VaultController

BINARY_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".pdf", ".zip", ".tar", ".gz"})


@dataclass(frozen=True)
class FixtureFile:
    path: str
    content: str | bytes

    @property
    def is_binary(self) -> bool:
        return isinstance(self.content, bytes)


@dataclass
class FixtureSet:
    name: str
    files: list[FixtureFile] = field(default_factory=list)


def load_directory(root: Path) -> list[FixtureFile]:
    files: list[FixtureFile] = []
    for entry in sorted(root.rglob("*")):
        if not entry.is_file():
            continue
        relative = entry.relative_to(root).as_posix()
        if entry.suffix.lower() in BINARY_EXTENSIONS:
            files.append(FixtureFile(relative, entry.read_bytes()))
        else:
            files.append(FixtureFile(relative, entry.read_text(encoding="utf-8")))
    return files


def load_fixture_set(fixtures_dir: Path, name: str) -> FixtureSet:
    path = fixtures_dir / name
    if not path.is_dir():
        raise FileNotFoundError(f"Fixture set not found: {path}")
    return FixtureSet(name, load_directory(path))


def load_all_fixture_sets(fixtures_dir: Path) -> list[FixtureSet]:
    return [load_fixture_set(fixtures_dir, entry.name) for entry in sorted(fixtures_dir.iterdir()) if entry.is_dir()]


async def load_fixtures_into_vault(
    vault: VaultController, files: Iterable[FixtureFile], overwrite: bool = True
) -> int:
    loaded = 0
    for fixture in files:
        await vault.create_file(fixture.path, fixture.content, overwrite=overwrite)
        loaded += 1
    return loaded


def markdown(path: str, content: str) -> FixtureFile:
    return FixtureFile(path, content)


def markdown_with_frontmatter(path: str, frontmatter: Mapping[str, Any], body: str) -> FixtureFile:
    yaml = "\n".join(f"{key}: {json.dumps(value)}" for key, value in frontmatter.items())
    return FixtureFile(path, f"---\n{yaml}\n---\n\n{body}")


def large_file(path: str, size_kb: int) -> FixtureFile:
    """Plain text of exactly ``size_kb`` KiB."""

    line = "This is a line of text for testing large file sync. " * 2
    target = size_kb * 1024
    lines_needed = -(-target // len(line))
    return FixtureFile(path, "\n".join([line] * lines_needed)[:target])


def unicode_fixtures() -> list[FixtureFile]:
    return [
        markdown("unicode-日本語.md", "# Japanese filename test\n\nContent here."),
        markdown("unicode-中文.md", "# Chinese filename test\n\nContent here."),
        markdown("unicode-한국어.md", "# Korean filename test\n\nContent here."),
        markdown("unicode-emoji-🎉.md", "# Emoji filename test\n\nContent here."),
        markdown("unicode-symbols-αβγ.md", "# Greek symbols test\n\nContent here."),
    ]


def deep_nesting_fixtures(depth: int = 10) -> list[FixtureFile]:
    files = []
    parts: list[str] = []
    for level in range(1, depth + 1):
        parts.append(f"level-{level}")
        files.append(markdown("/".join(parts) + "/file.md", f"# Level {level}\n\nNested {level} levels deep."))
    return files


def special_char_fixtures() -> list[FixtureFile]:
    return [
        markdown("file with spaces.md", "# Spaces in filename"),
        markdown("file-with-dashes.md", "# Dashes in filename"),
        markdown("file_with_underscores.md", "# Underscores in filename"),
        markdown("file.multiple.dots.md", "# Multiple dots in filename"),
        markdown("file (with parens).md", "# Parentheses in filename"),
        markdown("file [with brackets].md", "# Brackets in filename"),
        markdown("file {with braces}.md", "# Braces in filename"),
    ]


def standard_test_set() -> list[FixtureFile]:
    return [
        markdown("test-1.md", "# Test File 1\n\nSimple content."),
        markdown("test-2.md", "# Test File 2\n\nMore content here."),
        markdown("test-3.md", "# Test File 3\n\nEven more content."),
        markdown_with_frontmatter(
            "with-frontmatter.md",
            {"title": "Frontmatter Test", "tags": ["test", "sync"], "date": "2024-01-15"},
            "# Frontmatter Test\n\nThis file has YAML frontmatter.",
        ),
        markdown(
            "with-links.md",
            "# Links Test\n\nThis links to [[test-1]] and [[test-2]].\n\nAlso [[test-3|with alias]].",
        ),
        markdown("with-embeds.md", "# Embeds Test\n\nEmbedding another note:\n\n![[test-1]]\n\nDone."),
        markdown("folder/nested-file.md", "# Nested File\n\nThis is inside a folder."),
        markdown("folder/subfolder/deep-file.md", "# Deep File\n\nThis is two levels deep."),
    ]
