"""Vault file operations routed through Obsidian's ``app.vault`` API.

Going through Obsidian rather than the filesystem makes the sync plugin see
the same vault events a user edit would produce.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Optional

from .cdp_client import CdpClient
from .errors import HarnessError

_PARENT_FOLDERS_JS = """
        const parts = path.split('/');
        if (parts.length > 1) {
          const folderPath = parts.slice(0, -1).join('/');
          if (!vault.getAbstractFileByPath(folderPath)) {
            await vault.createFolder(folderPath);
          }
        }
"""


@dataclass(frozen=True)
class FileStat:
    size: int
    ctime: int
    mtime: int


@dataclass(frozen=True)
class DeleteAllResult:
    deleted: int
    failed: int
    failed_paths: list[str]


def _js(value: object) -> str:
    return json.dumps(value)


class VaultController:
    def __init__(self, client: CdpClient, vault_name: str) -> None:
        self.client = client
        self.vault_name = vault_name

    async def create_file(self, path: str, content: str | bytes, overwrite: bool = False) -> None:
        """Create ``path``; raises ``EvaluationError`` if it exists and not ``overwrite``."""

        is_binary = isinstance(content, (bytes, bytearray))
        payload = base64.b64encode(content).decode("ascii") if is_binary else content
        await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const path = {_js(path)};
        const content = {_js(payload)};
        {_PARENT_FOLDERS_JS}
        const existing = vault.getAbstractFileByPath(path);
        if (existing) {{
          if (!{_js(overwrite)}) {{
            throw new Error('File already exists.');
          }}
          await vault.delete(existing);
        }}
        if ({_js(is_binary)}) {{
          const binary = Uint8Array.from(atob(content), c => c.charCodeAt(0));
          await vault.createBinary(path, binary);
        }} else {{
          await vault.create(path, content);
        }}
      }})()
    """
        )

    async def read_file(self, path: str) -> str:
        return await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const path = {_js(path)};
        const file = vault.getAbstractFileByPath(path);
        if (!file) {{
          throw new Error('File not found: ' + path);
        }}
        return await vault.read(file);
      }})()
    """
        )

    async def read_binary_file(self, path: str) -> bytes:
        encoded = await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const path = {_js(path)};
        const file = vault.getAbstractFileByPath(path);
        if (!file) {{
          throw new Error('File not found: ' + path);
        }}
        const bytes = new Uint8Array(await vault.readBinary(file));
        let binary = '';
        for (let i = 0; i < bytes.length; i++) {{
          binary += String.fromCharCode(bytes[i]);
        }}
        return btoa(binary);
      }})()
    """
        )
        return base64.b64decode(encoded or "")

    async def modify_file(self, path: str, content: str) -> None:
        await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const path = {_js(path)};
        const file = vault.getAbstractFileByPath(path);
        if (!file) {{
          throw new Error('File not found: ' + path);
        }}
        await vault.modify(file, {_js(content)});
      }})()
    """
        )

    async def delete_file(self, path: str) -> None:
        await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const path = {_js(path)};
        const file = vault.getAbstractFileByPath(path);
        if (!file) {{
          throw new Error('File not found: ' + path);
        }}
        await vault.delete(file);
      }})()
    """
        )

    async def rename_file(self, old_path: str, new_path: str) -> None:
        await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const oldPath = {_js(old_path)};
        const path = {_js(new_path)};
        const file = vault.getAbstractFileByPath(oldPath);
        if (!file) {{
          throw new Error('File not found: ' + oldPath);
        }}
        {_PARENT_FOLDERS_JS}
        await vault.rename(file, path);
      }})()
    """
        )

    async def create_folder(self, path: str) -> None:
        await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const path = {_js(path)};
        if (!vault.getAbstractFileByPath(path)) {{
          await vault.createFolder(path);
        }}
      }})()
    """
        )

    async def delete_folder(self, path: str) -> None:
        await self.client.evaluate(
            f"""
      (async function() {{
        const vault = window.app.vault;
        const path = {_js(path)};
        const folder = vault.getAbstractFileByPath(path);
        if (!folder) {{
          throw new Error('Folder not found: ' + path);
        }}
        await vault.delete(folder, true);
      }})()
    """
        )

    async def list_files(self) -> list[str]:
        """All vault file paths, excluding the ``.obsidian`` config folder."""

        return await self.client.evaluate(
            """
      (function() {
        return window.app.vault.getFiles()
          .map(f => f.path)
          .filter(p => !p.startsWith('.obsidian/'));
      })()
    """
        ) or []

    async def list_markdown_files(self) -> list[str]:
        return await self.client.evaluate(
            """
      (function() {
        return window.app.vault.getMarkdownFiles()
          .map(f => f.path)
          .filter(p => !p.startsWith('.obsidian/'));
      })()
    """
        ) or []

    async def file_exists(self, path: str) -> bool:
        return bool(
            await self.client.evaluate(
                f"""
      (function() {{
        return window.app.vault.getAbstractFileByPath({_js(path)}) !== null;
      }})()
    """
            )
        )

    async def get_file_stat(self, path: str) -> Optional[FileStat]:
        raw = await self.client.evaluate(
            f"""
      (function() {{
        const file = window.app.vault.getAbstractFileByPath({_js(path)});
        if (!file || !file.stat) return null;
        return {{ size: file.stat.size, ctime: file.stat.ctime, mtime: file.stat.mtime }};
      }})()
    """
        )
        if not raw:
            return None
        return FileStat(size=int(raw["size"]), ctime=int(raw["ctime"]), mtime=int(raw["mtime"]))

    async def delete_all_files(self, throw_on_failure: bool = False) -> DeleteAllResult:
        """Delete every user file, then any empty folders, deepest first."""

        raw = await self.client.evaluate(
            """
      (async function() {
        const vault = window.app.vault;
        const files = vault.getFiles().filter(f => !f.path.startsWith('.obsidian/'));
        let deleted = 0;
        let failed = 0;
        const failedPaths = [];
        for (const file of files) {
          try {
            await vault.delete(file);
            deleted++;
          } catch (e) {
            failed++;
            failedPaths.push(file.path);
            console.warn('Failed to delete:', file.path, e);
          }
        }
        const folders = vault.getAllLoadedFiles()
          .filter(f => f.children !== undefined)
          .filter(f => !f.path.startsWith('.obsidian'))
          .filter(f => f.path !== '/')
          .sort((a, b) => b.path.length - a.path.length);
        for (const folder of folders) {
          try {
            if (folder.children?.length === 0) {
              await vault.delete(folder);
            }
          } catch (e) {
            // non-empty folders are expected to fail
          }
        }
        return { deleted, failed, failedPaths };
      })()
    """
        ) or {}
        result = DeleteAllResult(
            deleted=int(raw.get("deleted", 0)),
            failed=int(raw.get("failed", 0)),
            failed_paths=list(raw.get("failedPaths", [])),
        )
        if throw_on_failure and result.failed > 0:
            raise HarnessError(
                f"Failed to delete {result.failed} file(s): {', '.join(result.failed_paths)}"
            )
        return result

    async def get_vault_path(self) -> str:
        return await self.client.evaluate("(function() { return window.app.vault.adapter.basePath; })()")

    async def get_vault_name(self) -> str:
        return await self.client.evaluate(
            '(function() { return window.app?.vault?.getName() || "unknown"; })()'
        )
