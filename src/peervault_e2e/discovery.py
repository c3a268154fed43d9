"""Find Obsidian vault windows through the DevTools HTTP listing.

Nothing is hard-coded: each page target's window title is parsed for the
vault name. Obsidian titles look like ``"Note - VaultName - Obsidian v1.5.3"``
or ``"VaultName - Obsidian v1.5.3"`` when no note is open.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import aiohttp

from .backoff import BackoffPolicy, poll_with_backoff
from .config import DEFAULT_CDP_HOST, DEFAULT_CDP_PORT
from .errors import DiscoveryError

OBSIDIAN_URL_MARKER = "app://obsidian.md"

_TITLE_RE = re.compile(r"^(?:.+ - )?(.+?) - Obsidian")


@dataclass(frozen=True)
class VaultPage:
    name: str
    target_id: str
    ws_url: str
    title: str


def extract_vault_name(title: str) -> str | None:
    match = _TITLE_RE.match(title)
    if match is None:
        return None
    name = match.group(1).strip()
    return name or None


def select_vault_pages(targets: Iterable[dict[str, Any]]) -> dict[str, VaultPage]:
    vaults: dict[str, VaultPage] = {}
    for target in targets:
        if target.get("type") != "page":
            continue
        if OBSIDIAN_URL_MARKER not in str(target.get("url", "")):
            continue
        ws_url = target.get("webSocketDebuggerUrl")
        if not ws_url:
            continue
        name = extract_vault_name(str(target.get("title", "")))
        if name is None:
            continue
        vaults[name] = VaultPage(
            name=name,
            target_id=str(target.get("id", "")),
            ws_url=str(ws_url),
            title=str(target.get("title", "")),
        )
    return vaults


async def fetch_targets(
    port: int = DEFAULT_CDP_PORT,
    *,
    host: str = DEFAULT_CDP_HOST,
    session: aiohttp.ClientSession | None = None,
    timeout_s: float = 5.0,
) -> list[dict[str, Any]]:
    url = f"http://{host}:{port}/json"
    owns_session = session is None
    if session is None:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_s))
    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                raise DiscoveryError(
                    f"Failed to list CDP targets at {url}: HTTP {resp.status}. "
                    f"Ensure Obsidian is running with --remote-debugging-port={port}."
                )
            payload = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        raise DiscoveryError(
            f"Failed to connect to CDP endpoint at {url}. "
            f"Ensure Obsidian is running with --remote-debugging-port={port}. Error: {exc}"
        ) from exc
    finally:
        if owns_session:
            await session.close()
    if not isinstance(payload, list):
        raise DiscoveryError(f"CDP endpoint at {url} returned {type(payload).__name__}, expected a list")
    return [target for target in payload if isinstance(target, dict)]


async def discover_vaults(
    port: int = DEFAULT_CDP_PORT,
    *,
    host: str = DEFAULT_CDP_HOST,
    session: aiohttp.ClientSession | None = None,
) -> dict[str, VaultPage]:
    return select_vault_pages(await fetch_targets(port, host=host, session=session))


async def discover_vault(
    name: str,
    port: int = DEFAULT_CDP_PORT,
    *,
    host: str = DEFAULT_CDP_HOST,
) -> VaultPage | None:
    return (await discover_vaults(port, host=host)).get(name)


async def wait_for_vaults(
    names: Iterable[str],
    *,
    port: int = DEFAULT_CDP_PORT,
    host: str = DEFAULT_CDP_HOST,
    timeout_s: float = 60.0,
    poll_interval_s: float = 1.0,
) -> dict[str, VaultPage]:
    """Poll discovery until every vault in ``names`` has a page target."""

    wanted = list(names)
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=5.0)) as session:
        result = await poll_with_backoff(
            lambda: discover_vaults(port, host=host, session=session),
            lambda vaults: all(name in vaults for name in wanted),
            timeout_s=timeout_s,
            policy=BackoffPolicy.fixed(poll_interval_s),
        )

    if result.success and result.value is not None:
        return {name: result.value[name] for name in wanted}

    available = result.value or {}
    missing = [name for name in wanted if name not in available]
    found = [name for name in wanted if name in available]
    message = (
        f"Timeout waiting for vaults after {timeout_s:.0f}s. "
        f"Missing: [{', '.join(missing)}]. "
        f"Found: [{', '.join(found)}]. "
        f"All available: [{', '.join(available)}]."
    )
    if result.last_error is not None:
        message += f" Last discovery error: {result.last_error}"
    raise DiscoveryError(message)


async def print_discovered_vaults(
    port: int = DEFAULT_CDP_PORT,
    *,
    host: str = DEFAULT_CDP_HOST,
    output: Callable[[str], None] = print,
) -> int:
    output(f"Discovering vaults on port {port}...")
    try:
        vaults = await discover_vaults(port, host=host)
    except DiscoveryError as exc:
        output(f"Discovery failed: {exc}")
        return 1

    if not vaults:
        output("No Obsidian vaults found.")
        output("Make sure Obsidian is running with vault windows open.")
        return 0

    output(f"Found {len(vaults)} vault(s):")
    for name, page in vaults.items():
        output(f"  - {name}")
        output(f"    Title: {page.title}")
        output(f"    ID: {page.target_id}")
        output(f"    WS: {page.ws_url}")
    return 0
