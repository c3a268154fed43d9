"""Start, stop and provision the Obsidian instance under test."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

from .cdp_client import create_cdp_client
from .config import HarnessConfig, VaultConfig
from .discovery import wait_for_vaults
from .plugin_api import PLUGIN_ID

logger = logging.getLogger(__name__)

BRAT_PLUGIN_ID = "obsidian42-brat"
PLUGIN_REPOSITORY = "robcohen/peervault"


def _spawn_detached(args: list[str]) -> subprocess.Popen:
    return subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )


async def kill_obsidian(*, settle_s: float = 2.0, output: Callable[[str], None] = print) -> None:
    output("Killing Obsidian processes...")
    for args in (["pkill", "-f", "obsidian"], ["killall", "obsidian"]):
        if shutil.which(args[0]) is None:
            continue
        subprocess.run(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False)
    await asyncio.sleep(settle_s)
    output("Obsidian processes killed.")


def open_vault_uri(vault_name: str) -> subprocess.Popen:
    return _spawn_detached(["xdg-open", f"obsidian://open?vault={vault_name}"])


async def start_obsidian(
    config: HarnessConfig,
    *,
    binary: str = "obsidian",
    plugin_init_s: float = 5.0,
    output: Callable[[str], None] = print,
) -> subprocess.Popen:
    """Launch Obsidian with remote debugging and open both vaults in turn.

    The second vault is opened only once the first has a page target, since
    Obsidian drops URI requests that arrive before its handler is registered.
    """

    port = config.cdp.port
    output("Starting Obsidian in dev mode...")
    proc = _spawn_detached([binary, f"--remote-debugging-port={port}"])
    output(f"Started Obsidian with CDP port {port}")

    await asyncio.sleep(0.5)
    for vault in config.vaults:
        output(f"Opening {vault.name} vault...")
        open_vault_uri(vault.name)
        await wait_for_vaults(
            [vault.name],
            port=port,
            host=config.cdp.host,
            timeout_s=config.discovery_timeout_s,
        )
        output(f"{vault.name} vault ready")

    output("Waiting for plugins to initialize...")
    await asyncio.sleep(plugin_init_s)
    return proc


def delete_plugin(vault_path: Path, *, output: Callable[[str], None] = print) -> None:
    plugin_dir = vault_path / ".obsidian" / "plugins" / PLUGIN_ID
    if plugin_dir.exists():
        shutil.rmtree(plugin_dir)
        output(f"  Deleted plugin from {vault_path}")


def enable_plugin_in_config(vault_path: Path, *, output: Callable[[str], None] = print) -> list[str]:
    """Make sure ``community-plugins.json`` lists the sync plugin."""

    config_path = vault_path / ".obsidian" / "community-plugins.json"
    plugins: list[str] = []
    if config_path.exists():
        try:
            loaded = json.loads(config_path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning("Ignoring unreadable %s", config_path)
        else:
            if isinstance(loaded, list):
                plugins = [str(p) for p in loaded]
    if PLUGIN_ID not in plugins:
        plugins.append(PLUGIN_ID)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(plugins, indent=2), encoding="utf-8")
    output(f"  Enabled {PLUGIN_ID} in {vault_path}")
    return plugins


def prepare_fresh_install(config: HarnessConfig, *, output: Callable[[str], None] = print) -> None:
    output("Deleting existing plugin installs...")
    for vault in config.vaults:
        delete_plugin(vault.path, output=output)
    output("Updating plugin configs...")
    for vault in config.vaults:
        enable_plugin_in_config(vault.path, output=output)


async def install_via_brat(
    config: HarnessConfig,
    vault: VaultConfig,
    *,
    timeout_s: float = 60.0,
    output: Callable[[str], None] = print,
) -> None:
    """Ask the BRAT plugin inside ``vault`` to install and enable the sync plugin."""

    ws_url: Optional[str] = vault.ws_url
    if ws_url is None:
        pages = await wait_for_vaults(
            [vault.name], port=config.cdp.port, host=config.cdp.host, timeout_s=config.discovery_timeout_s
        )
        ws_url = pages[vault.name].ws_url

    output(f"  Installing {PLUGIN_ID} via BRAT in {vault.name}...")
    client = await create_cdp_client(ws_url, config.cdp)
    try:
        await client.evaluate(
            f"""
      (async function() {{
        const brat = window.app?.plugins?.plugins?.["{BRAT_PLUGIN_ID}"];
        if (!brat || !brat.betaPlugins) {{
          throw new Error("BRAT plugin not available");
        }}
        const ok = await brat.betaPlugins.addPlugin(
          {json.dumps(PLUGIN_REPOSITORY)}, false, false, false, "", true, true
        );
        if (!ok) {{
          throw new Error("BRAT addPlugin returned false");
        }}
        await new Promise(r => setTimeout(r, 3000));
        return true;
      }})()
    """,
            timeout_s=timeout_s,
        )
    finally:
        await client.close()
    output(f"  {PLUGIN_ID} installed in {vault.name}")


async def install_plugins_via_brat(
    config: HarnessConfig,
    *,
    between_s: float = 2.0,
    settle_s: float = 5.0,
    output: Callable[[str], None] = print,
) -> None:
    output(f"Installing {PLUGIN_ID} via BRAT...")
    first, second = config.vaults
    await install_via_brat(config, first, output=output)
    await asyncio.sleep(between_s)
    await install_via_brat(config, second, output=output)
    output("Plugin installation complete. Waiting for initialization...")
    await asyncio.sleep(settle_s)
