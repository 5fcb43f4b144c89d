"""Diagnostic tool for the sidecar.

Run inside the pod to check configuration, the game server port and the
Agones SDK step by step, instead of waiting on the full lifecycle.

Usage:
    kubectl exec <pod> -c sidecar -- python -m sidecar.diagnose
    kubectl exec <pod> -c sidecar -- python -m sidecar.diagnose --step probe
    kubectl exec <pod> -c sidecar -- python -m sidecar.diagnose --step sdk
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from sidecar.log import setup_logging

PASS = "\033[92m PASS \033[0m"
FAIL = "\033[91m FAIL \033[0m"
INFO = "\033[94m INFO \033[0m"


def header(title: str) -> None:
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}")


def result(label: str, ok: bool, detail: str = "") -> bool:
    status = PASS if ok else FAIL
    print(f"  [{status}] {label}")
    if detail:
        for line in detail.strip().split("\n"):
            print(f"         {line}")
    return ok


def info(label: str) -> None:
    print(f"  [{INFO}] {label}")


# ── Step: Config ──────────────────────────────────────────────

def check_config() -> dict[str, Any]:
    header("Configuration")
    from sidecar.errors import ConfigurationError
    from sidecar.main import load_settings

    try:
        s = load_settings()
    except ConfigurationError as exc:
        result("Config loaded", False, str(exc))
        return {}

    result("Config loaded", True)
    values = {
        "PING_HOST": s.ping_host,
        "PING_PORT": s.ping_port,
        "PING_PROTOCOL": s.ping_protocol,
        "PING_TIMEOUT": f"{s.ping_timeout}s",
        "INITIAL_DELAY": f"{s.initial_delay}s",
        "RETRY_INTERVAL": f"{s.retry_interval}s",
        "HEALTH_INTERVAL": f"{s.health_interval}s",
        "AGONES_SDK": f"{s.agones_sdk_host}:{s.agones_sdk_http_port}",
        "API_ENABLED": str(s.api_enabled),
        "DATA_ROOT": s.data_root,
    }
    for key, val in values.items():
        print(f"         {key} = {val}")
    return {"settings": s}


# ── Step: Probe ───────────────────────────────────────────────

async def check_probe(settings: Any) -> bool:
    header("Readiness probe (single attempt)")
    from sidecar.lifecycle import LifecycleConfig
    from sidecar.probe import strategy_for

    target = LifecycleConfig.from_settings(settings).target
    probe = strategy_for(target.transport)
    outcome = await probe.attempt(target)
    return result(
        f"{target.transport.value.upper()} {target.address}",
        outcome.success,
        "" if outcome.success else outcome.describe(),
    )


# ── Step: Agones SDK ──────────────────────────────────────────

async def check_sdk(settings: Any, sdk: Any = None) -> bool:
    header("Agones SDK server")
    from sidecar.agones import AgonesSDK
    from sidecar.errors import SDKConnectionError

    sdk = sdk or AgonesSDK(
        host=settings.agones_sdk_host, port=settings.agones_sdk_http_port, timeout=5.0,
    )
    try:
        gameserver = await sdk.connect()
    except SDKConnectionError as exc:
        return result("GET /gameserver", False, str(exc))
    finally:
        await sdk.close()

    meta = gameserver.get("object_meta") or {}
    status = gameserver.get("status") or {}
    info(f"GameServer: {meta.get('name', '?')} (state {status.get('state', '?')})")
    return result("GET /gameserver", True, f"SDK at {sdk.url}")


# ── Main ──────────────────────────────────────────────────────

async def run(step: str) -> int:
    print("\n" + "="*60)
    print("  AGNOSTIC SIDECAR - DIAGNOSTIC TOOL")
    print("="*60)

    ctx = check_config()
    settings = ctx.get("settings")
    if not settings:
        print("\n  Cannot proceed without valid config. Fix the environment first.")
        return 1

    ok = True
    if step in ("all", "probe"):
        ok = await check_probe(settings) and ok
    if step in ("all", "sdk"):
        ok = await check_sdk(settings) and ok

    print(f"\n{'='*60}")
    print("  DONE" if ok else "  FAILED")
    print(f"{'='*60}\n")
    return 0 if ok else 1


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Agnostic sidecar diagnostic tool")
    parser.add_argument(
        "--step",
        choices=["config", "probe", "sdk", "all"],
        default="all",
        help="Which check to run (default: all)",
    )
    args = parser.parse_args(argv)
    setup_logging("DEBUG", "console")
    sys.exit(asyncio.run(run(args.step)))


if __name__ == "__main__":
    main()
