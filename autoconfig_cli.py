#!/usr/bin/env python3
"""
Stream auto-configuration CLI -- runs the full wizard from the terminal.

The media pipeline is simulated: servers from the service catalog get a
stable pseudo-random throughput and latency, and the machine's encoders
are whatever ``--hardware`` names.

Usage::

    python autoconfig_cli.py --service Twitch --key live_xxx      # rich dashboard
    python autoconfig_cli.py --service Twitch --key k --simple    # plain text
    python autoconfig_cli.py --service Twitch --key k --json      # JSON to stdout
    python autoconfig_cli.py ... -o result.json                   # save to file
    python autoconfig_cli.py ... --regions na,eu                  # only test NA/EU servers
    python autoconfig_cli.py --server rtmp://host/app --custom --key k
    python autoconfig_cli.py ... --hardware ffmpeg_nvenc --recording
    python autoconfig_cli.py ... --quick                          # short probe windows
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import List, Optional

import aiohttp
from rich.logging import RichHandler

from autoconfig.catalog import SERVICES_URL, ServiceCatalog
from autoconfig.config import load_config, parse_regions, state_from_config
from autoconfig.constants import AUTO_SERVER, PENDING_POLL_INTERVAL, Timings
from autoconfig.engine import AutoConfigEngine, ProbeKind
from autoconfig.events import EventKind
from autoconfig.simulated import SimulatedPipeline
from autoconfig.state import ConfigState, Purpose
from autoconfig.store import ConfigStore
from ui.dashboard import (
    ProgressDisplay,
    console,
    error_message,
    print_header,
    print_inputs,
    print_results,
)
from ui.output import create_result_json, format_text_result, save_json

MIN_FPS = 1
MAX_FPS = 240

QUICK_TIMINGS = Timings(
    connect=2.0,
    transfer_window=1.0,
    stop_poll_interval=0.05,
    stop_poll_attempts=20,
    stop_confirm=2.0,
    deactivate=2.0,
    encode_window=0.2,
    check_window=0.5,
)


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------

def _validate(fps: int, regions: Optional[str], server: str, custom: bool) -> None:
    """Raise ``ValueError`` if any parameter is out of range."""
    if fps and not MIN_FPS <= fps <= MAX_FPS:
        raise ValueError(f"FPS must be between {MIN_FPS} and {MAX_FPS}")
    if regions:
        parse_regions(regions.split(","))
    if custom and (not server or server == AUTO_SERVER):
        raise ValueError("A custom server needs an explicit --server URL")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def _load_catalog(services_file: Optional[str], services_url: Optional[str], needed: bool) -> ServiceCatalog:
    if services_file:
        return ServiceCatalog.load(services_file)
    if services_url or needed:
        return asyncio.run(ServiceCatalog.fetch(services_url or SERVICES_URL))
    return ServiceCatalog()


# ---------------------------------------------------------------------------
# Wizard
# ---------------------------------------------------------------------------

def _follow(engine: AutoConfigEngine, kind: ProbeKind, display: Optional[ProgressDisplay]) -> List[str]:
    """Poll events until the probe in *kind* finishes; returns error labels."""
    errors: List[str] = []
    while True:
        finished = not engine.busy(kind)
        for event in iter(engine.query, None):
            if display:
                display.handle(event)
            if event.kind is EventKind.ERROR:
                errors.append(event.label)
        if finished:
            return errors
        time.sleep(PENDING_POLL_INTERVAL)


def run_wizard(
    engine: AutoConfigEngine,
    *,
    show_ui: bool = True,
    use_defaults: bool = False,
    server_hint: str = "",
) -> dict:
    """Drive every wizard step and return a JSON-serialisable summary."""
    state = engine.state
    engine.initialize(service_hint=state.service_name, server_hint=server_hint)

    if show_ui:
        print_inputs(state)

    display = ProgressDisplay() if show_ui else None
    if display:
        display.start()

    errors: List[str] = []
    check_passed: Optional[bool] = None

    def step(kind: ProbeKind, launch) -> bool:  # noqa: ANN001
        if not launch():
            errors.append(f"{kind.value}_busy")
            return False
        step_errors = _follow(engine, kind, display)
        errors.extend(step_errors)
        return not step_errors

    try:
        if use_defaults:
            step(ProbeKind.DEFAULT_SETTINGS, engine.run_default_settings)
        else:
            if state.bandwidth_test:
                if not step(ProbeKind.BANDWIDTH, engine.run_bandwidth_test):
                    return create_result_json(state, errors=errors)
            if not step(ProbeKind.STREAM_ENCODER, engine.run_stream_encoder_test):
                return create_result_json(state, errors=errors)
            if not step(ProbeKind.RECORDING_ENCODER, engine.run_recording_encoder_test):
                return create_result_json(state, errors=errors)

            check_passed = engine.run_check_settings()
            for event in iter(engine.query, None):
                if event.kind is EventKind.ERROR:
                    errors.append(event.label)

        if not step(ProbeKind.SAVE_STREAM_SETTINGS, engine.run_save_stream_settings):
            return create_result_json(state, check_passed, errors=errors)
        step(ProbeKind.SAVE_SETTINGS, engine.run_save_settings)
    finally:
        if display:
            display.stop()

    return create_result_json(state, check_passed, engine.store.path, errors)


def build_state(args: argparse.Namespace) -> ConfigState:
    """Config file values overridden by command-line flags."""
    config = load_config()
    overrides = {
        "service": args.service,
        "key": args.key,
        "server": args.server,
        "fps": args.fps,
    }
    config.update({k: v for k, v in overrides.items() if v})
    if args.custom:
        config["custom_server"] = True
    if args.regions:
        config["regions"] = args.regions.split(",")
    if args.no_region_test:
        config["test_regions"] = False
    if args.skip_bandwidth:
        config["bandwidth_test"] = False
    if args.prefer_software:
        config["prefer_hardware"] = False
    if args.prefer_resolution:
        config["prefer_high_fps"] = False
    if args.recording:
        config["purpose"] = Purpose.RECORDING.value
    if args.settings_file:
        config["settings_file"] = args.settings_file
    return state_from_config(config)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Stream auto-configuration -- pick bitrate, resolution and encoders",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")

    # Stream target
    parser.add_argument("--service", type=str, metavar="NAME", help="Streaming service name (e.g. Twitch)")
    parser.add_argument("--key", type=str, metavar="KEY", help="Stream key")
    parser.add_argument("--server", type=str, metavar="URL", help="Server to test ('auto' tests the catalog)")
    parser.add_argument("--custom", action="store_true", help="--server is a custom RTMP URL")
    parser.add_argument("--regions", type=str, metavar="LIST", help="Comma-separated regions to test: na,sa,eu,as,oc")
    parser.add_argument("--no-region-test", action="store_true", help="Test servers in every region")
    parser.add_argument("--services-file", type=str, metavar="FILE", help="Local services.json catalog")
    parser.add_argument("--services-url", type=str, metavar="URL", help="Download the catalog from URL")

    # Preferences
    parser.add_argument("--skip-bandwidth", action="store_true", help="Skip the bandwidth test")
    parser.add_argument("--prefer-software", action="store_true", help="Prefer x264 over hardware encoders")
    parser.add_argument("--prefer-resolution", action="store_true", help="Prefer resolution over frame rate")
    parser.add_argument("--fps", type=int, default=0, metavar="N", help="Fixed frame rate (default: let the search choose)")
    parser.add_argument("--recording", action="store_true", help="Optimise for recording instead of streaming")
    parser.add_argument("--defaults", action="store_true", help="Skip probing and save default settings")

    # Environment
    parser.add_argument("--hardware", action="append", default=[], metavar="ID", help="Simulated hardware encoder id (repeatable)")
    parser.add_argument("--settings-file", type=str, metavar="FILE", help="Where to persist the decided settings")
    parser.add_argument("--quick", action="store_true", help="Use short probe windows")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args()
    _setup_logging(args.verbose)

    try:
        _validate(args.fps, args.regions, args.server or "", args.custom)
        state = build_state(args)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    show_ui = not args.json and not args.simple
    needs_catalog = (
        state.bandwidth_test
        and not args.defaults
        and not state.custom_server
        and state.server_address == AUTO_SERVER
    )

    try:
        catalog = _load_catalog(args.services_file, args.services_url, needs_catalog)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
        console.print(f"[red]Error: could not load service catalog: {exc}[/red]")
        sys.exit(1)

    pipeline = SimulatedPipeline(catalog=catalog, encoder_ids=["obs_x264", *args.hardware], seeded=True)
    pipeline.configure_service(state.service_name, state.stream_key, state.server_address)

    engine = AutoConfigEngine(
        pipeline,
        store=ConfigStore(_settings_file(args)),
        state=state,
        timings=QUICK_TIMINGS if args.quick else None,
    )

    if show_ui:
        print_header()

    server_hint = "" if state.server_address == AUTO_SERVER else state.server_address
    try:
        result = run_wizard(
            engine, show_ui=show_ui, use_defaults=args.defaults, server_hint=server_hint,
        )
    except KeyboardInterrupt:
        engine.cancel()
        engine.wait_idle(5.0)
        console.print("\n[yellow]Auto-configuration cancelled by user[/yellow]")
        sys.exit(1)
    finally:
        engine.shutdown()

    errors = result.get("errors", [])
    if show_ui:
        print_results(engine.state, result.get("check_passed"))
    elif args.simple:
        print(format_text_result(engine.state))
        for label in errors:
            print(f"Error: {error_message(label)}", file=sys.stderr)

    if args.json:
        print(json.dumps(result, indent=2))

    if args.output:
        save_json(result, args.output)
        if not args.json:
            console.print(f"\n[green]Results saved to:[/green] {args.output}")

    if errors:
        sys.exit(1)


def _settings_file(args: argparse.Namespace) -> Optional[str]:
    return args.settings_file or load_config().get("settings_file") or None


if __name__ == "__main__":
    main()
