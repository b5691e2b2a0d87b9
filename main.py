"""Command line entrypoint."""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Sequence

import protocol
from config import DictationConfig, JsonConfigStore
from daemon import DictationDaemon, send_request
from errors import NO_ACTIVE_SESSION, SESSION_BUSY, ModelLoadError
from log_setup import setup_logging
from session_marker import SessionMarkerStore, is_process_alive

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SESSION_BUSY = 2
EXIT_NO_ACTIVE_SESSION = 3

EXIT_CODES = {SESSION_BUSY: EXIT_SESSION_BUSY, NO_ACTIVE_SESSION: EXIT_NO_ACTIVE_SESSION}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dev-voice", description="Local voice dictation")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--config", type=Path, default=None, help="config file path")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("daemon", help="load models and wait for start/stop requests")

    start = sub.add_parser("start", help="start recording, or stop if already recording")
    start.add_argument("-c", "--clipboard", action="store_true", help="copy to clipboard instead of typing")
    start.add_argument("-d", "--duration", type=float, default=0.0, help="recording limit in seconds (0 = config timeout)")

    sub.add_parser("stop", help="stop the running recording")
    sub.add_parser("status", help="print the session state as JSON")

    cfg = sub.add_parser("config", help="show or reset configuration")
    cfg.add_argument("--path", action="store_true", help="print config file path")
    cfg.add_argument("--reset", action="store_true", help="reset to default configuration")
    return parser


def cmd_daemon(config: DictationConfig) -> int:
    try:
        daemon = DictationDaemon.from_config(config)
    except ModelLoadError as exc:
        logger.error("Cannot start daemon: %s", exc)
        return EXIT_ERROR
    daemon.install_signal_handlers()
    daemon.serve_forever()
    return EXIT_OK


def cmd_start(config: DictationConfig, clipboard: bool, duration: float) -> int:
    request = protocol.StartRecording(max_duration=duration, mode="clipboard" if clipboard else None)
    try:
        response = send_request(config.socket_path, request)
    except OSError as exc:
        print(f"Daemon is not running ({exc}). Start it with: dev-voice daemon", file=sys.stderr)
        return EXIT_ERROR
    return _report(response)


def cmd_stop(config: DictationConfig) -> int:
    # Stop travels as SIGUSR1 so it behaves exactly like an OS-delivered stop.
    marker = SessionMarkerStore(Path(config.marker_path)).read()
    if marker is None or marker.state != "recording" or not is_process_alive(marker.pid):
        print("No recording in progress")
        return EXIT_NO_ACTIVE_SESSION
    logger.info("Stopping recording (PID: %d)", marker.pid)
    try:
        os.kill(marker.pid, signal.SIGUSR1)
    except OSError as exc:
        print(f"Could not signal process {marker.pid}: {exc}", file=sys.stderr)
        return EXIT_ERROR
    print("Stop signal sent to recording process")
    return EXIT_OK


def cmd_status(config: DictationConfig) -> int:
    marker = SessionMarkerStore(Path(config.marker_path)).read()
    if marker is None or not is_process_alive(marker.pid):
        status = {"state": "idle", "text": "", "class": "idle"}
    else:
        status = {"state": marker.state, "text": marker.state, "class": marker.state, "session_id": marker.session_id}
    print(json.dumps(status))
    return EXIT_OK


def cmd_config(store: JsonConfigStore, show_path: bool, reset: bool) -> int:
    if reset:
        store.reset()
        print("Configuration reset to defaults")
        return EXIT_OK
    if show_path:
        print(store.path)
        return EXIT_OK
    print(json.dumps(asdict(store.load()), indent=2))
    return EXIT_OK


def _report(response: protocol.Response) -> int:
    if isinstance(response, protocol.Recording):
        print("Recording started. Run 'dev-voice start' again or 'dev-voice stop' to finish.")
        return EXIT_OK
    if isinstance(response, protocol.Ok):
        print("Stopping recording...")
        return EXIT_OK
    if isinstance(response, protocol.Error):
        print(response.message, file=sys.stderr)
        return EXIT_CODES.get(response.code, EXIT_ERROR)
    print(f"Unexpected daemon response: {response.type}", file=sys.stderr)
    return EXIT_ERROR


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose, include_console=args.command == "daemon" or args.verbose)
    store = JsonConfigStore(args.config)
    if args.command == "config":
        return cmd_config(store, args.path, args.reset)
    config = store.load()
    if args.command == "daemon":
        return cmd_daemon(config)
    if args.command == "start":
        return cmd_start(config, args.clipboard, args.duration)
    if args.command == "stop":
        return cmd_stop(config)
    return cmd_status(config)


if __name__ == "__main__":
    raise SystemExit(main())
