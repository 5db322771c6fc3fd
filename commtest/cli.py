import argparse
import asyncio
import shlex
import sys
import time
from typing import List, Optional

from commtest.config import Settings, settings as default_settings
from commtest.log import setup_logging
from commtest.scenario import ScenarioDriver


def stub_peer_command() -> List[str]:
    return [sys.executable, "-m", "commtest.stub_peer"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="commtest",
        description="Run the buyer/seller communication test against two peer processes",
    )
    parser.add_argument("--peer-command", help="Command that starts a peer, e.g. 'go run .'")
    parser.add_argument("--workdir", help="Working directory for the peers")
    parser.add_argument("--stub-peer", action="store_true",
                        help="Run against the bundled stub peer instead of the real binary")
    parser.add_argument("--derive-keys", action="store_true",
                        help="Derive recipients' public keys from their env files")
    parser.add_argument("--strict", action="store_true", help="Fail on error replies from the peers")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", help="Also write the log to this file")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("--ready-timeout", type=float)
    parser.add_argument("--connect-timeout", type=float)
    parser.add_argument("--response-timeout", type=float)
    parser.add_argument("--settle-delay", type=float,
                        help="Override every fixed wait between steps (seconds)")
    return parser


def apply_overrides(base: Settings, args: argparse.Namespace) -> Settings:
    update = {}
    if args.stub_peer:
        update["PEER_COMMAND"] = stub_peer_command()
        update["HOST"] = "127.0.0.1"
    elif args.peer_command:
        update["PEER_COMMAND"] = shlex.split(args.peer_command)
    if args.workdir:
        update["PEER_WORKDIR"] = args.workdir
    if args.strict:
        update["STRICT"] = True
    if args.log_level:
        update["LOG_LEVEL"] = args.log_level
    if args.log_file:
        update["LOG_FILE"] = args.log_file
    if args.no_color:
        update["COLOR"] = False
    if args.ready_timeout is not None:
        update["READY_TIMEOUT"] = args.ready_timeout
    if args.connect_timeout is not None:
        update["CONNECT_TIMEOUT"] = args.connect_timeout
    if args.response_timeout is not None:
        update["RESPONSE_TIMEOUT"] = args.response_timeout
    if args.settle_delay is not None:
        for name in ("POST_READY_DELAY", "MESH_SETTLE_DELAY", "MESSAGE_SETTLE_DELAY"):
            update[name] = args.settle_delay
    return base.model_copy(update=update)


def run(settings: Settings, derive_keys: bool = False) -> int:
    """Run the scenario with cleanup handlers installed; returns the exit code"""
    driver = ScenarioDriver(settings, derive_keys=derive_keys)
    with driver.supervisor:
        outcome = asyncio.run(driver.run())
    # Let in-flight output from the peers and the log handlers flush
    time.sleep(settings.EXIT_GRACE)
    return outcome.exit_code


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)
    settings = apply_overrides(default_settings, args)
    setup_logging(settings)
    sys.exit(run(settings, derive_keys=args.derive_keys))


if __name__ == "__main__":
    main()
