from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import os
from pathlib import Path

from remotetask.api.report import build_run_report
from remotetask.core.config_file import credential_from_env, load_run_config
from remotetask.core.models import CancelMode, RunConfig, SessionScope, StopReason
from remotetask.core.scheduler import Scheduler
from remotetask.core.timeparse import parse_duration_to_ms
from remotetask.exceptions import ConfigurationError
from remotetask.logger import configure_logging
from remotetask.logger import session_logger as logger
from remotetask.scenarios.algo_task import build_algo_task_config


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="remotetask timed A/B HTTP request driver")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a run configuration JSON file",
    )
    parser.add_argument(
        "--scenario",
        type=str,
        choices=["algo-task"],
        default=None,
        help="Built-in scenario to run instead of --config",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Device host[:port] for --scenario algo-task",
    )
    parser.add_argument(
        "--scheme",
        type=str,
        choices=["http", "https"],
        default="https",
        help="URL scheme for --scenario algo-task",
    )
    parser.add_argument(
        "--max-requests",
        type=int,
        default=None,
        help="Number of A/B cycles to run (unbounded when omitted with --config)",
    )
    parser.add_argument(
        "--a-to-b",
        type=str,
        default=None,
        help="Offset from A's dispatch to B's dispatch (e.g. 500ms, 1s)",
    )
    parser.add_argument(
        "--a-to-a",
        type=str,
        default=None,
        help="Minimum spacing between successive A dispatches (e.g. 3s)",
    )
    parser.add_argument(
        "--session-scope",
        type=str,
        choices=[s.value for s in SessionScope],
        default=None,
        help="Share one authenticated session per cycle or per run",
    )
    parser.add_argument(
        "--cancel-mode",
        type=str,
        choices=[m.value for m in CancelMode],
        default=None,
        help="On stop: drain in-flight requests or abort them",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("REMOTETASK_LOG_LEVEL", "INFO"),
        help="Log level (env: REMOTETASK_LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["console", "json"],
        default=os.environ.get("REMOTETASK_LOG_FORMAT", "console"),
        help="Log rendering (env: REMOTETASK_LOG_FORMAT)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Write summary report JSON to this path",
    )
    return parser


def _resolve_config(args) -> RunConfig:
    if args.config:
        config = load_run_config(args.config)
    else:
        config = build_algo_task_config(host=args.host, scheme=args.scheme)

    overrides: dict[str, object] = {}
    if args.max_requests is not None:
        overrides["max_requests"] = args.max_requests
    if args.a_to_b is not None:
        overrides["delay_between_a_and_b_ms"] = _parse_duration("a_to_b", args.a_to_b)
    if args.a_to_a is not None:
        overrides["delay_between_a_requests_ms"] = _parse_duration("a_to_a", args.a_to_a)
    if args.session_scope is not None:
        overrides["session_scope"] = SessionScope(args.session_scope)
    if args.cancel_mode is not None:
        overrides["cancel_mode"] = CancelMode(args.cancel_mode)

    overrides["digest_auth"] = credential_from_env(config.digest_auth)
    return dataclasses.replace(config, **overrides)


def _parse_duration(key: str, raw: str) -> int:
    try:
        return parse_duration_to_ms(raw)
    except ValueError as exc:
        raise ConfigurationError(str(exc), details={"key": key, "value": raw}) from exc


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level, json_format=args.log_format == "json")

    if bool(args.config) == bool(args.scenario):
        logger.error(
            "run.invalid_arguments",
            cause="config_and_scenario",
            recovery="Provide exactly one of --config or --scenario",
        )
        return 2

    if args.scenario == "algo-task" and not args.host:
        logger.error(
            "run.missing_host",
            recovery="Provide --host for scenario algo-task",
        )
        return 2

    if args.max_requests is not None and args.max_requests < 0:
        logger.error(
            "run.invalid_max_requests",
            provided=args.max_requests,
            recovery="Provide --max-requests >= 0",
        )
        return 2

    try:
        config = _resolve_config(args)
    except ConfigurationError as exc:
        logger.error("run.invalid_config", error=str(exc), details=exc.details)
        return 2

    scheduler = Scheduler(config, logger=logger)
    try:
        result = asyncio.run(scheduler.run_until_signalled())
    except ConfigurationError as exc:
        logger.error("run.invalid_config", error=str(exc), details=exc.details)
        return 2

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = build_run_report(config, result)
        output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        logger.info(
            "run.report_written",
            path=str(output_path),
        )

    if result.stop_reason == StopReason.CLIENT_CONSTRUCTION_FAILED:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
