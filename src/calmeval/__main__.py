from __future__ import annotations

import argparse
import asyncio
import contextlib
import sys
from typing import Sequence, TextIO

from loguru import logger
from tqdm import tqdm

from calmeval.core.engine import ExpressionPipeline, _log_summary, _setup_logger, evaluate_stream
from calmeval.core.io import TERMINATOR, aread_expressions, format_outcome
from calmeval.core.models import PipelineConfig, RateLimitPolicy
from calmeval.core.request import Request
from calmeval.evaluators import (
    MATHJS_API_URL,
    BaseEvaluator,
    available_evaluators,
    get_evaluator,
)


def build_parser() -> argparse.ArgumentParser:
    defaults = PipelineConfig()
    parser = argparse.ArgumentParser(
        prog="calmeval",
        description=(
            "Evaluate math expressions, one per line, through a rate-limited web API. "
            f"Input stops at a line reading '{TERMINATOR}'."
        ),
    )
    parser.add_argument("-i", "--input", help="Read expressions from this file instead of stdin")
    parser.add_argument("-o", "--output", help="Write results to this file instead of stdout")

    service = parser.add_argument_group("evaluator")
    service.add_argument("--evaluator", default="mathjs", choices=available_evaluators())
    service.add_argument("--url", default=MATHJS_API_URL, help="Evaluator endpoint")
    service.add_argument("--precision", type=int, help="Significant digits in results")

    limits = parser.add_argument_group("admission control")
    limits.add_argument(
        "--quota",
        type=float,
        default=defaults.external_quota_per_second,
        help="Calls per second the service allows (default: %(default)s)",
    )
    limits.add_argument(
        "--peak-throughput",
        type=float,
        default=defaults.desired_peak_throughput_per_second,
        help="Desired expressions per second; caps the worker count (default: %(default)s)",
    )
    limits.add_argument(
        "--queue-capacity",
        type=int,
        default=defaults.admission_queue_capacity,
        help="Pending expressions before input is paused (default: %(default)s)",
    )
    limits.add_argument(
        "--call-timeout",
        type=float,
        default=defaults.call_timeout,
        help="Seconds per API call (default: %(default)s)",
    )
    limits.add_argument(
        "--policy",
        choices=[policy.value for policy in RateLimitPolicy],
        default=defaults.rate_limit_policy.value,
        help="What to do when the rate limiter denies admission (default: %(default)s)",
    )
    limits.add_argument(
        "--max-retries",
        type=int,
        default=defaults.max_retries_on_rate_limit,
        help="Requeue attempts before giving up (default: %(default)s)",
    )
    limits.add_argument(
        "--grace",
        type=float,
        default=defaults.shutdown_grace_seconds,
        help="Seconds to let in-flight calls finish on shutdown (default: %(default)s)",
    )
    limits.add_argument(
        "--cooldown",
        type=float,
        default=defaults.rate_limit_cooldown_seconds,
        help="Seconds to pause admissions after the service answers 429 (default: %(default)s)",
    )

    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every request")
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        external_quota_per_second=args.quota,
        desired_peak_throughput_per_second=args.peak_throughput,
        admission_queue_capacity=args.queue_capacity,
        call_timeout=args.call_timeout,
        max_retries_on_rate_limit=args.max_retries,
        rate_limit_policy=RateLimitPolicy(args.policy),
        shutdown_grace_seconds=args.grace,
        rate_limit_cooldown_seconds=args.cooldown,
    )


def evaluator_from_args(args: argparse.Namespace) -> BaseEvaluator:
    kwargs: dict[str, object] = {"request_url": args.url}
    if args.precision is not None:
        kwargs["precision"] = args.precision
    return get_evaluator(args.evaluator, **kwargs)


async def run(
    evaluator: BaseEvaluator,
    config: PipelineConfig,
    source: TextIO,
    out: TextIO,
    show_progress: bool = True,
) -> int:
    """Evaluate everything on ``source``; returns the process exit code."""

    def emit(request: Request) -> None:
        line = format_outcome(request)
        if out is sys.stdout:
            tqdm.write(line, file=out)
        else:
            out.write(line + "\n")
            out.flush()

    pbar = tqdm(desc="Evaluated expressions", unit="expr", disable=not show_progress)
    pipeline = ExpressionPipeline(evaluator, config, progress=pbar)
    loop = asyncio.get_running_loop()
    start_time = loop.time()
    try:
        await evaluate_stream(pipeline, aread_expressions(source), emit)
    finally:
        pbar.close()
    _log_summary(pipeline.status, loop.time() - start_time, "Results printed")
    return 0 if pipeline.status.num_tasks_failed == 0 else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logger(10 if args.verbose else 20)

    try:
        evaluator = evaluator_from_args(args)
        config = config_from_args(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    with contextlib.ExitStack() as stack:
        try:
            source = (
                stack.enter_context(open(args.input, encoding="utf-8")) if args.input else sys.stdin
            )
            out = (
                stack.enter_context(open(args.output, mode="w", encoding="utf-8"))
                if args.output
                else sys.stdout
            )
        except OSError as e:
            logger.error(f"Cannot open file: {e}")
            return 2

        if source is sys.stdin and sys.stdin.isatty():
            logger.info(f"Enter mathematical expressions (type '{TERMINATOR}' to finish):")
        try:
            return asyncio.run(run(evaluator, config, source, out, not args.no_progress))
        except KeyboardInterrupt:
            logger.warning("Interrupted")
            return 130


if __name__ == "__main__":
    sys.exit(main())
