# =============================================================================
# src/cli/evaluate.py - CLI Evaluate Command (Ground-Truth Scoring)
# =============================================================================
#
# Runs the analysis pipeline against the packaged ground-truth corpus and
# prints the evaluation report.  This bypasses the API server entirely:
# the harness, pipeline and vision client are assembled in-process via
# src.main.build_components().
#
# Typical usage:
#   python -m src.cli.evaluate smoke                 # Five-item smoke run
#   python -m src.cli.evaluate full --concurrency 5  # Whole corpus
#   python -m src.cli.evaluate full --domain ceramics --difficulty hard
#   python -m src.cli.evaluate single furn-001 --json
#
# Output modes:
#   - Text (default): the fixed-width report from evaluation_report.py
#   - JSON (--json): the EvaluationReport / ScoreResult model dump
#
# Ctrl-C during a batch stops workers from taking new items; items in
# flight finish and the partial report (cancelled=true) is still printed.
# =============================================================================

"""Standalone CLI for scoring the pipeline against ground truth.

Usage::

    python -m src.cli.evaluate smoke
    python -m src.cli.evaluate full --json --output report.json
    python -m src.cli.evaluate single furn-001
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from src.models.analysis import DomainExpert
from src.models.evaluation import Difficulty, ScoreResult
from src.utils.errors import VintageVisionError
from src.utils.logging import configure_logging

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _format_single(result: ScoreResult) -> str:
    """Human-readable summary of one scored item."""
    scores = result.component_scores
    lines = [
        f"Item:        {result.item_id} ({result.domain.value}, {result.difficulty.value})",
        f"Score:       {result.overall_score:.1f}",
        f"Produced:    {result.produced_name or '-'}",
        (
            f"Components:  name {scores.name:.2f}  maker {scores.maker:.2f}  "
            f"era {scores.era:.2f}  value {scores.value:.2f}"
        ),
    ]
    if result.failures:
        lines.append(f"Failures:    {', '.join(result.failures)}")
    if result.error:
        lines.append(f"Error:       {result.error}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    """Turn SIGINT into a cooperative cancel for the running batch."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        # Windows event loops: Ctrl-C falls back to KeyboardInterrupt.
        return


async def _run(args: argparse.Namespace, quiet: bool) -> int:
    # Deferred import: src.main bootstraps settings, config and the
    # vision client; argument errors should not pay for that.
    from src.config.loader import load_config
    from src.config.settings import Settings
    from src.main import build_components
    from src.services.evaluation_report import format_report
    from src.services.ground_truth import filter_items, load_ground_truth

    # src.main configures logging for the server on import; restore the
    # CLI rendering before any logger is first used (and cached).
    configure_logging(quiet=quiet)

    overrides = {"evaluation_concurrency": args.concurrency} if args.concurrency else {}
    app_settings = Settings(**overrides)
    try:
        components = build_components(app_settings, load_config(settings=app_settings))
    except VintageVisionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    harness = components["evaluation_harness"]
    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)

    try:
        if args.command == "single":
            result = await harness.run_by_id(args.item_id)
            text = result.model_dump_json(indent=2) if args.json_output else _format_single(result)
        else:
            if args.command == "smoke":
                report = await harness.run_smoke(cancel_event=cancel_event)
            elif args.ground_truth or args.domain or args.difficulty:
                corpus = load_ground_truth(args.ground_truth)
                items = filter_items(
                    corpus,
                    domain=DomainExpert(args.domain) if args.domain else None,
                    difficulty=Difficulty(args.difficulty) if args.difficulty else None,
                )
                report = await harness.run_full(items, cancel_event=cancel_event)
            else:
                report = await harness.run_full(cancel_event=cancel_event)
            text = report.model_dump_json(indent=2) if args.json_output else format_report(report)
    except VintageVisionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await components["http_client"].aclose()

    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Results written to: {args.output}", file=sys.stderr)
    else:
        print(text)
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the evaluate CLI.

    Sub-commands:
      smoke            - the fixed five-item sample
      full             - the whole corpus, optionally filtered
      single <item_id> - one packaged item
    """
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.evaluate",
        description="Score the identification pipeline against ground-truth items.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output results as JSON instead of the text report.",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Write results to a file instead of stdout.",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress log output below WARNING (implied by --json).",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Override the number of evaluation workers.",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("smoke", help="Evaluate the five-item smoke sample.")

    full = sub.add_parser("full", help="Evaluate the whole corpus.")
    full.add_argument(
        "--ground-truth",
        type=str,
        default=None,
        help="Alternative ground-truth YAML file.",
    )
    full.add_argument(
        "--domain",
        choices=[d.value for d in DomainExpert],
        default=None,
        help="Only items whose expected domain matches.",
    )
    full.add_argument(
        "--difficulty",
        choices=[d.value for d in Difficulty],
        default=None,
        help="Only items of this difficulty.",
    )

    single = sub.add_parser("single", help="Evaluate one ground-truth item.")
    single.add_argument("item_id", type=str, help="Ground-truth item id, e.g. furn-001.")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point; returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # JSON mode implies quiet so stdout holds only the report.
    quiet = args.quiet or args.json_output
    if args.concurrency is not None and args.concurrency < 1:
        parser.error("--concurrency must be at least 1")

    return asyncio.run(_run(args, quiet))


if __name__ == "__main__":
    sys.exit(main())
