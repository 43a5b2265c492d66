"""Command-line interface for the abstract screening pipeline.

Suited to timers and cron jobs: ``run`` performs exactly one invocation
(or ``--loop N`` of them) and exits.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

from abstract_screener.errors import ScreeningError, SessionNotFoundError
from abstract_screener.llm import LLMProviderError
from abstract_screener.models import EnqueueRequest
from abstract_screener.storage import Database, ScreeningRepository

from .config import PipelineConfiguration
from .enqueue import SessionEnqueuer
from .invocation import InvocationHandler, PipelineContext
from .reaper import StuckSessionReaper
from .state_manager import SessionStateMachine

ContextFactory = Callable[[PipelineConfiguration], PipelineContext]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="abstract-screener",
        description="Screen article abstracts against inclusion criteria with an LLM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the tables, queue a session and process one batch
  python -m abstract_screener init-db
  python -m abstract_screener enqueue 3f0c...
  python -m abstract_screener run

  # Keep going for up to 20 invocations
  python -m abstract_screener run --loop 20

Environment Variables:
  SCREENING_DATABASE_URL           Database URL (default: sqlite:///screening.db)
  SCREENING_BATCH_SIZE             Override the stored batch size
  SCREENING_SESSION_LIMIT          Queued sessions to try per invocation (default: 1)
  SCREENING_STUCK_TIMEOUT_MINUTES  Minutes before a running session is recovered (default: 30)
  SCREENING_MAX_WORKERS            Articles evaluated concurrently (default: 1)
  LLM_PRIMARY                      Primary LLM provider (default: openai)
  LLM_FALLBACK                     Fallback providers (comma-separated)
        """,
    )
    parser.add_argument("--database-url", help="Database URL (default: SCREENING_DATABASE_URL)")
    parser.add_argument("--batch-size", type=int, help="Articles per invocation")
    parser.add_argument("--max-workers", type=int, help="Articles evaluated concurrently")
    parser.add_argument("--stuck-timeout", type=int, help="Stuck-session timeout in minutes")
    parser.add_argument("--provider", help="Primary LLM provider (default: openai or LLM_PRIMARY)")
    parser.add_argument("--dotenv", type=Path, help="Path to .env file for API keys")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one invocation: recover, select, process a batch")
    run_parser.add_argument(
        "--loop",
        type=int,
        default=1,
        metavar="N",
        help="Run up to N invocations, stopping early when the queue is empty",
    )

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate a single article now")
    evaluate_parser.add_argument("--article-id", required=True)
    evaluate_parser.add_argument("--title", required=True)
    evaluate_parser.add_argument("--abstract")
    evaluate_parser.add_argument(
        "--criterion",
        action="append",
        dest="criteria",
        required=True,
        help="Inclusion criterion (repeat for several)",
    )

    subparsers.add_parser("reap", help="Recover sessions stuck in the running state")

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a session for evaluation")
    enqueue_parser.add_argument("session_id")
    enqueue_parser.add_argument(
        "--article-ids",
        nargs="+",
        help="Only flag these articles (default: every article in the session)",
    )

    subparsers.add_parser("init-db", help="Create the database tables if they are missing")

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP API with uvicorn")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)

    return parser


def _configuration(parsed: argparse.Namespace) -> PipelineConfiguration:
    return PipelineConfiguration.from_env(
        dotenv_path=parsed.dotenv,
        database_url=parsed.database_url,
        batch_size=parsed.batch_size,
        max_workers=parsed.max_workers,
        stuck_timeout_minutes=parsed.stuck_timeout,
        llm_primary=parsed.provider,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _run(handler: InvocationHandler, loop: int) -> int:
    if loop < 1:
        print("--loop must be at least 1", file=sys.stderr)
        return 1
    for index in range(loop):
        summary = handler.run_cycle()
        _print_json(summary.to_payload())
        if summary.session_id is None and not summary.more_sessions_queued:
            if index + 1 < loop:
                print("Queue is empty; stopping.")
            break
    return 0


def main(args: list[str] | None = None, *, context_factory: ContextFactory | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])
        context_factory: Builds the pipeline for ``run`` and ``evaluate``;
            defaults to :meth:`PipelineContext.build`.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parsed = build_parser().parse_args(args)
    logging.basicConfig(
        level=getattr(logging, parsed.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _configuration(parsed)

        if parsed.command == "init-db":
            Database(config.database_url).init_db()
            print(f"Database ready at {config.database_url}")
            return 0

        if parsed.command == "reap":
            repository = ScreeningRepository(Database(config.database_url))
            reaper = StuckSessionReaper(repository, timeout_minutes=config.stuck_timeout_minutes)
            recovered = reaper.recover_stuck_sessions()
            _print_json({"recoveredSessions": recovered})
            return 0

        if parsed.command == "enqueue":
            repository = ScreeningRepository(Database(config.database_url))
            enqueuer = SessionEnqueuer(repository, SessionStateMachine(repository))
            try:
                result = enqueuer.enqueue(
                    EnqueueRequest(session_id=parsed.session_id, article_ids=parsed.article_ids)
                )
            except SessionNotFoundError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                return 1
            _print_json(result.to_payload())
            return 0

        if parsed.command == "serve":
            from .server import run as run_server

            run_server(parsed.host, parsed.port, config=config)
            return 0

        factory = context_factory or PipelineContext.build
        handler = InvocationHandler(factory(config))

        if parsed.command == "run":
            return _run(handler, parsed.loop)

        if parsed.command == "evaluate":
            status_code, payload = handler.handle(
                {
                    "articleId": parsed.article_id,
                    "title": parsed.title,
                    "abstract": parsed.abstract,
                    "criteria": parsed.criteria,
                }
            )
            _print_json(payload)
            return 0 if status_code == 200 else 1

    except (ScreeningError, LLMProviderError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    print(f"Unknown command: {parsed.command}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
