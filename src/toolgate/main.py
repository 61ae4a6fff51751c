"""
toolgate entry point.

This file handles startup concerns (arg-parsing, settings overrides, logging) and launches one of
the codelab steps.
"""

import argparse
import logging
import sys

from toolgate.common import (
    AnsiColors,
    colored_print,
)
from toolgate.config import settings
from toolgate.steps import (
    STEPS,
    get_step,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # SDK transports are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    """Command-line interface definition."""
    parser = argparse.ArgumentParser(
        description="Run a toolgate codelab step: chat, streaming, tools and approvals"
    )
    parser.add_argument(
        "--step",
        choices=list(STEPS),
        type=str.lower,
        default="advanced",
        help="Codelab step to run (default: %(default)s)",
    )
    parser.add_argument(
        "--backend",
        choices=["gemini", "anthropic", "openai", "ollama"],
        type=str.lower,
        default=settings.BACKEND,
        help="Chat backend (default from env: %(default)s)",
    )
    parser.add_argument("--model", default=settings.MODEL, help="Model name override")
    parser.add_argument(
        "--max-rounds",
        type=int,
        default=settings.MAX_ROUNDS,
        help="Maximum backend rounds per prompt (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for toolgate.

    Exits with status 1 on any unhandled failure (for example missing credentials) and 0
    otherwise.
    """
    if argv is None:
        argv = sys.argv[1:]

    args = build_parser().parse_args(argv)

    # Override settings with command-line arguments
    settings.LOG_LEVEL = args.log_level
    settings.BACKEND = args.backend
    settings.MODEL = args.model
    if args.max_rounds < 1:
        colored_print("❌ --max-rounds must be at least 1", AnsiColors.RED, file=sys.stderr)
        sys.exit(1)
    settings.MAX_ROUNDS = args.max_rounds

    _init_logging(settings.LOG_LEVEL)
    logger.info("Starting toolgate [%s step, %s backend]", args.step, args.backend)
    logger.debug(
        "Settings: %s",
        settings.model_dump(exclude={"GEMINI_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"}),
    )

    try:
        get_step(args.step)(backend=args.backend, model=args.model)
    except KeyboardInterrupt:
        colored_print("\n👋 Interrupted", AnsiColors.YELLOW)
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Unhandled failure", exc_info=True)
        colored_print(f"❌ Error: {exc}", AnsiColors.RED, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
