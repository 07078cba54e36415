import argparse
import sys

import structlog

from .config import load_settings
from .errors import PublishError
from .github.client import GitHubClient
from .logging import setup_logging
from .pipeline.orchestrator import run_snapshot

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Snapshot release download counts and publish them to a branch of the repository."
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        settings = load_settings()
        token = settings.resolved_token
        if not token:
            raise PublishError(
                "A token is required. Pass with.token: ${{ secrets.GITHUB_TOKEN }} (recommended), or set env.GITHUB_TOKEN."
            )
        with GitHubClient(token, timeout=settings.http_timeout_seconds) as client:
            run_snapshot(settings, client)
    except Exception as e:
        log.error("snapshot_aborted", err=str(e))
        # workflow annotation
        print(f"::error::{e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
