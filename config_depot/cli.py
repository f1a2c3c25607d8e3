import argparse
import json
import logging
import sys
from typing import Any

from config_depot.errors import ConfigStoreError, InvalidCommitRef
from config_depot.service import ConfigService, create_service

logger = logging.getLogger(__name__)

EXIT_ERROR = 1
EXIT_NOT_FOUND = 2


def _print(value: Any) -> None:
    print(json.dumps(value, indent=2))
    sys.stdout.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="config-depot", description="Versioned configuration documents"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    document = commands.add_parser("document", help="Show a document at a commit")
    document.add_argument("environment")
    document.add_argument("application")
    document.add_argument("category")
    document.add_argument("--commit", default="HEAD", help="Hash, HEAD, HEAD~ or HEAD~N")

    commits = commands.add_parser("commits", help="List the most recent commits")
    commits.add_argument("environment")
    commits.add_argument("application")

    repositories = commands.add_parser("repositories", help="List known repositories")
    repositories.add_argument("--environment", default=None)

    create = commands.add_parser("create", help="Bootstrap repositories for an application")
    create.add_argument("application")
    create.add_argument(
        "--environment",
        default=None,
        help="Single environment (default: every default environment)",
    )

    commands.add_parser("health", help="Report backend health")
    return parser


def run(args: argparse.Namespace, service: ConfigService) -> int:
    if args.command == "document":
        result = service.get_document(
            args.environment, args.application, args.commit, args.category
        )
        if result is None:
            print(f"No {args.category} found", file=sys.stderr)
            return EXIT_NOT_FOUND
        _print(result)
    elif args.command == "commits":
        _print(service.list_commits(args.environment, args.application))
    elif args.command == "repositories":
        with service:
            _print(service.list_repositories(args.environment))
    elif args.command == "create":
        if args.environment:
            _print(service.create_application_environment(args.application, args.environment))
        else:
            _print(service.create_application(args.application))
    elif args.command == "health":
        with service:
            _print(
                {
                    "backend": service.is_backend_healthy(),
                    "repositories": service.are_repositories_cached(),
                }
            )
    return 0


def main(argv: list[str] | None = None, service: ConfigService | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        service = service or create_service()
        return run(args, service)
    except InvalidCommitRef as e:
        print(str(e), file=sys.stderr)
        return EXIT_ERROR
    except (ConfigStoreError, ValueError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
