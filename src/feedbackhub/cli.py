from __future__ import annotations

import argparse
import asyncio
from dataclasses import asdict
import json
from pathlib import Path
import sys

from feedbackhub.catalog import EntityCatalog, FileEntityCatalog
from feedbackhub.config import AppConfig, load_config
from feedbackhub.models import FeedbackRecord
from feedbackhub.observability import configure_logging
from feedbackhub.service import FeedbackService, FeedbackSubmission
from feedbackhub.store import SqliteFeedbackStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedbackhub")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--config", type=Path, default=Path("feedbackhub.toml"))
        sub.add_argument(
            "-v",
            "--verbose",
            nargs="?",
            const="high",
            default=None,
            choices=("low", "high"),
            help="Log to stderr and <base_dir>/logs; 'low' keeps only lifecycle events",
        )

    init_parser = subparsers.add_parser("init", help="Initialize the feedback database")
    add_common(init_parser)

    submit_parser = subparsers.add_parser(
        "submit", help="Store feedback and open a Jira ticket when the entity asks for one"
    )
    add_common(submit_parser)
    submit_parser.add_argument("--entity", required=True, help="Catalog entity ref")
    submit_parser.add_argument("--summary", required=True)
    submit_parser.add_argument("--description", default="")
    submit_parser.add_argument("--type", dest="feedback_type", default="FEEDBACK")
    submit_parser.add_argument("--tag", default="")
    submit_parser.add_argument("--created-by", default="user:default/guest")
    submit_parser.add_argument("--reporter-email", default=None)
    submit_parser.add_argument("--json", action="store_true", help="Print feedback as JSON")

    list_parser = subparsers.add_parser("list", help="List stored feedback, newest first")
    add_common(list_parser)
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--page-size", type=int, default=10)
    list_parser.add_argument("--entity", default=None, help="Only feedback for this entity ref")
    list_parser.add_argument("--query", default=None, help="Search summary and description")
    list_parser.add_argument("--json", action="store_true", help="Print the page as JSON")

    show_parser = subparsers.add_parser("show", help="Show one feedback record")
    add_common(show_parser)
    show_parser.add_argument("feedback_id")

    delete_parser = subparsers.add_parser("delete", help="Delete one feedback record")
    add_common(delete_parser)
    delete_parser.add_argument("feedback_id")

    ticket_parser = subparsers.add_parser(
        "ticket", help="Show Jira status for the ticket linked to a feedback record"
    )
    add_common(ticket_parser)
    ticket_parser.add_argument("feedback_id")

    return parser


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)
    configure_logging(args.verbose, log_dir=config.runtime.base_dir / "logs")

    if args.command == "init":
        _cmd_init(config)
        return
    if args.command in {"submit", "list", "show", "delete", "ticket"}:
        asyncio.run(_run_service_command(config, args))
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_init(config: AppConfig) -> None:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    SqliteFeedbackStore(config.runtime.db_path)
    print(f"Initialized feedbackhub base dir: {config.runtime.base_dir}")
    print(f"Database: {config.runtime.db_path}")


async def _run_service_command(config: AppConfig, args: argparse.Namespace) -> None:
    service = _build_service(config)

    if args.command == "submit":
        result = await service.submit(
            FeedbackSubmission(
                summary=args.summary,
                description=args.description,
                feedback_type=args.feedback_type,
                project_id=args.entity,
                created_by=args.created_by,
                tag=args.tag,
                reporter_email=args.reporter_email,
            )
        )
        if args.json:
            print(json.dumps(asdict(result.feedback), sort_keys=True))
        else:
            _print_record(result.feedback)
        if result.orphaned_ticket_url is not None:
            print(
                f"Jira ticket {result.orphaned_ticket_url} was created but could not be "
                "linked to this feedback; link it manually.",
                file=sys.stderr,
            )
        return

    if args.command == "list":
        page = await service.list_feedback(
            page=args.page,
            page_size=args.page_size,
            project_id=args.entity,
            query=args.query,
        )
        if args.json:
            print(
                json.dumps(
                    {
                        "items": [asdict(item) for item in page.items],
                        "total_count": page.total_count,
                        "current_page": page.current_page,
                        "page_size": page.page_size,
                    },
                    sort_keys=True,
                )
            )
            return
        print(f"Page {page.current_page} ({len(page.items)} of {page.total_count})")
        for item in page.items:
            ticket = item.ticket_url or "-"
            print(f"{item.feedback_id}\t{item.feedback_type}\t{item.summary}\t{ticket}")
        return

    if args.command == "show":
        _print_record(await service.get(args.feedback_id))
        return

    if args.command == "delete":
        await service.delete(args.feedback_id)
        print(f"Deleted feedback {args.feedback_id}")
        return

    details = await service.get_ticket_details(args.feedback_id)
    if details is None:
        print(f"No Jira ticket linked to feedback {args.feedback_id}")
        return
    print(f"Ticket: {details.key}")
    print(f"Status: {details.status}")
    print(f"Assignee: {details.assignee or 'Unassigned'}")
    if details.avatar_url:
        print(f"Avatar: {details.avatar_url}")


def _build_service(config: AppConfig) -> FeedbackService:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    return FeedbackService(
        config,
        store=SqliteFeedbackStore(config.runtime.db_path),
        catalog=_build_catalog(config),
    )


def _build_catalog(config: AppConfig) -> EntityCatalog:
    if config.catalog_path is None:
        return FileEntityCatalog({})
    return FileEntityCatalog.load(config.catalog_path)


def _print_record(record: FeedbackRecord) -> None:
    print(f"Feedback: {record.feedback_id}")
    print(f"Entity: {record.project_id}")
    print(f"Type: {record.feedback_type}")
    print(f"Summary: {record.summary}")
    if record.tag:
        print(f"Tag: {record.tag}")
    print(f"Ticket: {record.ticket_url or '-'}")
