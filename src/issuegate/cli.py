"""issuegate CLI.

Subcommands:
  serve         -> run the gateway under uvicorn
  board         -> print the Kanban board built from live issues
  check-config  -> validate configuration and print effective settings
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from issuegate.board import Board
from issuegate.config import CONFIG_DEFAULT, ConfigError, GatewayConfig, load_config
from issuegate.errors import GatewayError
from issuegate.github_rest import GitHubRestClient
from issuegate.logging import configure_logging
from issuegate.mapping import Column, display_labels
from issuegate.models import IssueFilter

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(prog="issuegate", description="Bug tracker gateway for GitHub issues")
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    srv = sub.add_parser("serve", help="Run the gateway HTTP server (uvicorn)")
    srv.add_argument("--config", default=CONFIG_DEFAULT)
    srv.add_argument("--host", help="Bind address (default from config)")
    srv.add_argument("--port", type=int, help="Bind port (default from config)")

    brd = sub.add_parser("board", help="Print issues grouped by board column")
    brd.add_argument("--config", default=CONFIG_DEFAULT)
    brd.add_argument("--state", default="all", choices=["open", "closed", "all"])
    brd.add_argument("--search", help="Case-insensitive text filter (title, body, number, labels)")
    brd.add_argument("--severity", default="all")
    brd.add_argument("--category", default="all")
    brd.add_argument("--json", action="store_true", help="Emit the board as JSON")

    chk = sub.add_parser("check-config", help="Validate configuration and print effective settings")
    chk.add_argument("--config", default=CONFIG_DEFAULT)
    return p


def _cmd_serve(cfg: GatewayConfig, args: argparse.Namespace) -> int:
    import uvicorn  # noqa: PLC0415

    from issuegate.asgi import create_app  # noqa: PLC0415

    cfg.require_upstream()
    app = create_app(cfg)
    uvicorn.run(
        app,
        host=args.host or cfg.server_host,
        port=args.port or cfg.server_port,
        log_level=cfg.logging_level.lower(),
    )
    return 0


def _print_board(board: Board) -> None:
    for column in Column:
        cards = board.columns.get(column, [])
        print(f"== {column.value} ({len(cards)})")
        for card in cards:
            extra = display_labels(card.issue.labels)
            suffix = f" [{', '.join(extra)}]" if extra else ""
            print(f"  #{card.number} [{card.severity}/{card.category}] {card.issue.title}{suffix}")


def _cmd_board(cfg: GatewayConfig, args: argparse.Namespace) -> int:
    repo, token = cfg.require_upstream()
    client = GitHubRestClient(token=token, repo=repo, base_url=cfg.github_api_url, timeout=cfg.github_timeout)
    issues = client.list_issues(IssueFilter(state=args.state, per_page=100))
    board = Board.from_issues(issue for issue in issues if not issue.is_pull_request)
    if args.search:
        board = board.search(args.search)
    board = board.filter(severity=args.severity, category=args.category)
    if args.json:
        print(json.dumps({"counts": board.counts(), "columns": board.to_dict()}, indent=2))
    else:
        _print_board(board)
    return 0


def _cmd_check_config(cfg: GatewayConfig, args: argparse.Namespace) -> int:
    print(json.dumps(cfg.to_public_dict(), indent=2, sort_keys=True))
    try:
        cfg.require_upstream()
    except ConfigError as exc:
        print(f"[check-config] {exc}", file=sys.stderr)
        return 2
    print("[check-config] ok", file=sys.stderr)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(f"[config] {exc}", file=sys.stderr)
        return 2
    configure_logging(json_logging=cfg.logging_json_enabled, level=cfg.logging_level)
    handlers = {
        "serve": _cmd_serve,
        "board": _cmd_board,
        "check-config": _cmd_check_config,
    }
    handler = handlers.get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    try:
        return handler(cfg, args)
    except ConfigError as exc:
        print(f"[{args.cmd}] {exc}", file=sys.stderr)
        return 2
    except GatewayError as exc:
        print(f"[{args.cmd}] {exc.code}: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
