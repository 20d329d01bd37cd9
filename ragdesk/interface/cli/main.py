"""ragdesk command line: ``ingest``, ``query`` and ``worker`` subcommands."""

import argparse
import asyncio

from ragdesk.config.compose import Container
from ragdesk.config.logging import configure_logging
from ragdesk.interface.cli import ingest, query, worker

_COMMANDS = {
    "ingest": (ingest, "Upload a document into a knowledge base"),
    "query": (query, "Ask a bot a question"),
    "worker": (worker, "Run the async ingestion worker"),
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser("ragdesk")
    sub = ap.add_subparsers(dest="command", required=True)
    for name, (module, help_text) in _COMMANDS.items():
        module.add_arguments(sub.add_parser(name, help=help_text))
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    container = Container()
    configure_logging(container.settings.log_level, container.settings.log_json, container.settings.app_env)
    module, _ = _COMMANDS[args.command]
    return asyncio.run(module.run(args, container))


if __name__ == "__main__":
    raise SystemExit(main())
