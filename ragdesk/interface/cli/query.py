"""CLI query handler.

Interface layer is thin: parse args, call the use case, format the Result.
"""

import argparse
import asyncio
import sys

from ragdesk.application.dto.query_dto import QueryRequest
from ragdesk.config.compose import Container
from ragdesk.config.logging import configure_logging


def add_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--tenant", required=True)
    ap.add_argument("--bot", required=True)
    ap.add_argument("--message", required=True)
    ap.add_argument("--top-k", type=int, default=0, help="0 = configured default")
    ap.add_argument("--threshold", type=float, default=0.0, help="Confidence threshold (0-1)")
    ap.add_argument("--expand", action="append", default=[], help="Extra query variant (repeatable)")


async def run(args: argparse.Namespace, container: Container) -> int:
    uc = container.build_query_use_case()
    req = QueryRequest(
        tenant_id=args.tenant,
        bot_id=args.bot,
        message=args.message,
        top_k=args.top_k,
        threshold=args.threshold,
        expansions=tuple(args.expand),
    )
    result = await uc.execute(req)

    if result.ok and result.value is not None:
        answer = result.value
        print("\n" + "=" * 80)
        print("ANSWER:" + (" (refused)" if answer.refused else ""))
        print("=" * 80)
        print(answer.reply)
        print(f"\nconfidence={answer.confidence:.3f}")
        if answer.references:
            print("\n" + "=" * 80)
            print("REFERENCES:")
            print("=" * 80)
            for ref in answer.references:
                print(f"[{ref.rank}] doc={ref.document_id} chunk={ref.chunk_id} (score={ref.score:.3f})")
                print(f"    {ref.snippet}")
        return 0

    err = result.error
    print(f"\n[ERROR] {type(err).__name__}: {err}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser("ragdesk-query")
    add_arguments(ap)
    args = ap.parse_args(argv)
    container = Container()
    configure_logging(container.settings.log_level, container.settings.log_json, container.settings.app_env)
    return asyncio.run(run(args, container))


if __name__ == "__main__":
    raise SystemExit(main())
