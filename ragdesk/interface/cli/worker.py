import argparse
import asyncio
import signal

from ragdesk.config.compose import Container
from ragdesk.config.logging import configure_logging, get_logger

logger = get_logger(__name__)


def add_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--workers", type=int, default=0, help="0 = RAGDESK_INGESTION_WORKERS")
    ap.add_argument("--drain", action="store_true", help="Process queued jobs once, then exit")


async def run(args: argparse.Namespace, container: Container) -> int:
    worker = container.build_ingestion_worker()
    if args.workers > 0:
        worker.worker_count = args.workers
    if args.drain:
        done = await worker.drain()
        print(f"Drained {done} jobs")
        return 0

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            logger.debug("signal_handler_unsupported", signal=sig.name)
    await worker.run(stop)
    return 0


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser("ragdesk-worker")
    add_arguments(ap)
    args = ap.parse_args(argv)
    container = Container()
    configure_logging(container.settings.log_level, container.settings.log_json, container.settings.app_env)
    return asyncio.run(run(args, container))


if __name__ == "__main__":
    raise SystemExit(main())
