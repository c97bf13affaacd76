"""Process entry points: ``tx-relay submitter|watcher|api``."""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from app.config import Settings, get_settings
from app.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _install_signal_handlers(stop) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(stop()))
        except NotImplementedError:
            pass


async def _connect(settings: Settings):
    from app.services.event_bus import EventBus
    from app.services.queue import SubmissionQueue
    from app.services.redis_client import connect_with_retry, create_redis

    client = create_redis(settings)
    await connect_with_retry(
        client,
        "submission queue",
        attempts=settings.bus_connect_attempts,
        initial_seconds=settings.bus_connect_initial_seconds,
        growth=settings.bus_connect_growth,
        max_seconds=settings.bus_connect_max_seconds,
    )
    queue = SubmissionQueue(client, settings.submission_stream)
    bus = EventBus(
        client,
        connect_attempts=settings.bus_connect_attempts,
        connect_initial_seconds=settings.bus_connect_initial_seconds,
        connect_growth=settings.bus_connect_growth,
        connect_max_seconds=settings.bus_connect_max_seconds,
    )
    await bus.connect()
    return client, queue, bus


async def run_submitter(settings: Settings) -> None:
    from app.database import async_session_maker, dispose_engine
    from app.services.gateway import GatewayRegistry
    from app.workers.submitter import SubmissionWorker

    gateways = GatewayRegistry.from_settings(settings, require_signer=True)
    client, queue, bus = await _connect(settings)

    worker = SubmissionWorker(
        async_session_maker,
        queue,
        bus,
        gateways,
        block_timeout_ms=settings.submitter_block_timeout_ms,
        error_backoff_seconds=settings.submitter_error_backoff_seconds,
        send_attempts=settings.send_retry_attempts,
        send_initial_seconds=settings.send_retry_initial_seconds,
        resume_from_checkpoint=settings.submitter_resume_from_checkpoint,
    )
    _install_signal_handlers(worker.stop)
    try:
        await worker.start()
    finally:
        await client.aclose()
        await dispose_engine()


async def run_watcher(settings: Settings) -> None:
    """Confirmation watcher and reorg resolver share one tick."""
    from app.database import async_session_maker, dispose_engine
    from app.services.gateway import GatewayRegistry
    from app.workers.reorg import ReorgResolver
    from app.workers.scheduler import TickScheduler
    from app.workers.watcher import ConfirmationWatcher

    gateways = GatewayRegistry.from_settings(settings, require_signer=False)
    client, queue, bus = await _connect(settings)

    watcher = ConfirmationWatcher(
        async_session_maker,
        queue,
        bus,
        gateways,
        required_confirmations=settings.chain_confirmations,
        track_finality=settings.track_finality,
    )
    resolver = ReorgResolver(async_session_maker, queue, bus, gateways)
    scheduler = TickScheduler(
        jobs=[
            ("check_pending_transactions", watcher.check_pending_transactions),
            ("check_reorged_transactions", resolver.check_reorged_transactions),
        ],
        chain_ids=gateways.chain_ids(),
        interval=settings.watcher_interval_seconds,
    )
    _install_signal_handlers(scheduler.stop)
    try:
        await scheduler.start()
    finally:
        await client.aclose()
        await dispose_engine()


def run_api(host: str, port: int) -> None:
    import uvicorn
    uvicorn.run("app.main:app", host=host, port=port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tx-relay", description="Multi-chain transaction relay")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("submitter", help="Sign and send queued transactions")
    sub.add_parser("watcher", help="Track confirmations, finality and reorgs")
    api = sub.add_parser("api", help="Serve intake, query and notifications")
    api.add_argument("--host", default="0.0.0.0")
    api.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        if args.command == "submitter":
            asyncio.run(run_submitter(settings))
        elif args.command == "watcher":
            asyncio.run(run_watcher(settings))
        elif args.command == "api":
            run_api(args.host, args.port)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
