from __future__ import annotations

import asyncio
import signal

from loguru import logger

from batch_worker.app.composition import create_worker_dependencies
from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.core.logging import configure_logging


def _log(event: str, **kwargs) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def run_worker(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    deps = create_worker_dependencies(settings)
    try:
        await deps.connect()
    except Exception:
        await deps.close()
        raise

    shutdown = asyncio.Event()

    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass

    consumer_task = asyncio.create_task(deps.consumer.run())
    shutdown_task = asyncio.create_task(shutdown.wait())
    _log("worker_started", queue=settings.queue_name)
    try:
        await asyncio.wait({consumer_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        shutdown_task.cancel()
        if not consumer_task.done():
            consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            pass
        finally:
            await deps.close()
            _log("worker_stopped")


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level, serialize=settings.log_serialize)
    try:
        asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        _log("worker_interrupted")
    except Exception as e:
        logger.exception("worker failed: {}", e)
        raise


if __name__ == "__main__":
    main()
