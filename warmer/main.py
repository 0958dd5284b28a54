import asyncio
import signal
from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from warmer.monitoring.metrics_server import start_metrics_server, QUEUE_PENDING
from warmer.sessions.credentials import PreconfiguredCredentialsProvider
from warmer.storage.postgres.postgres_init import close_postgres, init_postgres
from warmer.storage.queue import DatabaseQueue
from warmer.utils.config_loader import load_config
from warmer.utils.logger import setup_logger
from warmer.worker import Worker


# -------------------------------
# QUEUE METRIC MONITOR TASK
# -------------------------------
async def monitor_queue_size(queue: DatabaseQueue):
    while True:
        try:
            count = await queue.count_pending()
            QUEUE_PENDING.set(count)
        except Exception as e:
            logger.error(f"Queue monitor error: {e}")
        await asyncio.sleep(5)


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> int:
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    logger.info("Starting cache warmer worker...")

    metrics_runner = None
    monitor_task = None

    # ---- PostgreSQL ----
    await init_postgres(config.database_url)
    queue = DatabaseQueue(config.database_url)
    await queue.connect()

    credentials = PreconfiguredCredentialsProvider(
        config.credentials_password,
        config.credentials_domain,
    )
    worker = Worker(queue, credentials, config.worker)

    # ---- Metrics Server ----
    if config.metrics_port:
        metrics_runner, _ = await start_metrics_server(port=config.metrics_port)
        monitor_task = asyncio.create_task(monitor_queue_size(queue))

    run_task = asyncio.create_task(worker.run())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, run_task.cancel)

    try:
        await run_task
    except asyncio.CancelledError:
        logger.warning("Worker run cancelled, leased jobs will be retried after the lease expires.")
        return 1
    finally:
        if monitor_task is not None:
            monitor_task.cancel()
            await asyncio.gather(monitor_task, return_exceptions=True)

        if metrics_runner is not None:
            await metrics_runner.shutdown()
            await metrics_runner.cleanup()

        await queue.close()
        await close_postgres()

    return 0


# -------------------------------
# ENTRYPOINT
# -------------------------------
def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
