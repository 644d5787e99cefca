"""
Social Moderation Pipeline
==========================

Runs the background half of the pipeline: the resize and moderation queue
workers, plus a re-drive of work left unfinished by the previous run. The
request-serving frontend embeds ``socialmod.pipeline.Pipeline`` directly.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. SOCIALMOD_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the repository root.
    """
    if env_home := os.getenv("SOCIALMOD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import signal
from dotenv import load_dotenv

from socialmod.configuration.app_configuration import CONFIG_PATH, AppConfig
from socialmod.pipeline import Pipeline
from socialmod.util.logger import get_logger, handle_exception


logger = get_logger("main")


def load_environment() -> None:
    """Load secrets such as ``REVIEW_PROVIDER_KEY`` from ``.env``."""
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    if not os.getenv("REVIEW_PROVIDER_KEY"):
        logger.warning("'REVIEW_PROVIDER_KEY' is not set; provider calls will be unauthenticated.")


def install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            logger.debug("Signal handlers are not supported on this platform")
            return


async def async_main() -> int:
    """Open the pipeline, run the workers until stopped, and return an exit code."""
    load_environment()
    config = AppConfig(CONFIG_PATH)

    try:
        pipeline = await Pipeline.open(config)
    except Exception as exc:
        logger.critical("Failed to initialize pipeline: %s", exc)
        return 1

    stop = asyncio.Event()
    install_signal_handlers(stop)
    try:
        requeued = await pipeline.redrive()
        logger.info("Re-drove %d unfinished task(s)", requeued)
        pipeline.start_workers()
        await stop.wait()
        logger.info("Stop requested; shutting down workers")
    finally:
        await pipeline.close()
    return 0


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process code."""
    sys.excepthook = handle_exception
    logger.info("Starting social moderation pipeline…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the pipeline: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
