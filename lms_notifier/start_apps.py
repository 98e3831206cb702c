"""
Startup script for the API server, the Celery worker and Celery beat.
Runs each as a supervised subprocess and stops all of them together.
"""

import multiprocessing
import subprocess
import sys
import time
import signal
from pathlib import Path

import redis

from lms_notifier.config.settings import settings
from lms_notifier.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = str(Path(__file__).parent.parent)


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def _run_service(name: str, command: list):
    try:
        logger.info(f"Starting {name} process")
        subprocess.run(command, check=True, cwd=PROJECT_ROOT)
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted by user")


def run_api_server():
    """Run the FastAPI server; the periodic dispatcher lives in this process"""
    _run_service(
        "API",
        [
            sys.executable,
            "-m",
            "uvicorn",
            "lms_notifier.main:app",
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
    )


def run_celery_worker():
    """Run the Celery worker; collection runs are long, so one at a time"""
    _run_service(
        "Celery worker",
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "lms_notifier.celery",
            "worker",
            "--loglevel=info",
            "--pool=solo",
        ],
    )


def run_celery_beat():
    """Run Celery beat for the daily collection and the retry sweep"""
    Path(PROJECT_ROOT, "tmp").mkdir(exist_ok=True)
    _run_service(
        "Celery beat",
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "lms_notifier.celery",
            "beat",
            "--loglevel=info",
        ],
    )


def check_redis_connection():
    """Check if Redis server is accessible"""
    try:
        r = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD or None,
            socket_connect_timeout=5,
        )
        r.ping()
        logger.info("Redis connection successful")
        return True
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        logger.error("Please ensure Redis server is running")
        return False


def monitor_processes(processes):
    """Monitor running processes and handle failures"""
    logger.info("Starting process monitoring")

    while True:
        for process in processes:
            if not process.is_alive():
                logger.error(
                    f"{process.name} process died unexpectedly with exit code: {process.exitcode}"
                )
                terminate_processes(processes)
                sys.exit(1)

        time.sleep(1)


def terminate_processes(processes):
    """Gracefully terminate all processes"""
    logger.info("Initiating graceful shutdown of all services")

    for process in processes:
        if process.is_alive():
            logger.info(f"Terminating {process.name} process")
            process.terminate()

    # The API process drains its in-flight dispatch cycle before exiting
    for process in processes:
        process.join(timeout=settings.DISPATCH_DRAIN_TIMEOUT_SECONDS + 10)
        if process.is_alive():
            logger.warning(f"{process.name} did not terminate gracefully, force killing")
            process.kill()
            process.join()
        else:
            logger.info(f"{process.name} terminated successfully")


def main():
    """Start and supervise the API server, Celery worker and Celery beat"""
    multiprocessing.freeze_support()
    setup_signal_handlers()

    logger.info("=" * 60)
    logger.info(f"Starting {settings.NAME} services (API + Celery worker + beat)")
    logger.info("=" * 60)

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    processes = []
    try:
        for name, target in (
            ("API", run_api_server),
            ("CeleryWorker", run_celery_worker),
            ("CeleryBeat", run_celery_beat),
        ):
            process = multiprocessing.Process(target=target, name=name, daemon=False)
            process.start()
            processes.append(process)
            # Give each service a moment to start
            time.sleep(3)

        logger.info("All services started")
        logger.info("API server: http://localhost:8000")
        logger.info("API documentation: http://localhost:8000/docs")
        logger.info("-" * 60)

        monitor_processes(processes)

    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped successfully")


if __name__ == "__main__":
    main()
