"""Bunch of random utilities."""

import datetime
import logging
import os
from pathlib import Path
from typing import Optional

import futureproof


logger = logging.getLogger(__name__)


def native_datetime_utc_now() -> datetime.datetime:
    """Get current UTC time as a native datetime object.

    Replacement for the deprecated datetime.datetime.utcnow().
    All timestamps in this package are naive UTC.
    """
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    log_file: str | Path = None,
    std_out_log_level: Optional[int] = None,
    clear_log_file=True,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in scripts
    - Tune down some noisy dependency library logging

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level.upper(), None)

    if not std_out_log_level:
        std_out_log_level = numeric_level

    if simplified_logging:
        fmt = "%(message)s"
        date_fmt = "%H:%M:%S"
    else:
        fmt = "%(asctime)s %(name)-44s %(message)s"
        date_fmt = "%H:%M:%S"

    try:
        # Not available on some slim Docker images
        import coloredlogs

        coloredlogs.install(level=std_out_log_level, fmt=fmt, date_fmt=date_fmt)
    except ImportError as e:
        # non-ANSI e.g. Docker

        assert numeric_level, f"No level: {level}"
        logging.basicConfig(level=std_out_log_level, format=fmt, datefmt=date_fmt)

    if log_file:
        assert isinstance(log_file, Path), f"log_file must be a Path, got {log_file}"

        log_file.parent.mkdir(parents=True, exist_ok=True)

        # When using a file, the file is always logged with INFO level and
        # env var controls only terminal output
        min_level = min(logging.INFO, numeric_level)
        mode = "w" if clear_log_file else "a"

        file_handler = logging.FileHandler(log_file, mode=mode, encoding="utf-8")
        file_handler.setLevel(min_level)
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))

        root = logging.getLogger()
        root.setLevel(min_level)
        root.addHandler(file_handler)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()


def create_thread_pool_executor(task_count: int, max_workers: int) -> futureproof.ThreadPoolExecutor:
    """Create a futureproof thread pool for a known number of tasks.

    - futureproof runs its progress monitor loop in one of the pool threads
      until the pool is shut down, so we reserve one extra thread for it

    - :py:meth:`futureproof.TaskManager.as_completed` shuts the pool down
      when all tasks are done, so create a new pool for each task manager

    :param task_count:
        How many tasks are going to be submitted

    :param max_workers:
        Max tasks running in parallel
    """
    assert max_workers >= 1, f"Need at least one worker, got {max_workers}"
    worker_count = min(max_workers, max(task_count, 1))
    return futureproof.ThreadPoolExecutor(max_workers=worker_count + 1)
