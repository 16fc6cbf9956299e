import sys
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

_REDACTED = "***"


def _redactor(secrets: Iterable[str]):
    """Loguru patcher that masks secret values wherever they slip into a message."""
    values = [s for s in secrets if s]

    def patch(record) -> None:
        message = record["message"]
        for value in values:
            if value in message:
                message = message.replace(value, _REDACTED)
        record["message"] = message

    return patch


def setup_logger(
    *,
    level: str = "INFO",
    json_logs: bool = False,
    log_dir: str | None = "logs",
    secrets: Iterable[str] = (),
) -> None:
    """Console sink at ``level`` plus a DEBUG file sink in ``log_dir``.

    Tracker price ticks are logged at DEBUG, so the file sink holds the full
    history of every position. ``secrets`` are masked in both sinks.
    """
    logger.remove()
    logger.configure(patcher=_redactor(secrets))

    if json_logs:
        logger.add(sys.stdout, serialize=True, level=level.upper())
    else:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
                "<level>{message}</level>"
            ),
            level=level.upper(),
            colorize=True,
        )

    if log_dir:
        logger.add(
            Path(log_dir) / "sniper_{time:YYYY-MM-DD}.log",
            rotation="50 MB",
            retention="7 days",
            compression="gz",
            level="DEBUG",
            serialize=json_logs,
            enqueue=True,
        )
