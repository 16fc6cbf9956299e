"""Entry point for the Raydium LP sniper."""

import asyncio
import signal

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from config.settings import Settings, settings
from src.parsers.worker import run_sniper
from src.utils.logger import setup_logger


def check_settings(cfg: Settings) -> None:
    """Fail fast on settings that would only break once the first pool arrives."""
    if cfg.trading_enabled and not cfg.wallet_private_key:
        raise ValueError("TRADING_ENABLED requires WALLET_PRIVATE_KEY")
    if not cfg.trading_enabled and not cfg.user_solana_address:
        raise ValueError("USER_SOLANA_ADDRESS is required when trading is disabled")
    for name in ("raydium_amm_program_id", "user_solana_address"):
        value = getattr(cfg, name)
        if value:
            try:
                Pubkey.from_string(value)
            except ValueError as e:
                raise ValueError(f"{name.upper()} is not a valid address: {value}") from e


async def main() -> None:
    setup_logger(
        level=settings.log_level,
        json_logs=settings.log_json,
        log_dir=settings.log_dir,
        secrets=[settings.wallet_private_key],
    )
    check_settings(settings)
    mode = "TRADING" if settings.trading_enabled else "DECODE-ONLY"
    logger.info(
        f"Starting Raydium LP sniper [{mode}] buy={settings.buy_amount} SOL "
        f"target=+{settings.sell_target_pct}%"
    )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()

    def _on_signal(signame: str) -> None:
        logger.info(f"{signame} received, shutting down")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig.name)

    sniper_task = asyncio.create_task(run_sniper(), name="sniper")
    stop_task = asyncio.create_task(stop.wait(), name="stop_signal")
    done, pending = await asyncio.wait(
        [sniper_task, stop_task], return_when=asyncio.FIRST_COMPLETED
    )

    # run_sniper cleans up in its finally block
    for task in pending:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    if sniper_task in done and not sniper_task.cancelled() and sniper_task.exception():
        logger.opt(exception=sniper_task.exception()).error("Sniper stopped with an error")
    logger.info("Shutdown complete")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
