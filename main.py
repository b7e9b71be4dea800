"""
Main entrypoint: long-running Elements Duel session.

Connects to the wallet bridge, then runs the connection manager (wallet
notifications, balance refresh) and the game engine (ledger events, periodic
refresh) on one event loop until SIGINT/SIGTERM.

Env: DUEL_WALLET_RPC_URL, DUEL_CONTRACT_ADDRESS, DUEL_NETWORK, DUEL_VAULT_DB_PATH, etc.
One-shot commands: python -m elements_duel.cli --help
"""

import asyncio
import signal
import sys

from elements_duel.config import get_settings
from elements_duel.config.env import print_duel_startup
from elements_duel.core.exceptions import ConnectionCooldownError, DuelError
from elements_duel.duel_logging import get_logger
from elements_duel.game.engine import GameEngine
from elements_duel.vault import SecretVault
from elements_duel.wallet.manager import ConnectionManager

logger = get_logger("main")

CONNECT_RETRY_SEC = 10.0


async def _connect_until_ready(manager: ConnectionManager, stop: asyncio.Event) -> None:
    """Silent reconnect first, then interactive connect until connected or stopped."""
    try:
        await manager.reconnect()
    except DuelError as e:
        logger.info("main_reconnect_failed", kind=e.kind.value, error=e.message)
    while not stop.is_set() and not manager.state.is_connected:
        wait = CONNECT_RETRY_SEC
        try:
            state = await manager.connect()
            if state.is_connected:
                return
            logger.info("main_waiting_for_network_switch")
        except ConnectionCooldownError as e:
            wait = e.retry_after or wait
        except DuelError as e:
            logger.warning("main_connect_failed", kind=e.kind.value, error=e.message)
        try:
            await asyncio.wait_for(stop.wait(), timeout=wait)
        except asyncio.TimeoutError:
            pass
        await manager.process_events()


async def _serve() -> None:
    settings = get_settings()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are not supported on this platform / loop
            pass

    vault = SecretVault(settings.vault_db_path)
    manager = ConnectionManager(settings)
    engine = GameEngine(manager, vault, settings=settings)
    purged = engine.start()
    logger.info("main_vault_ready", path=str(settings.vault_db_path), purged=purged)

    try:
        await _connect_until_ready(manager, stop)
        if manager.state.is_connected:
            try:
                await engine.refresh_data()
            except DuelError as e:
                logger.warning("main_initial_refresh_failed", kind=e.kind.value, error=e.message)
        await asyncio.gather(manager.run(stop), engine.run(stop))
    finally:
        await manager.transport.aclose()
        vault.close()
        logger.info("main_stopped")


def main() -> None:
    """Run the session until interrupted."""
    print_duel_startup("main")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("main_keyboard_interrupt")
    except DuelError as e:
        logger.error("main_fatal", kind=e.kind.value, error=e.message)
        sys.exit(1)


if __name__ == "__main__":
    main()
