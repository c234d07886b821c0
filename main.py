# /main.py
# Runs the harness standalone: the default fork comes up behind the proxy url
# and stays there until interrupted, so wallets and scripts can point at it.
import asyncio
import signal

from anvil_harness.core.config import settings
from anvil_harness.core.harness import setup
from anvil_harness.core.logger import get_logger


async def main():
    log = get_logger("anvil_harness.main")
    harness = await setup(settings)
    for account in harness.accounts:
        log.info("TEST_ACCOUNT", address=account.address, private_key=account.private_key)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    log.info("HARNESS_SERVING", url=harness.url, chain_id=harness.chain_id)
    try:
        await stop.wait()
    finally:
        await harness.close()
        log.warning("HARNESS_SHUTDOWN_COMPLETE")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
