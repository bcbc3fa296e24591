"""
botls command-line entry point.

Usage::

    botls                      # config from BOTLS_CONFIG_FILE
    botls -c /etc/botls/config.json
    botls -c config.json --once
    python -m botls.main -c config.json
"""

import argparse
import asyncio
import logging
import sys

from botls import __version__
from botls.config import from_env, settings
from botls.core.acme_client import AcmeClient
from botls.core.daemon import RenewalDaemon
from botls.core.errors import ACMEError, InvalidConfig, OrderInvalid
from botls.core.manager import Manager
from botls.core.store import FileStore

logger = logging.getLogger("botls")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="botls", description="Automated ACME certificate lifecycle manager")
    parser.add_argument("-c", "--config", help="Path to the JSON config (default: $BOTLS_CONFIG_FILE)")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def run(once: bool = False) -> int:
    """Build the manager and run it; returns the process exit code."""
    cfg = from_env()
    store = FileStore(cfg.data_dir, cfg.account)
    client = AcmeClient(cfg, store)
    await client.init()

    manager = Manager(cfg, client)
    logger.info(f"Managing {len(cfg.certificates)} certificate(s), data_dir={cfg.data_dir}")

    if once:
        duration = await manager.run_pass()
        logger.info(f"Pass complete, next pass due in {duration} seconds")
        return 0

    daemon = RenewalDaemon(manager)
    await daemon.start()
    try:
        return await daemon.wait()
    finally:
        await daemon.stop(daemon.exit_code)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.config:
        settings.config_file = args.config

    logging.basicConfig(
        level=settings.log_level.upper(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        return asyncio.run(run(once=args.once))
    except InvalidConfig as e:
        logger.error(f"Failed to load config: {e.message}")
        return 1
    except ACMEError as e:
        logger.error(f"Failed to initialize ACME client: {e.message}")
        return 1
    except OrderInvalid as e:
        logger.critical(e.message)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
