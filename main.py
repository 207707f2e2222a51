#!/usr/bin/env python3
"""Entry point for the Omniverse relayer service.

Runs one chain handler per configured network, in either production (ROFL)
or local testing mode.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from omniverse_relayer.relayer import Router


async def main() -> None:
    """Main entry point for the Omniverse relayer.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Omniverse Relayer - Relay protocol messages between chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RELAYER_CONFIG   - Path to the JSON configuration (default: config/default.json)
  RELAYER_SECRET   - Path to the secret file, overrides "secret" in the configuration
  LOG_LEVEL        - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--local",
        action="store_true",
        default=False,
        help="Read keys from the secret file instead of ROFL (for testing)"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the JSON configuration file"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    if args.config:
        os.environ["RELAYER_CONFIG"] = args.config

    if mode_msg := ("(LOCAL MODE)" if args.local else ""):
        logger.info(f"=== Omniverse Relayer Starting {mode_msg} ===")
    else:
        logger.info("=== Omniverse Relayer Starting ===")

    relayer: Router | None = None
    try:
        relayer = Router.from_env(local_mode=args.local)
        logger.info("Configuration loaded successfully")
        await relayer.run()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your configuration file:")
        logger.error("  - networks: node_address, chain_id, contract addresses and ABI paths per chain")
        if args.local:
            logger.error("  - secret: JSON file mapping each network name to its private key")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        if relayer is not None:
            relayer.stop()

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
