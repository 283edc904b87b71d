"""
Epoch Crank - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line entry point for the epoch crank.

- Provides argparse-based CLI
- Every option falls back to its environment variable
- Sets up logging
- Maps fatal errors to a non-zero exit status

============================================================
USAGE
============================================================
python -m epoch_crank.cli --ncn <NCN> --config-address <ADDR> \
    --payer <PAYER> --signer-url http://localhost:8899/sign \
    --entity-marker-offset <OFFSET>

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import CrankConfig
from .exceptions import ConfigurationError, CrankError
from .loop import create_crank
from .records import RecordLayout


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Set up process logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        log_file: Write to this file instead of stdout

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("epoch_crank")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="epoch-crank",
        description="Opens and closes per-entity epoch state trackers",
    )

    # --------------------------------------------------------
    # Remote Options
    # --------------------------------------------------------
    remote_group = parser.add_argument_group("Remote Options")

    remote_group.add_argument(
        "--rpc-url",
        type=str,
        help="RPC URL for the cluster (env: RPC_URL)",
    )

    remote_group.add_argument(
        "--signer-url",
        type=str,
        help="Signing service endpoint (env: SIGNER_URL)",
    )

    remote_group.add_argument(
        "--payer",
        type=str,
        help="Fee payer address used by the signer (env: PAYER)",
    )

    remote_group.add_argument(
        "--rpc-timeout",
        type=float,
        default=60.0,
        metavar="SECONDS",
        help="Per-request timeout in seconds (default: 60)",
    )

    # --------------------------------------------------------
    # Program Options
    # --------------------------------------------------------
    program_group = parser.add_argument_group("Program Options")

    program_group.add_argument(
        "--vault-program-id",
        type=str,
        help="Vault program ID (env: VAULT_PROGRAM_ID)",
    )

    program_group.add_argument(
        "--restaking-program-id",
        type=str,
        help="Restaking program ID (env: RESTAKING_PROGRAM_ID)",
    )

    program_group.add_argument(
        "--ncn",
        type=str,
        help="Group (NCN) whose entities are cranked (env: NCN)",
    )

    program_group.add_argument(
        "--config-address",
        type=str,
        help="Vault config account holding epoch_length (env: CONFIG_ADDRESS)",
    )

    program_group.add_argument(
        "--entity-marker-offset",
        type=int,
        help="Byte offset of last_full_state_update_slot in entity records "
             "(env: ENTITY_MARKER_OFFSET)",
    )

    # --------------------------------------------------------
    # Loop Options
    # --------------------------------------------------------
    loop_group = parser.add_argument_group("Loop Options")

    loop_group.add_argument(
        "--tick-interval",
        type=int,
        default=3600,
        metavar="SECONDS",
        help="Main loop tick interval in seconds (default: 3600 = 1 hour)",
    )

    loop_group.add_argument(
        "--max-ticks",
        type=int,
        metavar="N",
        help="Stop after N ticks (default: run forever)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )

    logging_group.add_argument(
        "--log-file",
        type=str,
        default="app.log",
        metavar="PATH",
        help="Log file path, '-' for stdout (default: app.log)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> CrankConfig:
    """
    Build crank configuration from CLI arguments and the environment.

    Args:
        args: Parsed arguments

    Returns:
        CrankConfig instance
    """
    config = CrankConfig.from_env(
        rpc_url=args.rpc_url,
        signer_url=args.signer_url,
        payer=args.payer,
        vault_program_id=args.vault_program_id,
        restaking_program_id=args.restaking_program_id,
        group_id=args.ncn,
        config_address=args.config_address,
        rpc_timeout_seconds=args.rpc_timeout,
        tick_interval_seconds=args.tick_interval,
        log_level=args.log_level,
        log_format=args.log_format,
    )

    if args.entity_marker_offset is not None:
        config.layout = RecordLayout(entity_marker_offset=args.entity_marker_offset)

    config.log_file = None if args.log_file == "-" else args.log_file
    return config


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments that the config does not cover.

    Returns:
        List of validation errors
    """
    errors = []
    if args.max_ticks is not None and args.max_ticks < 1:
        errors.append("--max-ticks must be at least 1")
    return errors


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(config: CrankConfig, max_ticks: Optional[int] = None) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    logger = logging.getLogger("epoch_crank")

    try:
        crank = await create_crank(config)
    except CrankError as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1

    try:
        await crank.run_forever(max_ticks=max_ticks)
        return 0
    except CrankError as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        return 1
    except Exception as e:
        logger.critical(f"Unexpected error: {e}", exc_info=True)
        return 1
    finally:
        logger.info(f"Crank stats: {crank.get_stats()}")
        await crank.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    errors = validate_args(args) + config.validate()
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format, config.log_file)

    try:
        return asyncio.run(async_main(config, max_ticks=args.max_ticks))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
