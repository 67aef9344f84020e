#!/usr/bin/env python3
"""
Delete old AMIs for a role, keeping the most recent ones.

Meant to run as a step in an image-building pipeline right after a new AMI
has been produced. AMIs are selected by owner and by the value of their Role
tag; the newest --keep of them are kept and the rest are deregistered along
with their EBS snapshots.

Usage examples:
  # Preview what would be deleted
  python rmami.py --region us-west-2 --role web --keep 3 --dry-run

  # Delete for real, settings from config.yaml
  python rmami.py --config config.yaml

  # Template variables, e.g. role: "{{user `role`}}" in config.yaml
  python rmami.py --config config.yaml --var role=web

  # Show the resolved configuration (secrets masked)
  python rmami.py --config config.yaml --print-config
"""

import argparse
import json
import signal
import sys
from typing import Dict, List, Optional

from retention.config_manager import ConfigManager
from retention.errors import CancelledError, ConfigurationError, RetentionError
from retention.logging_utils import get_logger, log_exception, setup_logging
from retention.provisioner import RetentionProvisioner
from retention.reporter import LoggingReporter, plan_table

logger = get_logger("rmami")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def parse_user_vars(pairs: Optional[List[str]]) -> Dict[str, str]:
    """Turn ["name=value", ...] into a dict; raises ConfigurationError on bad pairs"""
    user_vars = {}
    errors = []
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            errors.append(f"--var expects name=value, got: {pair!r}")
            continue
        user_vars[name.strip()] = value
    if errors:
        raise ConfigurationError(errors)
    return user_vars


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Delete old AMIs tagged with a role, keeping the most recent ones",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what would be deleted
  python rmami.py --region us-west-2 --role web --keep 3 --dry-run

  # Delete using settings from a config file
  python rmami.py --config config.yaml
        """
    )

    parser.add_argument(
        '--config',
        help='Path to config YAML file (default: RMAMI_CONFIG_FILE or config.yaml)'
    )

    parser.add_argument(
        '--region',
        help='AWS region containing the AMIs'
    )

    parser.add_argument(
        '--owner',
        help='Owner of the AMIs to delete (default: self, the account of the credentials)'
    )

    parser.add_argument(
        '--role',
        help='Value of the Role tag selecting the AMIs'
    )

    parser.add_argument(
        '--role-tag',
        help='Tag key holding the role (default: Role)'
    )

    parser.add_argument(
        '--keep',
        type=int,
        help='Number of most recent AMIs to keep, at least 2'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        default=None,
        help='Only report what would be deleted'
    )

    parser.add_argument(
        '--var',
        action='append',
        metavar='NAME=VALUE',
        help='User variable for {{user `NAME`}} templates (repeatable)'
    )

    parser.add_argument(
        '--output',
        help='Write a JSON summary of the run to this file'
    )

    parser.add_argument(
        '--print-config',
        action='store_true',
        help='Print the configuration (secrets masked) and exit'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def write_summary(path: str, summary: Dict) -> None:
    with open(path, "w") as f:
        json.dump(summary, f, indent=2)
    logger.info(f"Run summary saved to: {path}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    args = parse_arguments(argv)
    setup_logging("DEBUG" if args.verbose else None)

    overrides = {
        "region": args.region,
        "owner": args.owner,
        "role": args.role,
        "role_tag": args.role_tag,
        "keep": args.keep,
        "dry_run": args.dry_run,
    }

    try:
        user_vars = parse_user_vars(args.var)
        manager = ConfigManager(config_file=args.config, user_vars=user_vars, overrides=overrides)
        if not args.verbose:
            setup_logging(manager.get_log_level())
        if args.print_config:
            manager.print_config()
            return EXIT_OK

        provisioner = RetentionProvisioner()
        config = provisioner.prepare(config_manager=manager)
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG

    def _terminate(signum, frame):
        # deletion is not interrupted cooperatively; whatever finished stays finished
        provisioner.cancel()
        logger.warning(f"Received signal {signum}, exiting")
        sys.exit(EXIT_CANCELLED)

    previous_handlers = {sig: signal.signal(sig, _terminate) for sig in (signal.SIGINT, signal.SIGTERM)}

    logger.info("=" * 60)
    if config.dry_run:
        logger.info("   DRY RUN: finding AMIs that would be deleted")
    else:
        logger.info("   Deleting old AMIs")
    logger.info("=" * 60)
    logger.info(f"Region: {config.region}")
    logger.info(f"Owner: {config.owner}")
    logger.info(f"Role: {config.role_tag}={config.role}")
    logger.info(f"Keep: {config.keep_count}")

    exit_code = EXIT_OK
    try:
        run = provisioner.provision(LoggingReporter(logger))
        if run.plan is not None and run.plan.total:
            print(plan_table(run.plan, dry_run=config.dry_run))
    except CancelledError as e:
        logger.warning(e.message)
        exit_code = EXIT_CANCELLED
    except RetentionError as e:
        log_exception(logger, str(e), e)
        exit_code = EXIT_FAILED
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    if args.output and provisioner.last_run is not None:
        write_summary(args.output, provisioner.last_run.to_dict())
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
