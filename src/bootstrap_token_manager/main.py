#!/usr/bin/env python3
"""
Kubernetes bootstrap token manager - Entry point.

Keeps one current bootstrap token in sync between an Azure Key Vault
secret and a cluster secret, rotating it before it expires.

Usage:
    python -m bootstrap_token_manager                    # Run continuously
    python -m bootstrap_token_manager --mode once        # Single cycle
    python -m bootstrap_token_manager --config path.yaml # Custom config
    python -m bootstrap_token_manager --help             # Show help
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from core.errors import FatalError
from core.logging.setup import get_logger, setup_logging
from core.logging.utilities import log_exception, log_with_context

from bootstrap_token_manager import __version__
from bootstrap_token_manager.api.health import HealthServer, HealthState
from bootstrap_token_manager.cloudprovider import new_cloud_provider
from bootstrap_token_manager.cluster import KubernetesSecretStore, load_kubernetes_config
from bootstrap_token_manager.config import Config, load_config
from bootstrap_token_manager.manager import BootstrapTokenManager
from bootstrap_token_manager.metrics import TokenMetrics

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="bootstrap_token_manager",
        description="Kubernetes bootstrap token manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m bootstrap_token_manager                  Run continuously
  python -m bootstrap_token_manager --mode once      Run single sync and exit
  python -m bootstrap_token_manager --dry-run        Log changes without applying them
  python -m bootstrap_token_manager --validate       Validate configuration and exit

Environment Variables:

  CLOUD_PROVIDER                Cloud provider (azure)
  AZURE_KEYVAULT_URL            Key Vault url
  AZURE_KEYVAULT_NAME           Key Vault name (alternative to url)
  AZURE_KEYVAULT_SECRET_NAME    Key Vault secret holding the token
  AZURE_CLIENT_ID               Service principal / workload identity client ID
  AZURE_TENANT_ID               Azure tenant ID
  KUBECONFIG                    Kubeconfig path (default: in-cluster)
  BOOTSTRAPTOKEN_*              Token settings (see config.example.yaml)
  SYNC_TIME                     Sync interval (e.g. 1h)
  SYNC_RECREATE_BEFORE          Renewal lead time (e.g. 2190h)
  DRY_RUN                       Set to 'true' for dry run
  SERVER_BIND                   Health server bind address (e.g. :8080)
        """,
    )

    parser.add_argument(
        "--mode",
        choices=["continuous", "once"],
        default="continuous",
        help="Run mode: 'continuous' (default) or 'once'",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config YAML file (default: config.yaml)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log cluster and cloud writes without applying them",
    )

    parser.add_argument(
        "--full-sync",
        action="store_true",
        help="Sync all valid cloud tokens to the cluster before the first cycle",
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration and exit",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Console log level (default: from config)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


def validate_configuration(config: Config) -> bool:
    """
    Validate configuration and print results.

    Returns:
        True if valid, False otherwise
    """
    print("\nConfiguration Validation")
    print("=" * 40)

    errors = config.validate()

    if errors:
        print("Configuration INVALID\n")
        for error in errors:
            print(f"  - {error}")
        print()
        return False

    token = config.bootstrap_token
    print("Configuration valid\n")
    print(f"Cloud provider:  {config.cloud_provider.provider}")
    if config.cloud_provider.provider == "azure":
        print(f"  Key Vault:     {config.cloud_provider.azure.vault_url}")
        print(f"  Secret:        {config.cloud_provider.azure.secret_name}")
    print(f"Namespace:       {token.namespace}")
    print(f"Name template:   {token.name}")
    print(f"Id template:     {token.id_template}")
    print(f"Expiration:      {token.expiration or 'not enforced'}")
    print(f"Sync interval:   {config.sync.time}")
    print(f"Recreate before: {config.sync.recreate_before}")
    print(f"Full sync:       {config.sync.full}")
    print(f"Dry run:         {config.dry_run}")
    print(
        f"Health server:   "
        f"{f'{config.server.host}:{config.server.port}' if config.server.enabled else 'disabled'}"
    )
    print()

    return True


def _install_signal_handlers(stop_event: threading.Event) -> None:
    """Stop the sync loop between cycles on SIGTERM / SIGINT."""

    def handle_signal(signum, frame):
        log_with_context(
            logger,
            logging.INFO,
            f"Received {signal.Signals(signum).name}, stopping after current cycle",
        )
        stop_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    # Load environment variables from .env file
    load_dotenv()

    args = parse_args(argv)

    try:
        config = load_config(config_path=args.config)
        if args.dry_run:
            config.dry_run = True
        if args.full_sync:
            config.sync.full = True
        if args.log_level:
            config.logging.level = args.log_level

        # Validate only mode
        if args.validate:
            return 0 if validate_configuration(config) else 1

        errors = config.validate()
        if errors:
            print("Configuration INVALID:", file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            return 1

        setup_logging(
            name="bootstrap_token_manager",
            log_dir=Path(config.logging.log_dir),
            json_format=config.logging.json_logs,
            console_level=getattr(logging, config.logging.level, logging.INFO),
            file_logging=config.logging.file_logging,
            component="bootstrap_token_manager",
        )

        log_with_context(
            logger,
            logging.INFO,
            f"Starting kube-bootstrap-token-manager v{__version__}",
            provider=config.cloud_provider.provider,
            namespace=config.bootstrap_token.namespace,
            dry_run=config.dry_run,
        )

        metrics = TokenMetrics()
        health_state = HealthState(dry_run=config.dry_run)

        load_kubernetes_config()
        cluster_store = KubernetesSecretStore(namespace=config.bootstrap_token.namespace)

        logger.info(f"Using cloud provider '{config.cloud_provider.provider}'")
        with new_cloud_provider(config.cloud_provider.provider, config) as provider:
            manager = BootstrapTokenManager(
                config,
                cloud_provider=provider,
                cluster_store=cluster_store,
                metrics=metrics,
                health_state=health_state,
            )

            if args.mode == "once":
                exit_code = manager.run_once()
                log_with_context(
                    logger, logging.INFO, f"Sync completed with exit code {exit_code}"
                )
                return exit_code

            health_server = HealthServer(
                config.server.host,
                config.server.port,
                health_state=health_state,
                registry=metrics.registry,
                enabled=config.server.enabled,
            )
            health_server.start()

            stop_event = threading.Event()
            _install_signal_handlers(stop_event)
            try:
                manager.run(stop_event)
            finally:
                health_server.stop()

        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130  # Standard exit code for SIGINT

    except ValueError as e:
        # Config errors (bad durations, numbers)
        log_exception(logger, e, "Configuration error", include_traceback=False)
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        return 1

    except FatalError as e:
        log_exception(logger, e, "Fatal error", include_traceback=False)
        print(f"\nFatal error: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        log_exception(logger, e, "Unexpected error during startup")
        print(f"\nFatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
