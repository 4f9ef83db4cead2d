"""Command-line interface for zeroscaler.

This module serves as the entrypoint for the zeroscaler application.
"""

import argparse
import logging
import signal
import sys

from pydantic import ValidationError

from zeroscaler import __description__, __version__
from zeroscaler.config import AutoscalerConfig, format_duration
from zeroscaler.controller import ScaleController
from zeroscaler.kubernetes import KubernetesConnection, StatefulSetClient
from zeroscaler.server import ProxyServer

# Command-line option for each configuration field it overrides
CLI_OVERRIDES = {
    "listen_addr": "listen_addr",
    "sts_name": "statefulset_name",
    "sts_namespace": "namespace",
    "headless_service_name": "headless_service_name",
    "target_port": "target_port",
    "dns_suffix": "dns_suffix",
    "idle_timeout": "idle_timeout",
    "ready_timeout": "ready_timeout",
    "dial_timeout": "dial_timeout",
    "shutdown_timeout": "shutdown_timeout",
    "kubeconfig": "kubeconfig",
}


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration.

    Args:
        verbose: Whether to enable verbose logging.
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(level=log_level, format=log_format, stream=sys.stdout)
    # The Kubernetes client logs every request at debug level
    logging.getLogger("kubernetes").setLevel(logging.INFO)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments to parse. If None, sys.argv will be used.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(prog="zeroscaler", description=__description__)

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    parser.add_argument(
        "--listen-addr", help="Proxy listen address and port, e.g. :8080 (overrides ZEROSCALER_LISTEN_ADDR)"
    )
    parser.add_argument("--sts-name", help="Name of the StatefulSet (overrides ZEROSCALER_STATEFULSET_NAME)")
    parser.add_argument("--sts-namespace", help="Namespace of the StatefulSet (overrides ZEROSCALER_NAMESPACE)")
    parser.add_argument(
        "--headless-service-name",
        help="Name of the StatefulSet headless service (overrides ZEROSCALER_HEADLESS_SERVICE_NAME)",
    )
    parser.add_argument("--target-port", type=int, help="Port on the backend pod (overrides ZEROSCALER_TARGET_PORT)")
    parser.add_argument(
        "--dns-suffix",
        help="Suffix appended to the backend pod host, e.g. svc.cluster.local (overrides ZEROSCALER_DNS_SUFFIX)",
    )
    parser.add_argument(
        "--idle-timeout", help="Idle time before scaling down to zero, e.g. 2m0s (overrides ZEROSCALER_IDLE_TIMEOUT)"
    )
    parser.add_argument(
        "--ready-timeout", help="Time to wait for the backend to become ready (overrides ZEROSCALER_READY_TIMEOUT)"
    )
    parser.add_argument(
        "--dial-timeout", help="Timeout for connecting to the backend pod (overrides ZEROSCALER_DIAL_TIMEOUT)"
    )
    parser.add_argument(
        "--shutdown-timeout",
        help="Time to wait for active connections on shutdown (overrides ZEROSCALER_SHUTDOWN_TIMEOUT)",
    )
    parser.add_argument(
        "--kubeconfig", help="Path to the kubeconfig file, for out-of-cluster use (overrides ZEROSCALER_KUBECONFIG)"
    )

    return parser.parse_args(args)


def load_config(parsed_args: argparse.Namespace) -> AutoscalerConfig:
    """Build the configuration from environment variables and command-line overrides.

    Args:
        parsed_args: Parsed command-line arguments.

    Returns:
        The validated configuration.

    Raises:
        ValueError: If a value is invalid.
    """
    config = AutoscalerConfig.from_env()
    overrides = {
        field: getattr(parsed_args, option)
        for option, field in CLI_OVERRIDES.items()
        if getattr(parsed_args, option) is not None
    }
    if not overrides:
        return config
    return AutoscalerConfig(**{**config.model_dump(), **overrides})


def install_signal_handlers(server: ProxyServer) -> None:
    """Stop the server on SIGINT and SIGTERM."""
    logger = logging.getLogger(__name__)

    def handle_signal(signum, frame):
        logger.info(f"Shutdown signal received ({signal.Signals(signum).name}), initiating graceful shutdown...")
        server.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the zeroscaler application.

    Args:
        args: Command-line arguments. If None, sys.argv will be used.

    Returns:
        Exit code.
    """
    parsed_args = parse_args(args)
    setup_logging(parsed_args.verbose)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting zeroscaler {__version__}")

    try:
        config = load_config(parsed_args)
    except (ValidationError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info(
        f"Configuration: listen={config.listen_addr}, statefulset={config.namespace}/{config.statefulset_name}, "
        f"headless_service={config.headless_service_name}, target={config.backend_host}:{config.target_port}, "
        f"idle_timeout={format_duration(config.idle_timeout)}, ready_timeout={format_duration(config.ready_timeout)}, "
        f"kubeconfig={config.kubeconfig or 'default'}"
    )

    try:
        connection = KubernetesConnection(kubeconfig=config.kubeconfig)
    except RuntimeError as e:
        logger.error(f"Failed to initialize Kubernetes client. This service requires Kubernetes: {e}")
        return 1
    logger.info(f"Successfully initialized Kubernetes client for {connection.host}")

    controller = ScaleController(config, StatefulSetClient(connection))
    controller.reconcile_on_startup()

    server = ProxyServer(controller, config.listen_addr)
    try:
        server.bind()
    except OSError as e:
        logger.error(f"Failed to listen on address {config.listen_addr}: {e}")
        return 1

    install_signal_handlers(server)
    try:
        server.serve_forever()
    finally:
        server.stop()

    server.wait_for_sessions(config.shutdown_timeout)
    logger.info("Graceful shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
