#!/usr/bin/env python3
"""Obtain a cluster-signed key and certificate for this pod, then exit."""

import argparse
import sys
import threading
from dataclasses import replace

from key_cert_provisioner.lib.authority_client import WATCH_POLL_SECONDS
from key_cert_provisioner.lib.config import ProvisioningConfig
from key_cert_provisioner.lib.errors import ProvisionerError, WatchCancelledError
from key_cert_provisioner.lib.k8s_client import create_api_client
from key_cert_provisioner.lib.logging_config import LOGGER, set_log_level
from key_cert_provisioner.lib.models import ProvisioningResult
from key_cert_provisioner.lib.provisioner import Provisioner

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
# Same code as coreutils timeout(1): the pod should be restarted and retried.
EXIT_TIMEOUT = 124

# Time given to the watch to notice cancellation and close its stream; a
# held stream is dropped after at most WATCH_POLL_SECONDS without events.
CANCEL_GRACE_SECONDS = WATCH_POLL_SECONDS + 1.0


def run_with_deadline(provisioner: Provisioner, timeout_seconds: float) -> int:
    """Run the provisioner on a worker thread racing the deadline.

    Args:
        provisioner: Configured provisioner
        timeout_seconds: Overall deadline for the run

    Returns:
        Exit code (0 success, 1 failure, 124 timeout)
    """
    cancel_event = threading.Event()
    results: list[ProvisioningResult] = []
    errors: list[Exception] = []

    def _work() -> None:
        try:
            results.append(provisioner.run(cancel_event))
        except Exception as e:
            errors.append(e)

    worker = threading.Thread(target=_work, name="provisioner", daemon=True)
    worker.start()
    worker.join(timeout_seconds)

    if worker.is_alive():
        cancel_event.set()
        worker.join(CANCEL_GRACE_SECONDS)
        cancelled = bool(errors) and isinstance(errors[0], WatchCancelledError)
        if worker.is_alive() or cancelled:
            LOGGER.error(
                "Timeout expired after %ss, exiting program with exit code %d",
                timeout_seconds,
                EXIT_TIMEOUT,
            )
            return EXIT_TIMEOUT

    if errors:
        error = errors[0]
        if isinstance(error, ProvisionerError):
            LOGGER.error("Provisioning failed: %s", error)
            return EXIT_FAILURE
        LOGGER.error("Provisioning failed unexpectedly: %s", error, exc_info=error)
        return EXIT_FAILURE

    result = results[0]
    LOGGER.info("Successfully obtained a certificate:")
    LOGGER.info("  CSR: %s (%s)", result.csr_name, result.api_version)
    LOGGER.info("  Cert: %s", result.output.cert_path)
    LOGGER.info("  Key: %s", result.output.key_path)
    if result.output.ca_path:
        LOGGER.info("  CA: %s", result.output.ca_path)
    if result.api_service_registered:
        LOGGER.info("  Registered as aggregated API server")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    """Provision key and certificate from environment configuration.

    Returns:
        Exit code (0 for success, 1 for failure, 124 on timeout)
    """
    parser = argparse.ArgumentParser(
        description="Request a key and certificate from the Kubernetes CSR API"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Overall deadline in seconds (default: TIMEOUT env var or 300)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    args = parser.parse_args(argv)
    set_log_level(args.log_level)

    try:
        config = ProvisioningConfig.from_env()
        if args.timeout is not None:
            if args.timeout <= 0:
                parser.error("--timeout must be positive")
            config = replace(config, timeout_seconds=args.timeout)
        api_client = create_api_client()
    except ProvisionerError as e:
        LOGGER.error("Startup failed: %s", e)
        return EXIT_FAILURE

    LOGGER.info("Requesting certificate %s from signer %s", config.csr_name, config.signer)
    provisioner = Provisioner(config, api_client)
    return run_with_deadline(provisioner, config.timeout_seconds)


if __name__ == "__main__":
    sys.exit(main())
