"""
Standalone sweeper sidecar process.

Runs only the background sweepers (ephemeral expiry and purge, sanction
expiry, appeal cleanup, match reconciliation) with the same configuration
as the web app, so web workers can keep SWEEPERS_ENABLED off.

Usage:
  python worker.py
"""
import logging
import signal
import sys
import time

from app import create_app
from services.jobs import start_sweepers, stop_sweepers

logger = logging.getLogger("worker")


def main():
    app = create_app()
    # No-op when SWEEPERS_ENABLED already started them
    sweepers = start_sweepers(app)
    logger.info("Sweeper sidecar started with %d sweepers", len(sweepers))

    def _handle_sig(signum, frame):
        logger.info("Received signal %s; stopping sweepers...", signum)
        try:
            stop_sweepers()
        finally:
            sys.exit(0)

    signal.signal(signal.SIGINT, _handle_sig)
    signal.signal(signal.SIGTERM, _handle_sig)

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        _handle_sig(signal.SIGINT, None)


if __name__ == "__main__":
    main()
