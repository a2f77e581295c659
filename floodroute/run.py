import signal
import sys

import uvicorn

from floodroute.config.logging_setup import setup_logging
from floodroute.config.settings import get_settings


def setup_signal_handlers():
    """Exit cleanly on SIGINT/SIGTERM."""
    def signal_handler(signum, frame):
        print(f"\n🛑 Received signal {signum}. Shutting down...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def main():
    """Start the API server."""
    setup_logging()
    settings = get_settings()
    host = settings.floodroute_host
    port = settings.floodroute_port

    print(f"Starting API on http://{host}:{port}")
    print("Press CTRL+C to quit.")

    setup_signal_handlers()

    uvicorn.run(
        "floodroute.main:app",
        host=host,
        port=port,
        log_config=None,  # keep the configuration loaded by setup_logging
    )


if __name__ == "__main__":
    main()
