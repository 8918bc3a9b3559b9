# Main Entry Point
#
# Starts the vault backend (FastAPI on localhost) for the desktop UI.

import argparse
import sys

from . import __version__
from .core import EventSeverity, EventType, get_audit_logger


def main():
    parser = argparse.ArgumentParser(
        description="Secure Vault - local password and TOTP vault backend",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Backend host (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Backend port (default: 8000)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Secure Vault v{__version__}",
    )
    args = parser.parse_args()

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="Secure Vault starting",
        details={"version": __version__, "host": args.host, "port": args.port},
    )

    print(f"Starting Secure Vault API on {args.host}:{args.port} (Ctrl+C to stop)")

    from .api.main import start_api_server

    try:
        start_api_server(host=args.host, port=args.port)
    except KeyboardInterrupt:
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="Secure Vault backend stopped (user interrupt)",
        )
    except Exception as e:
        print(f"\nError: {e}")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.CRITICAL,
            message=f"Secure Vault backend crashed: {e}",
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
