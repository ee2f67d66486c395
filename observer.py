from __future__ import annotations

import argparse
import os
import signal
import threading

from clarity.config import get_settings
from clarity.errors import CommandError
from clarity.logging_utils import init_logger
from clarity.service import ClarityService


def main() -> None:
    parser = argparse.ArgumentParser(description="Clarity observer (screen capture and periodic summaries)")
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Override CLARITY_DATA_DIR (screenshots, videos and clarity.db live here)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Summary interval in seconds (10-3600); persisted like the settings command",
    )
    parser.add_argument(
        "--probe",
        action="store_true",
        help="Capture one test screenshot, print diagnostics and exit",
    )
    args = parser.parse_args()

    if args.data_dir:
        os.environ["CLARITY_DATA_DIR"] = args.data_dir

    settings = get_settings()
    logger = init_logger("observer", settings.logging.directory, settings.logging.level)
    service = ClarityService(settings, logger)

    if args.probe:
        try:
            print(service.test_screenshot())
        except CommandError as exc:
            print(f"Screenshot failed: {exc}")
        print(service.diagnostics())
        return

    if args.interval is not None:
        try:
            service.set_summary_interval(args.interval)
        except CommandError as exc:
            parser.error(str(exc))

    stop_requested = threading.Event()

    def _graceful_stop(signum, frame):
        stop_requested.set()
        logger.info("Received signal %s - shutting down observer", signum)

    signal.signal(signal.SIGINT, _graceful_stop)
    signal.signal(signal.SIGTERM, _graceful_stop)

    try:
        status = service.start_recording()
    except CommandError as exc:
        logger.error("Failed to start recording: %s", exc)
        service.shutdown()
        raise SystemExit(1) from exc

    logger.info(
        "Observer started: capture=%ss summary=%ss storage=%s",
        settings.capture.interval_seconds,
        service.get_summary_interval(),
        status.storage_path,
    )

    try:
        while not stop_requested.wait(1.0):
            pass
    finally:
        service.shutdown()
        logger.info("Observer stopped (%s screenshots this session)", service.get_status().screenshots_count)


if __name__ == "__main__":
    main()
