"""
devlauncher (development webserver launcher)
- Stops a previous instance through the loopback shutdown port, then starts
  an embedded webserver for the configured webapps.
- Generated webapps are mirrored from their source directories and kept in
  sync while the server runs (create/modify/delete/move).
- Settings come from devlauncher.json in the project directory,
  DEVLAUNCHER_* environment variables and the command line (highest wins).
- Logs to the console (colored) and to <working dir>/logs/devlauncher_<date>.log.

Usage
  pip install devlauncher
  devlauncher
  devlauncher --project-dir ./myapp --port 8080 --shutdown-port 8081
  devlauncher stop --shutdown-port 8081
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .config import build_effective_config
from .errors import DevLauncherError
from .launcher import DevLauncher
from .logs import setup_logger
from .shutdown import ShutdownCoordinator


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="devlauncher", description="Launch an embedded development webserver.")
    p.add_argument("command", nargs="?", choices=("run", "stop"), default="run", help="Start the server (default) or stop a running one.")
    p.add_argument("--project-dir", type=str, default=None, help="Project directory (relative paths resolve against it).")
    p.add_argument("--config", type=str, default=None, help="Configuration file (default: devlauncher.json).")
    p.add_argument("--working-dir", type=str, default=None, help="Directory for logs and generated webapps.")
    p.add_argument("--port", type=int, default=None, help="Default HTTP port (0 disables the default connector).")
    p.add_argument("--shutdown-port", type=int, default=None, help="Loopback shutdown port (0 disables single-instance handling).")
    p.add_argument("--polling", action="store_true", help="Poll source directories instead of using native notifications.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return p.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logger = setup_logger(None, level)

    try:
        cfg = build_effective_config(args, logger=logger)
    except DevLauncherError as e:
        logger.error("Config error: %s", e)
        return 2

    if args.command == "stop":
        if not cfg.shutdown.enabled:
            logger.error("No shutdown port configured")
            return 2
        confirmed = ShutdownCoordinator(logger=logger).shutdown_existing_server(cfg.shutdown.port, cfg.shutdown.host)
        logger.info("Running server %s", "stopped" if confirmed else "not found or did not confirm")
        return 0 if confirmed else 1

    setup_logger(cfg.log_dir, level)
    logger.info("Project directory: %s", cfg.project_directory)
    logger.info("Working directory: %s", cfg.working_directory)

    try:
        DevLauncher.from_config(cfg, logger=logger).launch()
    except DevLauncherError as e:
        logger.error("Launch aborted: %s", e)
        return 2
    except OSError as e:
        logger.error("Launch aborted: %s", e, exc_info=level == logging.DEBUG)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
