from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import ConfigError
from .logs import get_logger
from .shutdown import ShutdownEndpoint

CONFIG_FILE_NAME = "devlauncher.json"
WORKING_DIRECTORY_NAME = ".devlauncher"
DEFAULT_PORT = 8080
DEFAULT_SHUTDOWN_PORT = 8081

ENV_PREFIX = "DEVLAUNCHER_"


@dataclass(frozen=True)
class CopyConfig:
    source: Path
    target_directory_name: Optional[str] = None
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True)
class WebappConfig:
    context_path: str
    directory: Optional[Path] = None
    target_directory: Optional[Path] = None
    copies: tuple[CopyConfig, ...] = ()

    @property
    def generated(self) -> bool:
        return self.directory is None


@dataclass(frozen=True)
class ResourceCopyConfig:
    source: Path
    target: Path
    exclude: tuple[str, ...] = ()
    recursive: bool = True


@dataclass(frozen=True)
class LauncherConfig:
    project_directory: Path
    working_directory: Path
    default_port: Optional[int] = DEFAULT_PORT
    shutdown: ShutdownEndpoint = field(default_factory=lambda: ShutdownEndpoint(DEFAULT_SHUTDOWN_PORT))
    connectors: tuple[int, ...] = ()
    webapps: tuple[WebappConfig, ...] = ()
    copy_resources: tuple[ResourceCopyConfig, ...] = ()
    polling: bool = False
    config_file: Optional[Path] = None

    @property
    def log_dir(self) -> Path:
        return self.working_directory / "logs"


# -------------------------
# Value parsing
# -------------------------

def parse_port(value: Any, key: str) -> Optional[int]:
    """Empty or missing means "not configured"; 0 or less disables."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port for '{key}': {value!r}") from None
    if port > 65535:
        raise ConfigError(f"Port out of range for '{key}': {port}")
    return port if port > 0 else None


def parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"", "0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean for '{key}': {value!r}")


def _resolve(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base / path)


def _patterns(value: Any, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of patterns")
    return tuple(value)


def _require(entry: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in entry or entry[key] in (None, ""):
        raise ConfigError(f"Missing '{key}' in {where}")
    return entry[key]


# -------------------------
# Config file
# -------------------------

def resolve_config_file(project_directory: Path, value: Optional[str]) -> Path:
    return _resolve(project_directory, value or CONFIG_FILE_NAME)


def load_config_file(path: Path, logger: Optional[logging.Logger] = None) -> dict:
    logger = logger or get_logger()
    if not path.exists():
        logger.info("No devlauncher configuration file found at: %s. Using default settings.", path)
        return {}
    logger.info("Loading devlauncher configuration from: %s", path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot load devlauncher configuration from {path}: {e}") from e
    if not isinstance(payload, dict):
        raise ConfigError(f"Configuration file must contain a JSON object: {path}")
    return payload


def parse_webapps(entries: Any, project_directory: Path, working_directory: Path) -> tuple[WebappConfig, ...]:
    if entries is None:
        return ()
    if not isinstance(entries, list):
        raise ConfigError("'webapps' must be a list")

    webapps = []
    for index, entry in enumerate(entries):
        where = f"webapps[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{where} must be an object")
        context_path = str(entry.get("context_path", "/"))

        if entry.get("directory"):
            webapps.append(WebappConfig(context_path=context_path, directory=_resolve(project_directory, entry["directory"])))
            continue

        copy_entries = _require(entry, "copies", f"{where} (needs 'directory' or 'copies')")
        if not isinstance(copy_entries, list):
            raise ConfigError(f"{where}.copies must be a list")

        copies = []
        for copy_index, copy in enumerate(copy_entries):
            copy_where = f"{where}.copies[{copy_index}]"
            if not isinstance(copy, dict):
                raise ConfigError(f"{copy_where} must be an object")
            copies.append(
                CopyConfig(
                    source=_resolve(project_directory, _require(copy, "source", copy_where)),
                    target_directory_name=copy.get("target") or None,
                    exclude=_patterns(copy.get("exclude"), f"{copy_where}.exclude"),
                )
            )

        name = context_path.strip("/").replace("/", "_") or "ROOT"
        target = entry.get("target_directory")
        target_directory = _resolve(project_directory, target) if target else working_directory / "webapps" / name
        webapps.append(WebappConfig(context_path=context_path, target_directory=target_directory, copies=tuple(copies)))
    return tuple(webapps)


def parse_copy_resources(entries: Any, project_directory: Path) -> tuple[ResourceCopyConfig, ...]:
    if entries is None:
        return ()
    if not isinstance(entries, list):
        raise ConfigError("'copy_resources' must be a list")

    result = []
    for index, entry in enumerate(entries):
        where = f"copy_resources[{index}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{where} must be an object")
        result.append(
            ResourceCopyConfig(
                source=_resolve(project_directory, _require(entry, "source", where)),
                target=_resolve(project_directory, _require(entry, "target", where)),
                exclude=_patterns(entry.get("exclude"), f"{where}.exclude"),
                recursive=parse_bool(entry.get("recursive", True), f"{where}.recursive"),
            )
        )
    return tuple(result)


# -------------------------
# Effective config
# -------------------------

def _pick(cli_value: Any, env: Mapping[str, str], env_key: str, saved: Mapping[str, Any], saved_key: str, default: Any = None) -> Any:
    if cli_value is not None:
        return cli_value
    if ENV_PREFIX + env_key in env:
        return env[ENV_PREFIX + env_key]
    if saved_key in saved:
        return saved[saved_key]
    return default


def build_effective_config(
    args: argparse.Namespace,
    environ: Optional[Mapping[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> LauncherConfig:
    """
    Command line arguments win over ``DEVLAUNCHER_*`` environment variables,
    which win over the JSON config file, which wins over the defaults.
    """
    env = os.environ if environ is None else environ

    project_value = getattr(args, "project_dir", None) or env.get(ENV_PREFIX + "PROJECT_DIRECTORY")
    project_directory = Path(project_value).expanduser().resolve() if project_value else Path.cwd()

    config_file = resolve_config_file(project_directory, getattr(args, "config", None) or env.get(ENV_PREFIX + "CONFIG_FILE"))
    saved = load_config_file(config_file, logger)

    working_value = _pick(getattr(args, "working_dir", None), env, "WORKING_DIRECTORY", saved, "working_directory")
    if working_value:
        working_directory = _resolve(project_directory, str(working_value)).resolve()
    else:
        working_directory = Path.home() / WORKING_DIRECTORY_NAME

    default_port = parse_port(_pick(getattr(args, "port", None), env, "DEFAULT_PORT", saved, "default_port", DEFAULT_PORT), "default_port")
    shutdown_port = parse_port(
        _pick(getattr(args, "shutdown_port", None), env, "SHUTDOWN_PORT", saved, "shutdown_port", DEFAULT_SHUTDOWN_PORT),
        "shutdown_port",
    )
    polling = parse_bool(_pick(True if getattr(args, "polling", False) else None, env, "POLLING", saved, "polling", False), "polling")

    connectors = saved.get("connectors", [])
    if not isinstance(connectors, list):
        raise ConfigError("'connectors' must be a list of ports")
    connector_ports = tuple(p for p in (parse_port(value, "connectors") for value in connectors) if p is not None)

    return LauncherConfig(
        project_directory=project_directory,
        working_directory=working_directory,
        default_port=default_port,
        shutdown=ShutdownEndpoint(shutdown_port),
        connectors=connector_ports,
        webapps=parse_webapps(saved.get("webapps"), project_directory, working_directory),
        copy_resources=parse_copy_resources(saved.get("copy_resources"), project_directory),
        polling=polling,
        config_file=config_file if config_file.exists() else None,
    )


def ensure_working_directory(config: LauncherConfig, logger: Optional[logging.Logger] = None) -> Path:
    logger = logger or get_logger()
    if not config.working_directory.exists():
        logger.debug("Creating devlauncher working directory at: %s", config.working_directory)
    config.working_directory.mkdir(parents=True, exist_ok=True)
    return config.working_directory
