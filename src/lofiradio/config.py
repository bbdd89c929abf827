"""Settings loaded from lofiradio.yaml."""

import dataclasses
import logging
import pathlib
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "lofiradio.yaml"

LOFI_GIRL_CHANNEL_ID = "UCSJ4gkVC6NrvII8umztf0Ow"


@dataclass
class Settings:
    """Runtime settings.

    Attributes:
        channel_id: Channel whose live streams are listed.
        channel_name: Shown as the artist of every stream.
        backend_url: Root URL of the Invidious instance.
        request_timeout: Per-request HTTP timeout in seconds.
        resolve_timeout: Bound for resolving one stream in seconds.
        player_cmd: mpv executable.
        max_workers: Threads available for blocking calls.
        log_file: Log file path (None disables file logging).
    """

    channel_id: str = LOFI_GIRL_CHANNEL_ID
    channel_name: str = "Lofi Girl"
    backend_url: str = "https://inv.nadeko.net"
    request_timeout: float = 15.0
    resolve_timeout: float = 30.0
    player_cmd: str = "mpv"
    max_workers: int = 4
    log_file: str | None = "lofiradio.log"


def load_settings_from_yaml(yaml_path: pathlib.Path | None = None) -> Settings:
    """
    Load settings from a YAML configuration file.

    The file holds a ``settings`` mapping; keys not given keep their defaults.

    Args:
        yaml_path: Path to lofiradio.yaml. If None, looks in the current directory.

    Returns:
        The loaded settings.

    Raises:
        FileNotFoundError: If the YAML file doesn't exist.
        ValueError: If the YAML format is invalid or has unknown keys.
        TypeError: If a value has the wrong type.
    """
    if yaml_path is None:
        yaml_path = pathlib.Path.cwd() / DEFAULT_CONFIG_NAME

    if not yaml_path.exists():
        msg = f"Settings file not found at {yaml_path}"
        raise FileNotFoundError(msg)

    with yaml_path.open() as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict) or "settings" not in data:
        msg = "YAML file must contain a 'settings' key with a mapping of options"
        raise ValueError(msg)

    values = data["settings"]
    if not isinstance(values, dict):
        msg = "'settings' must be a mapping of options"
        raise TypeError(msg)

    fields = {f.name: f for f in dataclasses.fields(Settings)}
    unknown = sorted(set(values) - set(fields))
    if unknown:
        msg = f"Unknown settings: {', '.join(unknown)}"
        raise ValueError(msg)

    for name, value in values.items():
        if not _matches_type(name, value):
            msg = f"Setting '{name}' has invalid value {value!r}"
            raise TypeError(msg)

    logger.debug("Loaded settings from %s", yaml_path)
    return Settings(**values)


def load_settings(yaml_path: pathlib.Path | None = None) -> Settings:
    """Load settings, falling back to defaults when no file exists."""
    try:
        return load_settings_from_yaml(yaml_path)
    except FileNotFoundError:
        if yaml_path is not None:
            raise
        logger.debug("No %s found, using default settings", DEFAULT_CONFIG_NAME)
        return Settings()


def _matches_type(name: str, value: object) -> bool:
    default = getattr(Settings(), name)
    if value is None:
        return name == "log_file"
    if isinstance(default, bool) or isinstance(value, bool):
        return isinstance(default, bool) and isinstance(value, bool)
    if isinstance(default, float):
        return isinstance(value, int | float)
    return isinstance(value, type(default))
