from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import RoostError

ENV_CONFIG_PATH = "ROOST_CONFIG"

LOCAL_CONFIG_NAME = Path("roost.toml")
HOME_CONFIG_PATH = Path.home() / ".roost" / "roost.toml"


class ConfigError(RoostError):
    pass


@dataclass(frozen=True, slots=True)
class FloodSettings:
    ceiling: float = 20.0
    decay_per_s: float = 1.0
    breach_limit: int = 0


@dataclass(frozen=True, slots=True)
class EngineSettings:
    tick_interval_s: float = 1.0
    cancel_scheduled_on_removal: bool = False
    blacklist_list: str = "blacklist"
    session_timeout_s: float = 0.0
    flood: FloodSettings = field(default_factory=FloodSettings)
    permissions: dict[str, frozenset[int]] = field(default_factory=dict)


def _config_candidates() -> list[Path]:
    candidates = [Path.cwd() / LOCAL_CONFIG_NAME, HOME_CONFIG_PATH]
    if candidates[0] == candidates[1]:
        return [candidates[0]]
    return candidates


def _read_config(cfg_path: Path) -> dict:
    try:
        raw = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Missing config file {cfg_path}.") from None
    except OSError as e:
        raise ConfigError(f"Failed to read config file {cfg_path}: {e}") from e
    try:
        return tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Malformed TOML in {cfg_path}: {e}") from None


def load_config(path: str | Path | None = None) -> tuple[dict, Path]:
    """Load the engine config.

    An explicit path wins, then the ROOST_CONFIG environment variable, then
    ./roost.toml and ~/.roost/roost.toml.
    """
    if path:
        cfg_path = Path(path).expanduser()
        return _read_config(cfg_path), cfg_path

    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path and env_path.strip():
        cfg_path = Path(env_path.strip()).expanduser()
        return _read_config(cfg_path), cfg_path

    for candidate in _config_candidates():
        if candidate.is_file():
            return _read_config(candidate), candidate

    raise ConfigError("Missing roost config.")


def _table(config: dict, name: str, config_path: Path) -> dict[str, Any]:
    value = config.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid `{name}` in {config_path}; expected a table.")
    return value


def _number(
    table: dict[str, Any],
    key: str,
    default: float,
    *,
    where: str,
    config_path: Path,
) -> float:
    value = table.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(
            f"Invalid `{where}.{key}` in {config_path}; expected a number."
        )
    if value < 0:
        raise ConfigError(
            f"Invalid `{where}.{key}` in {config_path}; expected a non-negative number."
        )
    return float(value)


def _parse_flood(config: dict, config_path: Path) -> FloodSettings:
    table = _table(config, "flood", config_path)
    defaults = FloodSettings()
    ceiling = _number(
        table, "ceiling", defaults.ceiling, where="flood", config_path=config_path
    )
    if ceiling <= 0:
        raise ConfigError(
            f"Invalid `flood.ceiling` in {config_path}; expected a positive number."
        )
    breach_limit = table.get("breach_limit", defaults.breach_limit)
    if isinstance(breach_limit, bool) or not isinstance(breach_limit, int):
        raise ConfigError(
            f"Invalid `flood.breach_limit` in {config_path}; expected an integer."
        )
    return FloodSettings(
        ceiling=ceiling,
        decay_per_s=_number(
            table,
            "decay_per_s",
            defaults.decay_per_s,
            where="flood",
            config_path=config_path,
        ),
        breach_limit=max(0, breach_limit),
    )


def _parse_permissions(
    config: dict, config_path: Path
) -> dict[str, frozenset[int]]:
    table = _table(config, "permissions", config_path)
    lists: dict[str, frozenset[int]] = {}
    for name, members in table.items():
        if not isinstance(members, list) or any(
            isinstance(item, bool) or not isinstance(item, int) for item in members
        ):
            raise ConfigError(
                f"Invalid `permissions.{name}` in {config_path}; "
                "expected a list of integer ids."
            )
        lists[name] = frozenset(members)
    return lists


def parse_settings(config: dict, config_path: Path) -> EngineSettings:
    engine = _table(config, "engine", config_path)
    session = _table(config, "session", config_path)
    defaults = EngineSettings()

    cancel_on_removal = engine.get(
        "cancel_scheduled_on_removal", defaults.cancel_scheduled_on_removal
    )
    if not isinstance(cancel_on_removal, bool):
        raise ConfigError(
            f"Invalid `engine.cancel_scheduled_on_removal` in {config_path}; "
            "expected a boolean."
        )
    blacklist_list = engine.get("blacklist_list", defaults.blacklist_list)
    if not isinstance(blacklist_list, str) or not blacklist_list.strip():
        raise ConfigError(
            f"Invalid `engine.blacklist_list` in {config_path}; "
            "expected a non-empty string."
        )
    tick_interval = _number(
        engine,
        "tick_interval_s",
        defaults.tick_interval_s,
        where="engine",
        config_path=config_path,
    )
    if tick_interval <= 0:
        raise ConfigError(
            f"Invalid `engine.tick_interval_s` in {config_path}; "
            "expected a positive number."
        )

    return EngineSettings(
        tick_interval_s=tick_interval,
        cancel_scheduled_on_removal=cancel_on_removal,
        blacklist_list=blacklist_list.strip(),
        session_timeout_s=_number(
            session,
            "timeout_s",
            defaults.session_timeout_s,
            where="session",
            config_path=config_path,
        ),
        flood=_parse_flood(config, config_path),
        permissions=_parse_permissions(config, config_path),
    )


def load_settings(path: str | Path | None = None) -> tuple[EngineSettings, Path]:
    config, config_path = load_config(path)
    return parse_settings(config, config_path), config_path
