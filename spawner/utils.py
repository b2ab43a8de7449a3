"""Configuration helpers for the agent spawner."""

from __future__ import annotations

import os
from configparser import ConfigParser, Error as ConfigParserError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .proc import DEFAULT_TARGET, resolve_target

CONFIG_ROOT = Path(__file__).resolve().parent.parent / "config"
DEFAULT_CONFIG_FILE = CONFIG_ROOT / "launcher.ini"


class ConfigError(ValueError):
    """Raised when launcher.ini holds a value the spawner cannot use."""


class ConfigLoader:
    """Simple configuration loader that works with .ini files."""

    def __init__(self, *filenames: str | os.PathLike[str]) -> None:
        self.parser = ConfigParser()
        files: List[str] = []
        if not filenames:
            filenames = (DEFAULT_CONFIG_FILE,)
        for filename in filenames:
            path = Path(filename)
            if path.exists():
                files.append(str(path))
        self.files = files
        if files:
            try:
                self.parser.read(files)
            except ConfigParserError as exc:
                raise ConfigError(f"cannot parse {files}: {exc}") from exc

    def get(self, section: str, option: str, fallback: Optional[str] = None) -> str:
        if self.parser.has_option(section, option):
            return self.parser.get(section, option)
        if fallback is not None:
            return fallback
        raise KeyError(f"Missing configuration option {section}.{option}")

    def getint(self, section: str, option: str, fallback: Optional[int] = None) -> int:
        if self.parser.has_option(section, option):
            try:
                return self.parser.getint(section, option)
            except ValueError as exc:
                raise ConfigError(f"{section}.{option} must be an integer") from exc
        if fallback is not None:
            return fallback
        raise KeyError(f"Missing configuration option {section}.{option}")

    def section(self, name: str) -> Dict[str, str]:
        if not self.parser.has_section(name):
            return {}
        return {k: v for k, v in self.parser.items(name)}


@dataclass
class LauncherConfig:
    total: int = 65
    max_concurrent: int = 20
    stagger_ms: int = 2000
    settle_ms: int = 500
    host: str = "0.0.0.0"
    port: int = 3000
    agent_target: str = DEFAULT_TARGET
    agent_params: Dict[str, str] = field(default_factory=dict)

    @property
    def stagger_seconds(self) -> float:
        return self.stagger_ms / 1000.0

    @property
    def settle_seconds(self) -> float:
        return self.settle_ms / 1000.0

    def validate(self) -> "LauncherConfig":
        if self.total < 0:
            raise ConfigError("scheduler.total must be >= 0")
        if self.max_concurrent < 1:
            raise ConfigError("scheduler.max_concurrent must be >= 1")
        if self.stagger_ms < 0:
            raise ConfigError("scheduler.stagger_ms must be >= 0")
        if self.settle_ms < 0:
            raise ConfigError("scheduler.settle_ms must be >= 0")
        if not 1 <= self.port <= 65535:
            raise ConfigError("status.port must be between 1 and 65535")
        try:
            resolve_target(self.agent_target)
        except (ImportError, ValueError) as exc:
            raise ConfigError(f"agent.target {self.agent_target!r} cannot be loaded: {exc}") from exc
        return self

    @classmethod
    def from_loader(cls, loader: ConfigLoader) -> "LauncherConfig":
        defaults = cls()
        agent = loader.section("agent")
        target = agent.pop("target", defaults.agent_target)
        config = cls(
            total=loader.getint("scheduler", "total", fallback=defaults.total),
            max_concurrent=loader.getint("scheduler", "max_concurrent", fallback=defaults.max_concurrent),
            stagger_ms=loader.getint("scheduler", "stagger_ms", fallback=defaults.stagger_ms),
            settle_ms=loader.getint("scheduler", "settle_ms", fallback=defaults.settle_ms),
            host=loader.get("status", "host", fallback=defaults.host),
            port=loader.getint("status", "port", fallback=defaults.port),
            agent_target=target,
            agent_params=agent,
        )
        return config.validate()


def load_launcher_config(path: Path) -> LauncherConfig:
    return LauncherConfig.from_loader(ConfigLoader(path))


__all__ = ["ConfigError", "ConfigLoader", "LauncherConfig", "load_launcher_config"]
