"""
nanotimer configuration

YAML configuration for the timing engine and logging. Example:

    engine:
      type: process
      command: [/usr/local/bin/timer]
      grace_period_s: 0.05
      debug: false
    logging:
      level: INFO
      log_lifecycle: false
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import os
import shlex
import yaml

from nanotimer.engine.process import (
    DEFAULT_GRACE_PERIOD_S,
    EngineAdapter,
    EngineConfig,
    EngineProcess,
    default_engine_command,
)
from nanotimer.engine.pseudo import PseudoEngine


class EngineType(str, Enum):
    """Supported engine backends"""
    PROCESS = "process"
    PSEUDO = "pseudo"  # In-memory engine for testing


@dataclass
class LoggingConfig:
    level: str = "INFO"
    # Log engine start/exit at INFO instead of DEBUG
    log_lifecycle: bool = False


@dataclass
class TimerConfig:
    """Main nanotimer configuration"""
    engine_type: EngineType = EngineType.PROCESS
    # Engine startup command (argv)
    command: List[str] = field(default_factory=default_engine_command)
    workdir: Optional[str] = None
    grace_period_s: float = DEFAULT_GRACE_PERIOD_S
    debug: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            command=list(self.command),
            workdir=self.workdir,
            grace_period_s=self.grace_period_s,
            debug=self.debug,
            env=dict(self.env),
        )


def create_engine(config: TimerConfig) -> EngineAdapter:
    """Build the engine adapter selected by the configuration"""
    if config.engine_type == EngineType.PSEUDO:
        return PseudoEngine(auto=True)
    return EngineProcess(config.engine_config())


def _parse_command(value) -> List[str]:
    if value is None:
        return default_engine_command()
    if isinstance(value, str):
        return shlex.split(value)
    return [str(part) for part in value]


def load_config(config_path: str) -> TimerConfig:
    """
    Load nanotimer configuration from YAML file.

    Args:
        config_path: Path to config file

    Returns:
        TimerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    engine_data = data.get('engine', {}) or {}
    logging_data = data.get('logging', {}) or {}

    try:
        engine_type = EngineType(engine_data.get('type', 'process'))
    except ValueError:
        raise ValueError(f"Unknown engine type: {engine_data.get('type')}")

    return TimerConfig(
        engine_type=engine_type,
        command=_parse_command(engine_data.get('command')),
        workdir=engine_data.get('workdir'),
        grace_period_s=float(engine_data.get('grace_period_s', DEFAULT_GRACE_PERIOD_S)),
        debug=bool(engine_data.get('debug', False)),
        env={str(k): str(v) for k, v in (engine_data.get('env') or {}).items()},
        logging=LoggingConfig(
            level=str(logging_data.get('level', 'INFO')).upper(),
            log_lifecycle=bool(logging_data.get('log_lifecycle', False)),
        ),
    )


def save_config(config: TimerConfig, config_path: str) -> None:
    """
    Save nanotimer configuration to YAML file.

    Args:
        config: TimerConfig object to save
        config_path: Path to save config file
    """
    data = {
        'engine': {
            'type': config.engine_type.value,
            'command': list(config.command),
            'workdir': config.workdir,
            'grace_period_s': config.grace_period_s,
            'debug': config.debug,
            'env': dict(config.env),
        },
        'logging': {
            'level': config.logging.level,
            'log_lifecycle': config.logging.log_lifecycle,
        },
    }

    with open(config_path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False)
