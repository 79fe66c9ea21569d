"""
Timing engine adapters.

Contains:
- EngineProcess: drives the external engine binary over pipes
- PseudoEngine: in-memory engine for tests and machines without the binary
"""

from .process import (
    EngineAdapter,
    EngineConfig,
    EngineProcess,
    ENGINE_ENV_VAR,
    default_engine_command,
)
from .pseudo import PseudoEngine

__all__ = [
    'EngineAdapter',
    'EngineConfig',
    'EngineProcess',
    'ENGINE_ENV_VAR',
    'PseudoEngine',
    'default_engine_command',
]
