"""
Enforcement Control Plane

This package wires the core components into a running engine:
- InclusionEngine: single owned service object, the only mutation surface
- EngineSettings: runtime configuration (defaults, .env, environment)
- EngineStateStore: durable, schema-validated snapshot of engine state
"""

from .engine import InclusionEngine
from .settings import EngineSettings, InclusionPolicy, load_settings
from .state_store import EngineStateStore

__all__ = [
    # Engine
    'InclusionEngine',
    # Settings
    'EngineSettings',
    'InclusionPolicy',
    'load_settings',
    # Persistence
    'EngineStateStore',
]
