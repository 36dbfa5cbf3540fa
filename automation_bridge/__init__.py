"""automation-bridge - dual-surface browser controller for scripted automation."""

from ._version import __version__
from .config import BridgeConfig, load_config
from .exceptions import BridgeError
from .models import (
    CommandType,
    NavigationEvent,
    NavigationPhase,
    ScriptCommand,
    ScriptResult,
    SurfaceId,
)
from .services import AutomationBridge, ControllerEvents

__author__ = "automation-bridge Team"

__all__ = [
    # Bridge
    'AutomationBridge',
    'ControllerEvents',
    # Config
    'BridgeConfig',
    'load_config',
    # Models
    'SurfaceId',
    'CommandType',
    'ScriptCommand',
    'ScriptResult',
    'NavigationEvent',
    'NavigationPhase',
    # Errors
    'BridgeError',
    # Version
    '__version__'
]
