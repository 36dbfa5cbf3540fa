"""Data models for automation-bridge."""

from .commands import CommandType, InjectionOutcome, ResolutionMode, ScriptCommand, ScriptResult
from .events import AppMessage, NavigationEvent, NavigationPhase, VisibilityChanged
from .messages import BridgeMessage, MessageType, NavigationMethod, parse_bridge_message
from .state import BackNavigationGate, CloseConfirmationState, VisibilityState
from .surface import BrowserSurface, NavigationState, SurfaceId

__all__ = [
    'SurfaceId',
    'NavigationState',
    'BrowserSurface',
    'CommandType',
    'ResolutionMode',
    'InjectionOutcome',
    'ScriptCommand',
    'ScriptResult',
    'MessageType',
    'NavigationMethod',
    'BridgeMessage',
    'parse_bridge_message',
    'NavigationPhase',
    'NavigationEvent',
    'VisibilityChanged',
    'AppMessage',
    'VisibilityState',
    'CloseConfirmationState',
    'BackNavigationGate',
]
