"""Services for automation-bridge."""

from .bootstrap import BootstrapLoader
from .bridge import AutomationBridge
from .control_service import ControlService
from .controller import ControllerEvents, GuardedController
from .diagnostics import DiagnosticsSink, LoggingDiagnostics
from .engine import BrowserEngine, EngineFactory, EngineObserver
from .injection_service import ScriptInjector
from .mcp_service import MCPService
from .message_channel import MessageChannel
from .navigation_service import NavigationTracker
from .playwright_engine import PlaywrightEngine, PlaywrightEngineFactory
from .surface_service import SurfaceManager
from .visibility_service import VisibilityArbiter
from .websocket_service import WebSocketService

__all__ = [
    "AutomationBridge",
    "BootstrapLoader",
    "BrowserEngine",
    "ControlService",
    "ControllerEvents",
    "DiagnosticsSink",
    "EngineFactory",
    "EngineObserver",
    "GuardedController",
    "LoggingDiagnostics",
    "MCPService",
    "MessageChannel",
    "NavigationTracker",
    "PlaywrightEngine",
    "PlaywrightEngineFactory",
    "ScriptInjector",
    "SurfaceManager",
    "VisibilityArbiter",
    "WebSocketService",
]
