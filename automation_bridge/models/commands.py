"""Script command and result models."""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

# Scripts calling the in-page post mechanism report their result out of band
OUT_OF_BAND_MARKER = "window.hostBridge.postMessage"


class CommandType(str, Enum):
    """Command kinds issued by the controller."""

    NAVIGATE = "navigate"
    CLICK = "click"
    INPUT = "input"
    WAIT = "wait"
    INJECT_SCRIPT = "injectScript"
    DONE = "done"


class ResolutionMode(str, Enum):
    """How a script command obtains its result."""

    DIRECT = "direct"
    CORRELATED = "correlated"


class InjectionOutcome(str, Enum):
    """How an injection was carried out."""

    NORMAL = "normal"
    DEGRADED = "degraded"


@dataclass
class ScriptCommand:
    """A script to execute in the automation surface.

    Attributes:
        script: JavaScript source to evaluate
        command_type: Kind of command issued by the controller
        command_id: Unique identifier used to correlate replies
        retry_count: Number of retries spent so far
        created_at: Creation time (epoch seconds)
    """

    script: str
    command_type: CommandType = CommandType.INJECT_SCRIPT
    command_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    retry_count: int = 0
    created_at: float = field(default_factory=time.time)

    @property
    def resolution_mode(self) -> ResolutionMode:
        if OUT_OF_BAND_MARKER in self.script or self.command_type is CommandType.WAIT:
            return ResolutionMode.CORRELATED
        return ResolutionMode.DIRECT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScriptCommand":
        """Create a command from a controller payload.

        Args:
            data: Dictionary with ``script`` and optional ``commandId``/``commandType``

        Returns:
            ScriptCommand instance

        Raises:
            ValueError: If the script is missing or the command type is unknown
        """
        script = data.get("script")
        if not isinstance(script, str) or not script:
            raise ValueError("Command payload requires a non-empty 'script'")

        kwargs: Dict[str, Any] = {
            "script": script,
            "command_type": CommandType(data.get("commandType", CommandType.INJECT_SCRIPT.value)),
        }
        if data.get("commandId"):
            kwargs["command_id"] = str(data["commandId"])
        return cls(**kwargs)


@dataclass
class ScriptResult:
    """Resolution of a script command, delivered to the controller."""

    command_id: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    outcome: InjectionOutcome = InjectionOutcome.NORMAL

    @classmethod
    def ok(
        cls, command_id: str, result: Any = None, outcome: InjectionOutcome = InjectionOutcome.NORMAL
    ) -> "ScriptResult":
        return cls(command_id=command_id, success=True, result=result, outcome=outcome)

    @classmethod
    def from_error(
        cls, command_id: str, error: Exception, outcome: InjectionOutcome = InjectionOutcome.NORMAL
    ) -> "ScriptResult":
        return cls(
            command_id=command_id,
            success=False,
            error=str(error),
            error_kind=type(error).__name__,
            outcome=outcome,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "commandId": self.command_id,
            "success": self.success,
            "outcome": self.outcome.value,
        }
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
            data["errorKind"] = self.error_kind
        return data
