"""Script injection with readiness checks and reply correlation.

Design Decision: One Bounded Retry Budget per Command
-----------------------------------------------------
Rationale: A command may wait on three conditions in turn: the surfaces
being ready, the automation page finishing its load, and the in-page bridge
object answering the liveness probe. All three draw from the same
``RetryBudget`` (10 retries, 0.5s apart by default), so a command is always
resolved within a bounded time.

Resolution:
1. Readiness exhausted -> ``NotReadyError``
2. Still loading when exhausted -> ``StillLoadingError``
3. Liveness probe erroring when exhausted -> ``BridgeNotInitializedError``
4. Bridge object missing when exhausted -> degraded mode: the script is
   injected anyway and the result is flagged ``InjectionOutcome.DEGRADED``

Correlated commands (scripts that report through
``window.hostBridge.postMessage`` and ``wait`` commands) are evaluated with a
no-value suffix and resolved only by a reply carrying the same commandId.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, Optional, Tuple

from ..config import TimingConfig
from ..exceptions import (
    BridgeError,
    BridgeNotInitializedError,
    CorrelationTimeoutError,
    NotReadyError,
    ScriptEvaluationError,
    StillLoadingError,
    SurfacesReleasedError,
)
from ..models.commands import InjectionOutcome, ResolutionMode, ScriptCommand, ScriptResult
from ..models.messages import ScriptReplyMessage
from ..models.surface import SurfaceId
from .bootstrap import LIVENESS_PROBE, NO_VALUE_SUFFIX, READY_PING, BootstrapLoader
from .controller import ControllerEvents
from .diagnostics import DiagnosticsSink, truncate
from .engine import BrowserEngine
from .retry import RetryBudget
from .surface_service import SurfaceManager
from .timers import TimerGroup

logger = logging.getLogger(__name__)


class ScriptInjector:
    """Runs script commands in the automation surface."""

    def __init__(
        self,
        surfaces: SurfaceManager,
        bootstrap: BootstrapLoader,
        controller: ControllerEvents,
        diagnostics: DiagnosticsSink,
        timings: TimingConfig,
    ):
        """Initialize script injector.

        Args:
            surfaces: Surface manager owning the engines
            bootstrap: Loader used to re-install the in-page bridge
            controller: Receiver for script results
            diagnostics: Telemetry sink
            timings: Retry and watchdog configuration
        """
        self.surfaces = surfaces
        self.bootstrap = bootstrap
        self.controller = controller
        self.diagnostics = diagnostics
        self.timings = timings
        self.timers = TimerGroup("injection")

        self._futures: Dict[str, asyncio.Future] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._awaiting_reply: Dict[str, Tuple[ScriptCommand, InjectionOutcome]] = {}
        self._resolved: Deque[str] = deque(maxlen=1000)

    @property
    def pending_count(self) -> int:
        return len(self._futures)

    @property
    def awaiting_reply(self) -> int:
        return len(self._awaiting_reply)

    async def inject(self, command: ScriptCommand) -> ScriptResult:
        """Execute a command and wait for its resolution.

        The result is also delivered to the controller. This coroutine never
        raises for injection failures; they are reported in the result.

        Args:
            command: Command to execute

        Returns:
            ScriptResult for the command
        """
        command_id = command.command_id
        if command_id in self._futures:
            result = ScriptResult.from_error(
                command_id, BridgeError(f"Command {command_id} is already in progress")
            )
            logger.error(result.error)
            return result

        logger.info(
            f"Executing {command.command_type.value} script for command {command_id} "
            f"({command.resolution_mode.value})"
        )
        future = asyncio.get_running_loop().create_future()
        self._futures[command_id] = future

        task = asyncio.ensure_future(self._execute(command))
        self._tasks[command_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(command_id, None))

        return await future

    async def _execute(self, command: ScriptCommand) -> None:
        budget = RetryBudget(self.timings.max_retries, self.timings.retry_delay)
        outcome = InjectionOutcome.NORMAL
        try:
            await self._wait_until_ready(command, budget)
            engine, outcome = await self._wait_for_bridge(command, budget)
            result = await self._dispatch(command, engine, outcome)
        except Exception as e:
            if not isinstance(e, BridgeError):
                logger.error(f"Unexpected error injecting command {command.command_id}: {e}")
            result = ScriptResult.from_error(command.command_id, e, outcome)

        if result is not None:
            self._resolve(result)

    async def _wait_until_ready(self, command: ScriptCommand, budget: RetryBudget) -> None:
        setup_attempted = False
        while True:
            if self.surfaces.is_ready():
                return

            if not setup_attempted and self.surfaces.view_attached:
                setup_attempted = True
                logger.info("Surfaces not ready but view attached, ensuring they exist")
                try:
                    await self.surfaces.ensure_surfaces()
                except Exception as e:
                    logger.error(f"Failed to set up surfaces: {e}")
                if self.surfaces.is_ready():
                    return

            if budget.exhausted:
                logger.error(f"Final readiness state: {self.surfaces.readiness_report()}")
                raise NotReadyError(
                    f"Surfaces not ready for script injection after {budget.max_retries} retries "
                    "- page may not be loaded"
                )
            logger.warning(
                f"Surfaces not ready for script injection, will retry "
                f"(attempt {budget.attempts + 1}/{budget.max_retries})"
            )
            await self._retry(command, budget, "surfaces not ready")

    async def _wait_for_bridge(self, command: ScriptCommand, budget: RetryBudget):
        while True:
            # Re-read every pass; the engine may be replaced or released while we sleep
            engine = self.surfaces.automation.engine
            if engine is None:
                raise NotReadyError("Automation surface not available")

            if engine.is_loading:
                if budget.exhausted:
                    raise StillLoadingError(
                        f"Automation surface still loading after {budget.max_retries} retries"
                    )
                logger.debug(
                    f"Automation surface still loading (attempt {budget.attempts + 1}/{budget.max_retries})"
                )
                await self._retry(command, budget, "automation surface loading")
                continue

            try:
                alive = await engine.evaluate(LIVENESS_PROBE)
            except Exception as e:
                logger.error(f"Error checking in-page bridge availability: {e}")
                if budget.exhausted:
                    raise BridgeNotInitializedError(f"Bridge liveness probe failed: {e}") from e
                await self._retry(command, budget, "liveness probe error")
                continue

            if alive is True:
                try:
                    await engine.evaluate(READY_PING)
                except Exception as e:
                    logger.error(f"Ready ping failed: {e}")
                return engine, InjectionOutcome.NORMAL

            if budget.exhausted:
                logger.error(
                    f"In-page bridge not ready after {budget.max_retries} retries, "
                    f"injecting command {command.command_id} anyway"
                )
                return engine, InjectionOutcome.DEGRADED

            logger.debug(
                f"In-page bridge not ready (attempt {budget.attempts + 1}/{budget.max_retries}), "
                "re-injecting bootstrap"
            )
            try:
                source = await self.bootstrap.render_bootstrap(SurfaceId.AUTOMATION, self.surfaces.global_script)
                await engine.evaluate(source)
            except Exception as e:
                logger.error(f"Error re-injecting bootstrap: {e}")
            await self._retry(command, budget, "bridge object missing")

    async def _retry(self, command: ScriptCommand, budget: RetryBudget, reason: str) -> None:
        self.diagnostics.injection_attempt(command.command_id, budget.attempts + 1, reason)
        command.retry_count = await budget.wait()

    async def _dispatch(
        self, command: ScriptCommand, engine: BrowserEngine, outcome: InjectionOutcome
    ) -> Optional[ScriptResult]:
        command_id = command.command_id

        if command.resolution_mode is ResolutionMode.DIRECT:
            try:
                value = await engine.evaluate(command.script)
            except Exception as e:
                logger.error(f"Script injection failed for {command_id}: {e}")
                raise ScriptEvaluationError(str(e)) from e
            logger.debug(f"Script injection completed for {command_id}")
            return ScriptResult.ok(command_id, value, outcome)

        # Registered before evaluation: the reply may arrive before evaluate returns
        self._awaiting_reply[command_id] = (command, outcome)
        try:
            await engine.evaluate(command.script + NO_VALUE_SUFFIX)
        except Exception as e:
            self._awaiting_reply.pop(command_id, None)
            logger.error(f"Correlated script injection failed for {command_id}: {e}")
            raise ScriptEvaluationError(str(e)) from e

        if command_id in self._awaiting_reply:
            logger.debug(f"Correlated script injected, waiting for reply to {command_id}")
            self.timers.schedule(command_id, self.timings.correlation_timeout, self._on_watchdog, command_id, outcome)
        return None

    def handle_reply(self, reply: ScriptReplyMessage) -> bool:
        """Resolve a correlated command from an out-of-band reply.

        Args:
            reply: Reply message posted by the page

        Returns:
            True if the reply resolved a pending command
        """
        command_id = reply.command_id
        awaiting = self._awaiting_reply.pop(command_id, None)
        if awaiting is None:
            if command_id in self._resolved:
                logger.warning(f"Dropping late reply for already resolved command {command_id}")
            else:
                logger.warning(f"Dropping reply for unknown command {command_id}")
            return False

        _, outcome = awaiting
        self.timers.cancel(command_id)
        logger.debug(f"{reply.reply_type.value} command result: success={reply.success}")
        if reply.success:
            result = ScriptResult.ok(command_id, reply.value, outcome)
        else:
            result = ScriptResult.from_error(command_id, ScriptEvaluationError(reply.error), outcome)
        self._resolve(result)
        return True

    def _on_watchdog(self, command_id: str, outcome: InjectionOutcome) -> None:
        if command_id not in self._awaiting_reply:
            return
        timeout = self.timings.correlation_timeout
        logger.warning(f"Correlated script timeout for command {command_id}, no reply received in {timeout}s")
        if not self.timings.fail_on_correlation_timeout:
            return
        self._awaiting_reply.pop(command_id, None)
        self._resolve(ScriptResult.from_error(
            command_id, CorrelationTimeoutError(f"No reply for command {command_id} within {timeout}s"), outcome
        ))

    def _resolve(self, result: ScriptResult) -> None:
        future = self._futures.pop(result.command_id, None)
        if future is None:
            logger.debug(f"Command {result.command_id} already resolved")
            return

        self._awaiting_reply.pop(result.command_id, None)
        self.timers.cancel(result.command_id)
        self._resolved.append(result.command_id)

        if not future.done():
            future.set_result(result)
        if not result.success:
            logger.error(f"Command {result.command_id} failed: {truncate(result.error, 200)}")
        self.diagnostics.injection_resolved(result.command_id, result.success, result.outcome.value, result.error)
        self.controller.on_script_result(result)

    def fail_all(self, reason: str = "Surfaces released") -> int:
        """Fail every pending command and stop in-flight injection work.

        Returns:
            Number of commands failed
        """
        command_ids = list(self._futures)
        for command_id in command_ids:
            self._resolve(ScriptResult.from_error(command_id, SurfacesReleasedError(reason)))

        for task in list(self._tasks.values()):
            task.cancel()
        self._tasks.clear()
        self.timers.cancel_all()
        self._awaiting_reply.clear()
        return len(command_ids)
