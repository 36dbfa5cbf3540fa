"""Tests for the script injection protocol."""

import asyncio

import pytest

from automation_bridge.models.commands import CommandType, InjectionOutcome
from automation_bridge.models.surface import SurfaceId
from automation_bridge.services.bootstrap import LIVENESS_PROBE, NO_VALUE_SUFFIX, READY_PING

URL = "https://example.com/login"
REPLYING_SCRIPT = "window.hostBridge.postMessage({commandId: 'cmd', type: 'injectScript', value: 1})"


async def wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def reply(command_id: str, value=None, error=None, reply_type: str = "injectScript") -> dict:
    data = {"commandId": command_id, "type": reply_type, "value": value}
    if error is not None:
        data["error"] = error
    return {"type": "message", "data": data}


async def open_at(bridge, url: str = URL) -> None:
    await bridge.open()
    await bridge.navigate_automation(url)


class TestReadiness:
    """Test the readiness and liveness phases."""

    @pytest.mark.asyncio
    async def test_not_ready_without_automation_url(self, bridge, controller):
        """Surfaces without a document fail with NotReadyError after the budget."""
        # Setup
        await bridge.open()

        # Test
        result = await bridge.inject_script("document.title", command_id="c-1")

        # Assert
        assert result.success is False
        assert result.error_kind == "NotReadyError"
        assert "after 3 retries" in result.error
        assert controller.results == [result]

    @pytest.mark.asyncio
    async def test_not_ready_when_never_presented(self, bridge, factory):
        """Without an attached view no surfaces are created for the command."""
        result = await bridge.inject_script("document.title")

        assert result.error_kind == "NotReadyError"
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_still_loading(self, bridge, factory):
        # Setup
        factory.configure = lambda engine: setattr(engine, "auto_complete", False)
        await open_at(bridge)

        # Test
        result = await bridge.inject_script("document.title")

        # Assert
        assert result.error_kind == "StillLoadingError"
        bridge.navigation.reset()

    @pytest.mark.asyncio
    async def test_failed_load_still_counts_as_ready(self, bridge, factory):
        """The intended URL of a failed navigation satisfies readiness."""
        # Setup
        factory.configure = lambda engine: setattr(engine, "auto_complete", False)
        await bridge.open()
        engine = factory.latest(SurfaceId.AUTOMATION)
        engine.script_results["document.title"] = "Offline"
        await bridge.navigate_automation(URL)
        engine.fail(URL)

        # Test
        result = await bridge.inject_script("document.title")

        # Assert
        assert result.success is True
        assert result.result == "Offline"

    @pytest.mark.asyncio
    async def test_missing_bridge_object_degrades(self, bridge, factory):
        """When the in-page bridge never appears the script runs anyway, flagged degraded."""
        # Setup
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        engine.bridge_alive = False
        engine.script_results["document.title"] = "Login"

        # Test
        result = await bridge.inject_script("document.title", command_id="c-2")

        # Assert
        assert result.success is True
        assert result.outcome is InjectionOutcome.DEGRADED
        assert result.result == "Login"
        assert engine.evaluated.count(LIVENESS_PROBE) == 4
        reinjected = [s for s in engine.evaluated if "window.hostBridge = {" in s]
        assert len(reinjected) == 3

    @pytest.mark.asyncio
    async def test_degraded_correlated_script_keeps_outcome(self, bridge, factory):
        """A reply to a command injected without the in-page bridge is still flagged degraded."""
        # Setup
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        engine.bridge_alive = False

        def answer(script):
            if script.endswith(NO_VALUE_SUFFIX):
                engine.post(reply("c-9", value="sent"))

        engine.script_handler = answer

        # Test
        result = await asyncio.wait_for(
            bridge.inject_script(REPLYING_SCRIPT, command_id="c-9"), timeout=1
        )

        # Assert
        assert result.success is True
        assert result.result == "sent"
        assert result.outcome is InjectionOutcome.DEGRADED

    @pytest.mark.asyncio
    async def test_degraded_correlated_error_reply_keeps_outcome(self, bridge, factory):
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        engine.bridge_alive = False
        engine.script_handler = lambda script: (
            engine.post(reply("c-10", error="boom")) if script.endswith(NO_VALUE_SUFFIX) else None
        )

        result = await asyncio.wait_for(
            bridge.inject_script(REPLYING_SCRIPT, command_id="c-10"), timeout=1
        )

        assert result.success is False
        assert result.outcome is InjectionOutcome.DEGRADED

    @pytest.mark.asyncio
    async def test_liveness_probe_errors(self, bridge, factory):
        await open_at(bridge)
        factory.latest(SurfaceId.AUTOMATION).bridge_alive = RuntimeError("Execution context was destroyed")

        result = await bridge.inject_script("document.title")

        assert result.error_kind == "BridgeNotInitializedError"
        assert "Execution context was destroyed" in result.error


class TestDirectScripts:
    """Test scripts resolved from their completion value."""

    @pytest.mark.asyncio
    async def test_direct_script_returns_value(self, bridge, factory):
        # Setup
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        engine.script_results["document.title"] = "Sign in"

        # Test
        result = await bridge.inject_script("document.title", command_id="c-3")

        # Assert
        assert result.success is True
        assert result.result == "Sign in"
        assert result.outcome is InjectionOutcome.NORMAL
        assert READY_PING in engine.evaluated
        assert bridge.injector.pending_count == 0

    @pytest.mark.asyncio
    async def test_evaluation_error(self, bridge, factory):
        await open_at(bridge)

        def explode(script):
            raise RuntimeError("ReferenceError: foo is not defined")

        factory.latest(SurfaceId.AUTOMATION).script_handler = explode

        result = await bridge.inject_script("foo()")

        assert result.error_kind == "ScriptEvaluationError"
        assert "foo is not defined" in result.error

    @pytest.mark.asyncio
    async def test_duplicate_command_id_rejected(self, bridge, factory):
        """A second command with an in-flight id is refused immediately."""
        # Setup
        await open_at(bridge)
        first = asyncio.ensure_future(bridge.inject_script(REPLYING_SCRIPT, command_id="dup"))
        await wait_for(lambda: bridge.injector.awaiting_reply == 1)

        # Test
        second = await bridge.inject_script("document.title", command_id="dup")

        # Assert
        assert second.success is False
        assert "already in progress" in second.error
        assert not first.done()
        await bridge.release_surfaces()
        assert (await first).error_kind == "SurfacesReleasedError"


class TestCorrelatedScripts:
    """Test scripts that report through the out-of-band channel."""

    @pytest.mark.asyncio
    async def test_resolved_only_by_matching_reply(self, bridge, factory, controller):
        """Replies for other commands do not resolve a pending command."""
        # Setup
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        task = asyncio.ensure_future(bridge.inject_script(REPLYING_SCRIPT, command_id="cmd"))
        await wait_for(lambda: bridge.injector.awaiting_reply == 1)

        # Test
        engine.post(reply("someone-else", value="wrong"))
        await bridge.channel.drain()
        assert not task.done()
        engine.post(reply("cmd", value={"clicked": True}))
        result = await asyncio.wait_for(task, timeout=1)

        # Assert
        assert result.success is True
        assert result.result == {"clicked": True}
        assert REPLYING_SCRIPT + NO_VALUE_SUFFIX in engine.evaluated
        assert [r.command_id for r in controller.results] == ["cmd"]

    @pytest.mark.asyncio
    async def test_reply_during_evaluation(self, bridge, factory):
        """A reply posted while the script is still being evaluated is not lost."""
        # Setup
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        engine.script_handler = lambda script: engine.post(reply("fast", value="done"))

        # Test
        result = await asyncio.wait_for(
            bridge.inject_script(REPLYING_SCRIPT, command_id="fast"), timeout=1
        )

        # Assert
        assert result.success is True
        assert result.result == "done"

    @pytest.mark.asyncio
    async def test_wait_command_error_reply(self, bridge, factory):
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        engine.script_handler = lambda script: engine.post(
            reply("w-1", error="Timed out waiting for #submit", reply_type="wait")
        )

        result = await asyncio.wait_for(
            bridge.inject_script("waitFor('#submit')", command_id="w-1", command_type=CommandType.WAIT),
            timeout=1,
        )

        assert result.success is False
        assert result.error_kind == "ScriptEvaluationError"
        assert "#submit" in result.error

    @pytest.mark.asyncio
    async def test_watchdog_fails_silent_command_and_drops_late_reply(self, bridge, factory, controller):
        """No reply within the watchdog fails the command; a later reply is ignored."""
        # Setup
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)

        # Test
        result = await asyncio.wait_for(
            bridge.inject_script(REPLYING_SCRIPT, command_id="slow"), timeout=1
        )
        engine.post(reply("slow", value="too late"))
        await bridge.channel.drain()

        # Assert
        assert result.error_kind == "CorrelationTimeoutError"
        assert len(controller.results) == 1
        assert bridge.injector.awaiting_reply == 0

    @pytest.mark.asyncio
    async def test_watchdog_can_only_warn(self, bridge, factory):
        """With failing disabled the command keeps waiting for its reply."""
        # Setup
        bridge.config.timings.fail_on_correlation_timeout = False
        await open_at(bridge)
        engine = factory.latest(SurfaceId.AUTOMATION)
        task = asyncio.ensure_future(bridge.inject_script(REPLYING_SCRIPT, command_id="patient"))

        # Test
        await asyncio.sleep(0.2)
        assert not task.done()
        engine.post(reply("patient", value=7))
        result = await asyncio.wait_for(task, timeout=1)

        # Assert
        assert result.result == 7
