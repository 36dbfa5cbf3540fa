"""End-to-end bridge session against in-memory engines."""

import asyncio

import pytest

from automation_bridge.models.events import NavigationPhase
from automation_bridge.models.surface import SurfaceId

CONNECT_URL = "https://example.com/connect"
LOGIN_URL = "https://bank.example.com/login"
GLOBAL_SCRIPT = "window.flowConfig = {institution: 'example'};"


@pytest.mark.asyncio
async def test_full_session(bridge, factory, controller):
    """Present, navigate both surfaces, run commands, switch and close.

    Mirrors a typical flow: the interactive page asks for the automation
    surface, the controller drives a login page with correlated commands and
    the user finally closes the bridge.
    """
    # Present with a deferred URL
    await bridge.load_url(CONNECT_URL)
    await bridge.open()
    ui = factory.latest(SurfaceId.UI)
    assert ui.loads == [CONNECT_URL]
    assert controller.phases(SurfaceId.UI)[-1] == "finished"

    # Controller navigates the automation surface
    await bridge.update_global_script(GLOBAL_SCRIPT)
    automation = factory.latest(SurfaceId.AUTOMATION)
    await bridge.navigate_automation(LOGIN_URL, command_id="nav-1")
    assert automation.loads == [LOGIN_URL]

    # Page asks to show the automation surface
    ui.post({"type": "switchWebview"})
    await bridge.channel.drain()
    await bridge.dispatcher.settle()
    assert bridge.visibility.foreground is SurfaceId.AUTOMATION
    assert automation.input_enabled is True
    assert ui.input_enabled is False

    # Correlated command answered by the page
    def answer(script):
        automation.post({"type": "message", "data": {"commandId": "fill-1", "type": "injectScript",
                                                     "value": "filled"}})

    automation.script_handler = answer
    result = await asyncio.wait_for(
        bridge.inject_script("fill(); window.hostBridge.postMessage({commandId: 'fill-1', type: 'injectScript'})",
                             command_id="fill-1"),
        timeout=1,
    )
    assert result.success is True
    assert result.result == "filled"

    # State query reads the live location
    assert await bridge.current_browser_state() == {"url": LOGIN_URL}

    # Close is confirmed by the interactive page
    await bridge.close()
    assert bridge.visibility.foreground is SurfaceId.UI
    ui.post({"type": "CLOSE_CONFIRMED"})
    await bridge.channel.drain()
    assert controller.closed == 1

    status = bridge.get_status()
    assert status["presented"] is False
    assert status["pending_commands"] == 0


@pytest.mark.asyncio
async def test_global_script_change_recreates_automation_surface(bridge, factory):
    """A new global script replaces the automation engine and reloads its page."""
    # Setup
    await bridge.open()
    await bridge.navigate_automation(LOGIN_URL)
    original = factory.latest(SurfaceId.AUTOMATION)

    # Test
    recreated = await bridge.update_global_script(GLOBAL_SCRIPT)
    unchanged = await bridge.update_global_script(GLOBAL_SCRIPT)

    # Assert
    replacement = factory.latest(SurfaceId.AUTOMATION)
    assert recreated is True
    assert unchanged is False
    assert original.closed is True
    assert original.observer is None
    assert replacement is not original
    assert replacement.loads == [LOGIN_URL]
    assert GLOBAL_SCRIPT in factory.init_scripts[SurfaceId.AUTOMATION][1]


@pytest.mark.asyncio
async def test_user_agent_applies_to_new_and_live_surfaces(bridge, factory):
    # Setup
    await bridge.set_automation_user_agent("Agent/1.0")

    # Test
    await bridge.open()
    await bridge.set_automation_user_agent("Agent/2.0")
    await bridge.set_automation_user_agent("")

    # Assert
    assert factory.user_agents[SurfaceId.AUTOMATION] == "Agent/1.0"
    assert factory.user_agents[SurfaceId.UI] is None
    assert factory.latest(SurfaceId.AUTOMATION).user_agents == ["Agent/2.0", None]


@pytest.mark.asyncio
async def test_release_tears_down_and_fails_pending_work(bridge, factory, controller):
    """Releasing surfaces unloads both engines and fails outstanding commands."""
    # Setup
    factory.configure = lambda engine: setattr(engine, "auto_complete", False)
    await bridge.open()
    await bridge.navigate_automation(LOGIN_URL)
    ui, automation = factory.latest(SurfaceId.UI), factory.latest(SurfaceId.AUTOMATION)
    automation.finish(LOGIN_URL)
    pending = asyncio.ensure_future(bridge.inject_script(
        "window.hostBridge.postMessage({commandId: 'late', type: 'injectScript'})", command_id="late"
    ))
    for _ in range(100):
        if bridge.injector.awaiting_reply:
            break
        await asyncio.sleep(0.005)

    # Test
    await bridge.release_surfaces()
    result = await pending

    # Assert
    assert result.error_kind == "SurfacesReleasedError"
    assert ui.closed and automation.closed
    assert ui.blank_loads == 1 and automation.blank_loads == 1
    assert bridge.surfaces.automation.intended_url is None
    assert bridge.surfaces.has_surfaces() is False
    assert len(bridge.navigation.timers) == 0

    # Late engine callbacks are no longer observed
    automation.fail(LOGIN_URL)
    assert controller.navigation[-1].phase is not NavigationPhase.FAILED

    # Commands after release fail fast without recreating surfaces
    after = await bridge.inject_script("document.title")
    assert after.error_kind == "NotReadyError"
    assert len(factory.created) == 2


@pytest.mark.asyncio
async def test_shutdown_releases_backend(bridge, factory):
    await bridge.open()

    await bridge.shutdown()

    assert factory.shutdown_called is True
