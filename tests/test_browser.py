import asyncio
import dataclasses

import pytest

from conftest import PNG_B64, FakePage
from uidriver.browser import BrowserBackend, normalize_key
from uidriver.models import ActionParams, Coordinate
from uidriver.notifications import (
    ACTION_PERFORMED,
    BROWSER_ACTION_ERROR,
    INPUT_FOCUSED,
    LOADING_STATE_UPDATE,
    PAGE_READY,
    URL_CHANGE,
)
from uidriver.perception import (
    ELEMENT_AT_POINT_JS,
    FOCUS_AT_POINT_JS,
    HAS_FOCUS_JS,
    LOADING_STATE_JS,
    SUBMIT_FORM_JS,
)
from uidriver.session import BrowserSession


@pytest.fixture
def backend(browser_settings, broadcaster):
    return BrowserBackend(browser_settings, broadcaster)


@pytest.fixture
def session(page):
    return BrowserSession(page=page, last_url=page.url)


def events(sub):
    return [(n.event, n.payload) for n in sub.drain()]


async def test_click_without_element_reports_error_and_does_not_click(backend, session, page, broadcaster):
    page.on(ELEMENT_AT_POINT_JS, None)
    sub = broadcaster.subscribe()

    response = await backend.execute_action(session, ActionParams("click", coordinate=Coordinate(10, 20)))

    assert response.status == "error"
    assert response.message == "No element found at specified coordinates"
    assert page.mouse.clicks == []
    assert events(sub) == [
        (
            BROWSER_ACTION_ERROR,
            {
                "message": "No element found at specified coordinates",
                "action": "click",
                "url": "https://start.example/",
            },
        )
    ]


async def test_click_on_input_announces_focus(backend, session, page, broadcaster):
    page.on(ELEMENT_AT_POINT_JS, {"tagName": "input", "isInput": True, "isOffScreen": False})
    sub = broadcaster.subscribe()

    response = await backend.execute_action(session, ActionParams("click", coordinate=Coordinate(40, 50)))

    assert response.ok
    assert response.message == "Click action performed successfully"
    assert response.screenshot == PNG_B64
    assert page.mouse.clicks == [(40, 50)]
    assert session.focused_input == Coordinate(40, 50)
    assert events(sub) == [
        (INPUT_FOCUSED, {"x": 40, "y": 50}),
        (ACTION_PERFORMED, None),
    ]


async def test_click_with_navigation_tracks_url(backend, session, page, broadcaster):
    page.on(ELEMENT_AT_POINT_JS, {"tagName": "a", "isInput": False, "isOffScreen": False})
    page.navigate_to = "https://next.example/"
    sub = broadcaster.subscribe()

    response = await backend.execute_action(session, ActionParams("click", coordinate=Coordinate(5, 5)))

    assert response.message == "Click performed with navigation"
    assert session.last_url == "https://next.example/"
    assert (URL_CHANGE, "https://next.example/") in events(sub)


async def test_click_asks_for_scroll_into_view(backend, session, page):
    page.on(ELEMENT_AT_POINT_JS, {"tagName": "button", "isInput": False, "isOffScreen": True})

    await backend.execute_action(session, ActionParams("click", coordinate=Coordinate(5, 700)))

    script, arg = page.evaluations[0]
    assert script == ELEMENT_AT_POINT_JS
    assert arg == {"x": 5, "y": 700, "scroll": True}


async def test_type_clicks_when_target_is_not_focusable(backend, session, page):
    page.on(FOCUS_AT_POINT_JS, False)

    response = await backend.execute_action(
        session, ActionParams("type", coordinate=Coordinate(30, 30), text="hello")
    )

    assert response.message == "Type action performed successfully"
    assert page.timeline == [("mouse.click", 30, 30), ("keyboard.type", "hello")]
    assert page.keyboard.typed == [("hello", 10)]


async def test_type_without_element_fails(backend, session, page):
    page.on(FOCUS_AT_POINT_JS, None)

    response = await backend.execute_action(
        session, ActionParams("type", coordinate=Coordinate(30, 30), text="hello")
    )

    assert response.status == "error"
    assert page.keyboard.typed == []


async def test_type_returns_to_last_focused_input(backend, session, page):
    session.focused_input = Coordinate(12, 34)
    page.on(HAS_FOCUS_JS, False)

    await backend.execute_action(session, ActionParams("type", text="abc"))

    assert page.timeline == [("mouse.click", 12, 34), ("keyboard.type", "abc")]


async def test_key_press_normalizes_modifier(backend, session, page):
    response = await backend.execute_action(session, ActionParams("keyPress", key="control+a"))

    assert response.message == "Keypress action performed successfully"
    assert page.keyboard.pressed == [("ControlOrMeta+a", 20)]


@pytest.mark.parametrize(
    "key, expected",
    [
        ("Enter", "Enter"),
        ("ctrl+c", "ControlOrMeta+c"),
        ("cmd+shift+z", "Meta+Shift+z"),
        ("esc", "Escape"),
        ("ArrowDown", "ArrowDown"),
    ],
)
def test_normalize_key(key, expected):
    assert normalize_key(key) == expected


async def test_scroll_direction(backend, session, page):
    await backend.execute_action(session, ActionParams("scroll", direction="up"))
    await backend.execute_action(session, ActionParams("scroll_down"))

    assert page.mouse.wheels == [(0, -200), (0, 200)]


async def test_hover_moves_pointer(backend, session, page):
    page.on(ELEMENT_AT_POINT_JS, {"tagName": "button", "isInput": False, "isOffScreen": False})

    response = await backend.execute_action(session, ActionParams("hover", coordinate=Coordinate(7, 8)))

    assert response.message == "Hover performed at (7,8) over button"
    assert page.mouse.moves == [(7, 8)]
    assert session.last_hover == Coordinate(7, 8)


async def test_back_emits_url_change(backend, session, page, broadcaster):
    page.history.append("https://previous.example/")
    sub = broadcaster.subscribe()

    response = await backend.execute_action(session, ActionParams("back"))

    assert response.message == "Navigated back successfully"
    assert events(sub)[0] == (URL_CHANGE, "https://previous.example/")


async def test_get_url(backend, session):
    response = await backend.execute_action(session, ActionParams("getUrl"))
    assert response.message == "Retrieved URL: https://start.example/"


async def test_actions_before_launch_are_rejected(backend, broadcaster):
    sub = broadcaster.subscribe()

    response = await backend.execute_action(BrowserSession(), ActionParams("getUrl"))

    assert response.status == "error"
    assert response.message == "Browser not launched"
    assert events(sub) == [
        (BROWSER_ACTION_ERROR, {"message": "Browser not launched", "action": "getUrl", "url": None})
    ]


async def test_detect_loading_without_indicators(backend, session, page, broadcaster):
    page.on(LOADING_STATE_JS, {"isLoading": False, "progress": None})
    sub = broadcaster.subscribe()

    response = await backend.execute_action(session, ActionParams("detectLoading"))

    assert response.message == "No loading indicators detected"
    assert events(sub) == [(PAGE_READY, {"url": session.last_url})]
    assert not session.loading_timer.active


async def test_loading_poll_runs_until_indicator_disappears(backend, session, page, broadcaster):
    states = iter([
        {"isLoading": True, "progress": 40},
        {"isLoading": True, "progress": 80},
        {"isLoading": False, "progress": None},
    ])
    page.on(LOADING_STATE_JS, lambda selectors: next(states))
    sub = broadcaster.subscribe()

    response = await backend.execute_action(session, ActionParams("detectLoading"))
    assert response.message == "Loading indicators detected (40%)"
    await session.loading_timer.wait()

    assert events(sub) == [
        (LOADING_STATE_UPDATE, {"isLoading": True, "progress": 40.0}),
        (LOADING_STATE_UPDATE, {"isLoading": True, "progress": 80.0}),
        (LOADING_STATE_UPDATE, {"isLoading": False}),
        (PAGE_READY, {"url": session.last_url}),
    ]


async def test_detect_loading_replaces_previous_poll(browser_settings, broadcaster, session, page):
    settings = dataclasses.replace(browser_settings, loading_poll_interval_ms=10_000)
    backend = BrowserBackend(settings, broadcaster)
    page.on(LOADING_STATE_JS, {"isLoading": True, "progress": None})

    await backend.execute_action(session, ActionParams("detectLoading"))
    first = session.loading_timer._task
    await backend.execute_action(session, ActionParams("detectLoading"))
    second = session.loading_timer._task

    assert first is not second
    with pytest.raises(asyncio.CancelledError):
        await first
    assert session.loading_timer.active

    await backend.close(session)
    assert not session.loading_timer.active


async def test_detect_loading_passes_custom_selectors(backend, session, page):
    page.on(LOADING_STATE_JS, {"isLoading": False})

    await backend.execute_action(session, ActionParams("detectLoading", selectors=[".busy", "#wait"]))

    assert (LOADING_STATE_JS, [".busy", "#wait"]) in page.evaluations


async def test_submit_form_always_checks_loading(backend, session, page, broadcaster):
    page.on(SUBMIT_FORM_JS, {"submitted": True, "method": "native"})
    page.on(LOADING_STATE_JS, {"isLoading": False})
    page.navigate_to = "https://done.example/"

    response = await backend.execute_action(session, ActionParams("submitForm", selectors=["#login"]))

    assert response.message == "Form submitted via native with navigation. No loading indicators detected"
    assert (SUBMIT_FORM_JS, "#login") in page.evaluations
    assert session.last_url == "https://done.example/"


async def test_submit_form_without_form_fails(backend, session, page):
    page.on(SUBMIT_FORM_JS, {"submitted": False, "reason": "not_found"})

    response = await backend.execute_action(session, ActionParams("submitForm"))

    assert response.status == "error"
    assert response.message == "Could not submit form 'form': not_found"


async def test_unexpected_failure_becomes_error_response(backend, session, broadcaster):
    class BrokenPage(FakePage):
        async def evaluate(self, script, arg=None):
            raise RuntimeError("target closed")

    session.page = BrokenPage()
    sub = broadcaster.subscribe()
    response = await backend.execute_action(session, ActionParams("click", coordinate=Coordinate(1, 1)))

    assert response.status == "error"
    assert response.message == "click action failed: target closed"
    [(event, payload)] = events(sub)
    assert event == BROWSER_ACTION_ERROR
    assert payload["message"] == "click action failed: target closed"
