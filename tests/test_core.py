import io
from typing import List

from rich.console import Console

from conftest import FakeRouter
from uidriver.config import Settings
from uidriver.core import DirectiveAgent
from uidriver.history import ActionHistory
from uidriver.models import ActionDirective, ActionResponse
from uidriver.notifications import URL_CHANGE

CLICK = "I see the button.\n<perform_action><action>click</action><coordinate>5,5</coordinate></perform_action>"
DONE = "<complete_task><result>all done</result></complete_task>"


class ScriptedModel:
    def __init__(self, outputs: List[str]):
        self.outputs = list(outputs)
        self.seen: List[List] = []

    async def complete(self, messages, on_delta=None):
        self.seen.append(list(messages))
        return self.outputs.pop(0)


def quiet_console():
    return Console(file=io.StringIO())


async def test_run_feeds_results_back_until_complete():
    router = FakeRouter(
        responses=lambda d: ActionResponse.success("Clicked", screenshot="QUJD"), launched=True
    )
    model = ScriptedModel([CLICK, DONE])
    agent = DirectiveAgent(model, router, console=quiet_console())

    result = await agent.run("press the button", "browser")

    assert result.completed
    assert result.result == "all done"
    assert result.steps == 2
    assert router.started and router.closed

    feedback = model.seen[1][-1]
    assert feedback["role"] == "user"
    assert "<action_message>Clicked</action_message>" in feedback["content"][0]["text"]
    assert "<screenshot>" not in feedback["content"][0]["text"]
    assert feedback["content"][1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,QUJD"}}
    assert agent.history.history[0].target == "5,5"


async def test_start_url_is_launched_first():
    router = FakeRouter()
    model = ScriptedModel([DONE])
    agent = DirectiveAgent(model, router, console=quiet_console())

    await agent.run("check", "chrome-puppeteer", start_url="https://example.com")

    assert [(d.action, d.source, d.url) for d in router.executed] == [("launch", "browser", "https://example.com")]
    assert agent.history.visited_urls == ["https://example.com"]


async def test_visited_urls_follow_url_changes_and_get_url():
    router = FakeRouter(launched=True)

    def respond(directive):
        if directive.action == "getUrl":
            return ActionResponse.success("Retrieved URL: https://b.example/page")
        router.broadcaster.emit(URL_CHANGE, "https://a.example/next")
        return ActionResponse.success("Click performed with navigation")

    router.responses = respond
    get_url = "<perform_action><action>getUrl</action></perform_action>"
    model = ScriptedModel([CLICK, get_url, DONE])
    agent = DirectiveAgent(model, router, console=quiet_console())

    await agent.run("browse", "browser")

    assert agent.history.visited_urls == ["https://a.example/next", "https://b.example/page"]
    assert router.broadcaster._listeners == []


def test_placeholder_url_is_not_recorded():
    history = ActionHistory()
    history.record(ActionDirective("getUrl"), "success", "Retrieved URL: about:blank")
    history.record(ActionDirective("getUrl"), "error", "Retrieved URL: https://x.example")
    assert history.visited_urls == []


async def test_followup_question_without_user_stops():
    model = ScriptedModel(["<ask_followup_question><question>Which site?</question></ask_followup_question>"])
    agent = DirectiveAgent(model, FakeRouter(), console=quiet_console())

    result = await agent.run("do it", "desktop")

    assert not result.completed
    assert result.result == "Which site?"


async def test_followup_question_is_answered():
    answers = []

    async def ask(question):
        answers.append(question)
        return "example.org"

    model = ScriptedModel(["<ask_followup_question><question>Which site?</question></ask_followup_question>", DONE])
    agent = DirectiveAgent(model, FakeRouter(), console=quiet_console(), ask_user=ask)

    result = await agent.run("do it", "desktop")

    assert result.completed
    assert answers == ["Which site?"]
    assert model.seen[1][-1] == {"role": "user", "content": "example.org"}


async def test_repeated_directive_is_flagged():
    model = ScriptedModel([CLICK, CLICK, CLICK, DONE])
    agent = DirectiveAgent(model, FakeRouter(launched=True), console=quiet_console())

    await agent.run("loop", "browser")

    last_feedback = model.seen[3][-1]["content"][0]["text"]
    assert "重复" in last_feedback
    assert "重复" not in model.seen[2][-1]["content"][0]["text"]


async def test_stops_at_max_steps():
    model = ScriptedModel(["still thinking"] * 3)
    agent = DirectiveAgent(model, FakeRouter(), console=quiet_console())

    result = await agent.run("never ends", "browser", max_steps=3)

    assert not result.completed
    assert result.steps == 3
    assert model.seen[1][-1]["role"] == "user"


def test_history_repetition_window():
    history = ActionHistory()
    click = ActionDirective("click", coordinate="1,1")
    other = ActionDirective("click", coordinate="2,2")

    history.record(click, "error")
    history.record(click, "error")
    assert not history.is_repeated_action(click)
    history.record(click, "error")
    assert history.is_repeated_action(click)
    assert not history.is_repeated_action(other)
    assert "Step 3: click (1,1) → error" in history.format_history()


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("BROWSER_VIEWPORT_WIDTH", "1280")
    monkeypatch.setenv("BROWSER_HEADLESS", "false")
    monkeypatch.setenv("DESKTOP_SCROLL_CLICKS", "not-a-number")
    monkeypatch.setenv("LOADING_SELECTORS", ".busy, .wait")
    monkeypatch.setenv("ENABLE_OMNI_PARSER", "1")
    monkeypatch.setenv("OPENAI_MODEL", "qwen-plus")

    settings = Settings.from_env(dotenv=False)

    assert settings.browser.viewport_width == 1280
    assert settings.browser.headless is False
    assert settings.desktop.scroll_clicks == 2
    assert settings.browser.loading_selectors == [".busy", ".wait"]
    assert settings.omni_parser_enabled is True
    assert settings.openai_model == "qwen-plus"
