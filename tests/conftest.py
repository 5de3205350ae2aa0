import sys
import time
from copy import deepcopy
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

from mailtree.renderer.wrapper import add_preview, create_wrapper, insert_content
from mailtree.schemas.email import GlobalSettings, Patch


class ManualTimer:
    def __init__(self, due: float, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Timer source driven by the test instead of the wall clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[ManualTimer] = []

    def schedule(self, delay: float, callback) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        for timer in list(self.timers):
            if timer.due <= self.now and not timer.cancelled and not timer.fired:
                timer.fired = True
                timer.callback()

    def fire_cancelled(self) -> None:
        # a timer thread that had already started its callback when cancel() ran
        for timer in list(self.timers):
            if timer.cancelled and not timer.fired:
                timer.fired = True
                timer.callback()


class InMemoryStore:
    def __init__(self) -> None:
        self.saved: list[tuple[dict, GlobalSettings]] = []
        self.fail_with: Exception | None = None

    def save(self, tree: dict, settings: GlobalSettings) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.saved.append((deepcopy(tree), settings))
        return f"rev-{len(self.saved)}"


class FakeRefiner:
    def __init__(self, patch: Patch | dict, before_return=None) -> None:
        self.patch = patch
        self.before_return = before_return
        self.calls: list[tuple[dict, str, object]] = []

    async def refine(self, node, prompt, context=None):
        self.calls.append((deepcopy(dict(node)), prompt, context))
        if self.before_return is not None:
            self.before_return()
        return self.patch


class FakeLLMClient:
    def __init__(self, reply: str = "", exc: Exception | None = None, delay: float = 0.0) -> None:
        self.reply = reply
        self.exc = exc
        self.delay = delay
        self.calls: list[tuple[str, object]] = []

    def generate_text(self, prompt, params=None) -> str:
        self.calls.append((prompt, params))
        if self.delay:
            time.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.reply


def make_scenario_tree() -> dict:
    return {
        "id": "c1",
        "component": "Container",
        "props": {},
        "children": [
            {
                "id": "s1",
                "component": "Section",
                "props": {"style": {"padding": "24px"}},
                "children": [
                    {"id": "h1", "component": "Heading", "props": {"as": "h1"}, "content": "Hi"},
                    {"id": "t1", "component": "Text", "props": {"style": {"color": "#111111"}}, "content": "body"},
                ],
            }
        ],
    }


@pytest.fixture
def scenario_tree() -> dict:
    return make_scenario_tree()


@pytest.fixture
def global_settings() -> GlobalSettings:
    return GlobalSettings()


@pytest.fixture
def email_tree(global_settings: GlobalSettings) -> dict:
    content = [
        {"id": "hero", "component": "Heading", "props": {"as": "h1"}, "content": "Spring sale"},
        {"id": "intro", "component": "Text", "props": {}, "content": "Everything is 20% off this week."},
        {"id": "cta", "component": "Button", "props": {"href": "https://example.com/shop"}, "content": "Shop now"},
        {"id": "second", "component": "Heading", "props": {"as": "h2"}, "content": "New arrivals"},
    ]
    tree = insert_content(create_wrapper(global_settings), content)
    return add_preview(tree, "Our biggest sale of the season")


@pytest.fixture
def manual_scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()
