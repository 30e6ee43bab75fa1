"""Shared test helpers: manual timers, a temp vault and a Flask client bound to a fresh engine."""

import pytest

from app import app
from services.cache import ValidationCache
from services.engine import LintEngine
from services.query import QueryIndex
from services.settings import SettingsState
from services.store import ViolationStore
from services.vault import Vault


class FakeTimer:
    def __init__(self, delay, fn, args=()):
        self.delay = delay
        self.fn = fn
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fired = True
        if not self.cancelled:
            self.fn(*self.args)


class TimerFactory:
    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, delay, fn, args=()):
        timer = FakeTimer(delay, fn, args)
        self.timers.append(timer)
        return timer

    def live(self) -> list[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_all(self) -> None:
        for timer in self.live():
            timer.fire()


@pytest.fixture()
def timers():
    return TimerFactory()


@pytest.fixture()
def vault_dir(tmp_path):
    d = tmp_path / "vault"
    d.mkdir()
    return d


@pytest.fixture()
def make_client(tmp_path, vault_dir, timers):
    """Returns make(settings) -> (test client, engine), with startup analysis already run."""
    previous = app.config["LINT_ENGINE"]

    def _make(settings=None):
        engine = LintEngine(
            settings=SettingsState(settings or {"unknown_field_warning": False}),
            vault=Vault(str(vault_dir)),
            index=QueryIndex(),
            store=ViolationStore(),
            cache=ValidationCache(str(tmp_path / "validation-cache.json"), timer_factory=timers),
            timer_factory=timers,
        )
        engine.analyze_cache_on_startup()
        app.config["LINT_ENGINE"] = engine
        app.config["TESTING"] = True
        return app.test_client(), engine

    yield _make
    app.config["LINT_ENGINE"] = previous
