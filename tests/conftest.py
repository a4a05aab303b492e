from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import pytest

from psyscene.app import App
from psyscene.config import Settings, reset_settings_for_tests
from psyscene.core.dom import h
from psyscene.core.frames import VirtualFrameClock
from psyscene.core.scene import Scene, SetupResult


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs (e.g. a REDIS_URL for manual monitor checks).

    In CI, `.env` is not loaded unless opted in with PSYSCENE_LOAD_DOTENV_FOR_TESTS=1.
    """

    if os.environ.get("CI") and os.environ.get("PSYSCENE_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    reset_settings_for_tests()
    yield
    reset_settings_for_tests()


@pytest.fixture()
def clock() -> VirtualFrameClock:
    """60 Hz-ish virtual display: frames land on multiples of 16 ms."""

    return VirtualFrameClock(frame_ms=16.0)


@pytest.fixture()
def app(clock: VirtualFrameClock) -> Generator[App, None, None]:
    a = App(clock=clock, settings=Settings())
    yield a
    a.dispose()


def fixation(props: dict, ctx: Scene) -> SetupResult:
    """A fixation cross whose data is the text it showed."""

    node = h("div", {"class": "fixation"}, str(props.get("symbol", "+")))
    ctx.on("scene:show", lambda p: setattr(node, "text", str(p.get("symbol", "+"))))
    return SetupResult(node=node, data=lambda: {"shown": node.text})


@pytest.fixture()
def fixation_setup():
    return fixation
