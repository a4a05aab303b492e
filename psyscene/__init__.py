"""Frame-accurate stimulus presentation for behavioural experiments."""
from __future__ import annotations

__version__ = "0.1.0"

from psyscene.app import App, SceneTimingRecord, create_app
from psyscene.bench import TimingProbe
from psyscene.collector import CSVStringifier, DataCollector, JSONStringifier
from psyscene.core.dom import Element, h
from psyscene.core.environment import Screen
from psyscene.core.frames import AsyncioFrameClock, VirtualFrameClock
from psyscene.core.lifecycle import SceneState
from psyscene.core.scene import Scene, SceneOptions, SetupResult
from psyscene.core.scheduler import ShowTiming
from psyscene.errors import (
    ContainerDetachError,
    DataError,
    DisposalAggregateError,
    SceneBusyError,
    SceneDisposedError,
    SceneError,
    SetupError,
)
from psyscene.trials import RandomSampling, StairCase

__all__ = [
    "App",
    "AsyncioFrameClock",
    "CSVStringifier",
    "ContainerDetachError",
    "DataCollector",
    "DataError",
    "DisposalAggregateError",
    "Element",
    "JSONStringifier",
    "RandomSampling",
    "Scene",
    "SceneBusyError",
    "SceneDisposedError",
    "SceneError",
    "SceneOptions",
    "SceneState",
    "SceneTimingRecord",
    "Screen",
    "SetupError",
    "SetupResult",
    "ShowTiming",
    "StairCase",
    "TimingProbe",
    "VirtualFrameClock",
    "create_app",
    "h",
]
