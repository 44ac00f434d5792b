# src/carelog/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..care.tracker import CareTracker
from ..storage.seed import SeedPlan
from .ports import CareStore, OfflineQueue


@dataclass
class AppState:
    # Store Settings on the state for easy access in connectors and commands.
    settings: Any

    store: CareStore
    queue: OfflineQueue
    tracker: CareTracker

    # Care plan read from the seed file, if one is configured.
    seed: SeedPlan | None = None
