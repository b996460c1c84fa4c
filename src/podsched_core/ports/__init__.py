"""Ports — protocols the coordination core depends on."""

from __future__ import annotations

from .background_worker import IBackgroundWorker
from .store import IKeyValueStore
from .task_provider import ITaskConfigurationProvider

__all__ = [
    "IBackgroundWorker",
    "IKeyValueStore",
    "ITaskConfigurationProvider",
]
