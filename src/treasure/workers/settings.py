"""arq worker settings module.

Import path for arq CLI: arq treasure.workers.settings.WorkerSettings
"""

from __future__ import annotations

from treasure.workers.event_worker import WorkerSettings

__all__ = ["WorkerSettings"]
