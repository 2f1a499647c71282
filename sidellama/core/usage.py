from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any

logger = logging.getLogger(__name__)

MAX_TRACKED_MODELS = 20
MAX_RECENT_MODELS = 5
PRELOAD_THRESHOLD = 2


class UsageTracker:
    """Per-model invocation counts used to pick a model worth preloading.

    Counts are kept in touch order, so when the table is full the model
    touched least recently is evicted.
    """

    def __init__(
        self,
        max_models: int = MAX_TRACKED_MODELS,
        max_recent: int = MAX_RECENT_MODELS,
        threshold: int = PRELOAD_THRESHOLD,
    ) -> None:
        self.max_models = max_models
        self.max_recent = max_recent
        self.threshold = threshold
        self._counts: OrderedDict[str, int] = OrderedDict()
        self.recent: list[str] = []

    def record_use(self, model: str) -> int:
        count = self._counts.pop(model, 0) + 1
        self._counts[model] = count
        while len(self._counts) > self.max_models:
            evicted, _ = self._counts.popitem(last=False)
            logger.debug("Evicted usage stats for %s", evicted)

        self.recent = [model, *(name for name in self.recent if name != model)][: self.max_recent]
        logger.info("Model usage tracked: %s (%d times)", model, count)
        return count

    def count(self, model: str) -> int:
        return self._counts.get(model, 0)

    def suggest_preload(self) -> str | None:
        if not self._counts:
            return None
        # max() keeps the first of equal counts, i.e. the least recently touched.
        model, count = max(self._counts.items(), key=lambda item: item[1])
        return model if count > self.threshold else None

    def snapshot(self) -> dict[str, Any]:
        top = sorted(self._counts.items(), key=lambda item: item[1], reverse=True)
        return {
            "modelUsageStats": [[model, count] for model, count in top[: self.max_models]],
            "lastUsedModels": list(self.recent),
        }

    def restore(self, data: Any) -> None:
        if not isinstance(data, dict):
            return
        self._counts.clear()
        # Stored highest-first; restore lowest-first so low counts evict first.
        for entry in reversed(list(data.get("modelUsageStats") or [])):
            if (
                isinstance(entry, (list, tuple))
                and len(entry) == 2
                and isinstance(entry[0], str)
                and isinstance(entry[1], int)
            ):
                self._counts[entry[0]] = entry[1]
        while len(self._counts) > self.max_models:
            self._counts.popitem(last=False)
        recent = data.get("lastUsedModels") or []
        self.recent = [name for name in recent if isinstance(name, str)][: self.max_recent]
