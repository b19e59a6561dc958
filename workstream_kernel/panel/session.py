"""
Today Panel Session — one viewer's panel, refreshed last-request-wins.

Behavioral Contract:
- Every refresh takes a new generation token before it awaits anything
- A response whose token has been superseded is discarded, never shown
- The panel view and the workload stats are fetched concurrently
- The shown snapshot is replaced wholesale, never patched field by field
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from workstream_kernel.models.panel import (
    PanelFilter,
    PanelSnapshot,
    TodayPanelView,
    WorkstreamStats,
)

logger = logging.getLogger(__name__)

PanelLoader = Callable[[PanelFilter], Awaitable[TodayPanelView]]
StatsLoader = Callable[[], Awaitable[WorkstreamStats]]


class TodayPanelSession:
    def __init__(self, load_panel: PanelLoader, load_stats: StatsLoader):
        self._load_panel = load_panel
        self._load_stats = load_stats
        self._generation = 0
        self.snapshot: Optional[PanelSnapshot] = None

    @property
    def generation(self) -> int:
        """Token of the most recently issued refresh."""
        return self._generation

    async def refresh(self, panel_filter: Optional[PanelFilter] = None) -> bool:
        """
        Fetch a new snapshot for ``panel_filter``.

        Returns True when this refresh's result is now shown, False when a
        later refresh superseded it while it was in flight.
        """
        panel_filter = panel_filter or PanelFilter()
        self._generation += 1
        token = self._generation

        view, stats = await asyncio.gather(
            self._load_panel(panel_filter),
            self._load_stats(),
        )

        if token != self._generation:
            logger.debug(
                "Discarding panel response %d; generation %d is current",
                token, self._generation,
            )
            return False

        self.snapshot = PanelSnapshot(
            generation=token,
            panel_filter=panel_filter,
            view=view,
            stats=stats,
        )
        return True
