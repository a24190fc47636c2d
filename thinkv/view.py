import asyncio
import logging
from collections import OrderedDict
from typing import Optional

from thinkv.models import Channel, TimeRange
from thinkv.reconciler import ReconcileOutcome

logger = logging.getLogger(__name__)


class ChannelView:
    """
    The active channel and time range of one dashboard session.

    Every selection change bumps ``generation`` and cancels the load in
    flight. A load that finishes under an older generation is discarded,
    so a slow answer never overwrites the view the user has moved on to.
    """

    def __init__(self, reconciler):
        self.reconciler = reconciler
        self.generation = 0
        self.channel: Optional[Channel] = None
        self.time_range = TimeRange.DAY
        self.outcome: Optional[ReconcileOutcome] = None
        self._task: Optional[asyncio.Task] = None

    def select(self, channel: Optional[Channel], time_range: TimeRange = None) -> int:
        self.generation += 1
        self.channel = channel
        if time_range is not None:
            self.time_range = time_range
        self.outcome = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return self.generation

    async def refresh(self) -> Optional[ReconcileOutcome]:
        """Reloads the current selection. Returns None if it went stale."""
        if self.channel is None:
            return None
        generation = self.generation
        task = asyncio.create_task(self.reconciler.load(self.channel, self.time_range))
        self._task = task
        try:
            outcome = await task
        except asyncio.CancelledError:
            if generation == self.generation:
                raise
            logger.debug("Load for generation %d cancelled by a newer selection", generation)
            return None

        if generation != self.generation:
            logger.debug("Discarding stale load for generation %d", generation)
            return None
        self.outcome = outcome
        return outcome

    async def show(self, channel: Channel, time_range: TimeRange) -> Optional[ReconcileOutcome]:
        self.select(channel, time_range)
        return await self.refresh()


class ViewRegistry:
    """ChannelView per session id, least recently used evicted first."""

    def __init__(self, reconciler=None, max_sessions: int = 1000):
        self.reconciler = reconciler
        self.max_sessions = max_sessions
        self._views: "OrderedDict[str, ChannelView]" = OrderedDict()

    def get(self, session_id: str) -> ChannelView:
        view = self._views.get(session_id)
        if view is None:
            view = ChannelView(self.reconciler)
            self._views[session_id] = view
            while len(self._views) > self.max_sessions:
                self._views.popitem(last=False)
        else:
            self._views.move_to_end(session_id)
        return view

    def __len__(self):
        return len(self._views)
