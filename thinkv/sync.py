import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from thinkv.errors import ThinkVError

logger = logging.getLogger(__name__)


class MirrorJob:
    """
    Periodically copies live telemetry for every stored channel into the
    store, so history is kept even when no dashboard is open.
    """

    def __init__(self, reconciler, store, interval_minutes: int):
        self.reconciler = reconciler
        self.store = store
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler()

    def start(self) -> bool:
        if self.interval_minutes <= 0:
            logger.info("Background mirror disabled (SYNC_INTERVAL_MINUTES=0).")
            return False
        self.scheduler.add_job(
            self.run,
            "interval",
            minutes=self.interval_minutes,
            id="mirror-channels",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("Background mirror runs every %d minutes.", self.interval_minutes)
        return True

    async def run(self) -> int:
        try:
            channels = await self.store.list_channels()
        except ThinkVError as e:
            logger.warning("Mirror skipped, channels unavailable: %s", e)
            return 0

        total = 0
        for channel in channels:
            try:
                total += await self.reconciler.mirror(channel)
            except ThinkVError as e:
                logger.warning("Mirror of channel %s failed: %s", channel.id, e)
        logger.info("Mirrored %d points across %d channels", total, len(channels))
        return total

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
