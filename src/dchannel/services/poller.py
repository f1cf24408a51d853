"""Follow polling: re-resolve followed names and surface changed heads.

Each live subscription owns one :class:`FollowPoller` running a single task,
so ticks never overlap. Inside a tick every follow is handled in order and a
changed head is always persisted before the event is handed to the sink.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass

from dchannel.core.errors import DChannelError, NotFoundError
from dchannel.core.settings import Settings, settings
from dchannel.schemas.directory import FollowRecord
from dchannel.services.directory import ALL_ROWS, DirectoryStore
from dchannel.services.notifications import DesktopNotifier, NotificationSink
from dchannel.services.storage import NamingService, ObjectStore

# Configure logger for this module
logger = logging.getLogger(__name__)


class FollowPoller:
    """Periodically resolves every followed name and reports new heads."""

    def __init__(
        self,
        directory: DirectoryStore,
        naming: NamingService,
        objects: ObjectStore,
        sink: NotificationSink,
        config: Settings | None = None,
    ) -> None:
        self.directory = directory
        self.naming = naming
        self.objects = objects
        self.sink = sink
        self.config = config or settings
        self.interval = float(self.config.poll_interval_seconds)
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background polling loop."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop polling; an in-flight tick is cancelled and no new one starts."""
        self._stopping.set()
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.tick()
            except DChannelError as e:
                logger.warning("FollowPoller tick failed: %s", e)
            except Exception:
                logger.exception("FollowPoller tick crashed; retrying next interval")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)

    async def tick(self) -> list[FollowRecord]:
        """Run one scan over the follow list.

        Returns:
            The follows whose head changed, in the order they were notified.
        """
        follows = await asyncio.to_thread(self.directory.list_follows, 0, ALL_ROWS)
        updated: list[FollowRecord] = []
        for follow in follows:
            if self._stopping.is_set():
                break
            # The owner's local cache is authoritative for self channels.
            if follow.is_self:
                continue
            record = await self._check(follow)
            if record is not None:
                updated.append(record)
        return updated

    async def _check(self, follow: FollowRecord) -> FollowRecord | None:
        try:
            address = await asyncio.wait_for(
                self.naming.resolve(
                    follow.external_name, use_cache=self.config.name_resolve_use_cache
                ),
                timeout=self.config.name_resolve_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("Resolving %s timed out; skipping", follow.external_name)
            return None
        except DChannelError as e:
            logger.warning("Resolving %s failed; skipping: %s", follow.external_name, e)
            return None

        if address == follow.latest_address:
            return None

        try:
            await self.objects.pin(address)
        except DChannelError as e:
            logger.warning("Failed to pin %s for %s: %s", address, follow.external_name, e)

        try:
            record = await asyncio.to_thread(
                self.directory.update_follow_head, follow.id, address
            )
        except DChannelError as e:
            logger.error(
                "Failed to persist head %s for %s: %s", address, follow.external_name, e
            )
            return None

        logger.info("Follow %s moved to %s", follow.external_name, address)
        await self.sink.publish(record)
        return record


@dataclass
class Subscription:
    """Handle for one live poll subscription."""

    id: str
    poller: FollowPoller
    sink: NotificationSink


class PollerRegistry:
    """Owns the pollers of all live subscriptions, keyed by subscription id."""

    def __init__(
        self,
        directory: DirectoryStore,
        naming: NamingService,
        objects: ObjectStore,
        config: Settings | None = None,
        notifier: DesktopNotifier | None = None,
    ) -> None:
        self.directory = directory
        self.naming = naming
        self.objects = objects
        self.config = config or settings
        self.notifier = notifier
        self._subscriptions: dict[str, Subscription] = {}

    async def open(self, subscription_id: str | None = None) -> Subscription:
        """Create and start a poller for a new subscriber."""
        subscription_id = subscription_id or uuid.uuid4().hex
        if subscription_id in self._subscriptions:
            await self.close(subscription_id)
        sink = NotificationSink(self.notifier)
        poller = FollowPoller(self.directory, self.naming, self.objects, sink, self.config)
        subscription = Subscription(id=subscription_id, poller=poller, sink=sink)
        self._subscriptions[subscription_id] = subscription
        await poller.start()
        logger.info("Opened poll subscription %s", subscription_id)
        return subscription

    def get(self, subscription_id: str) -> Subscription:
        try:
            return self._subscriptions[subscription_id]
        except KeyError as err:
            raise NotFoundError(f"subscription {subscription_id} not found") from err

    def active(self) -> list[str]:
        return list(self._subscriptions)

    async def close(self, subscription_id: str) -> None:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return
        await subscription.poller.stop()
        subscription.sink.close()
        logger.info("Closed poll subscription %s", subscription_id)

    async def close_all(self) -> None:
        for subscription_id in list(self._subscriptions):
            await self.close(subscription_id)
