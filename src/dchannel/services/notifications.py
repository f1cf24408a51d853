"""Delivery of poll diffs to the single live subscriber."""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import AsyncIterator

from dchannel.schemas.directory import FollowRecord

logger = logging.getLogger(__name__)

NOTIFY_SEND = "notify-send"


class DesktopNotifier:
    """Raises an OS alert through ``notify-send`` when it is installed."""

    def __init__(self, command: str = NOTIFY_SEND, app_name: str = "dchannel") -> None:
        self.command = shutil.which(command)
        self.app_name = app_name
        if self.command is None:
            logger.info("%s not found; desktop notifications disabled", command)

    @property
    def available(self) -> bool:
        return self.command is not None

    async def notify(self, follow: FollowRecord) -> None:
        if self.command is None:
            return
        title = f"New post from {follow.display_name or follow.external_name}"
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                "--app-name",
                self.app_name,
                title,
                follow.latest_address,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            code = await process.wait()
        except OSError as err:
            logger.warning("Desktop notification failed: %s", err)
            return
        if code != 0:
            logger.warning("%s exited with status %d", self.command, code)


class NotificationSink:
    """Single-slot queue between a poller and its subscriber.

    ``publish`` blocks while the previous event is unread, which throttles the
    poller to the subscriber's pace.
    """

    def __init__(self, notifier: DesktopNotifier | None = None) -> None:
        self._queue: asyncio.Queue[FollowRecord] = asyncio.Queue(maxsize=1)
        self._closed = asyncio.Event()
        self.notifier = notifier

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def publish(self, event: FollowRecord) -> None:
        if self.closed:
            logger.debug("Dropping event for %s; sink closed", event.external_name)
            return
        if self.notifier is not None:
            await self.notifier.notify(event)
        await self._queue.put(event)

    async def events(self) -> AsyncIterator[FollowRecord]:
        """Yield events until the sink is closed."""
        while not self.closed:
            getter = asyncio.ensure_future(self._queue.get())
            closer = asyncio.ensure_future(self._closed.wait())
            try:
                done, _ = await asyncio.wait(
                    {getter, closer}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                getter.cancel()
                closer.cancel()
            if getter in done:
                yield getter.result()

    def close(self) -> None:
        self._closed.set()
