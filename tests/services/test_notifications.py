import asyncio
from unittest.mock import AsyncMock

import pytest

from dchannel.schemas.directory import FollowRecord
from dchannel.services.notifications import DesktopNotifier, NotificationSink


def _follow(address: str = "b3head") -> FollowRecord:
    return FollowRecord(id=1, display_name="Alice", external_name="k51alice", latest_address=address)


@pytest.mark.asyncio
async def test_events_are_delivered_in_order():
    sink = NotificationSink()
    events = sink.events()

    await sink.publish(_follow("b3one"))
    assert (await events.__anext__()).latest_address == "b3one"
    await sink.publish(_follow("b3two"))
    assert (await events.__anext__()).latest_address == "b3two"


@pytest.mark.asyncio
async def test_publish_blocks_while_the_slot_is_full():
    sink = NotificationSink()
    await sink.publish(_follow("b3one"))
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(sink.publish(_follow("b3two")), timeout=0.05)


@pytest.mark.asyncio
async def test_close_ends_iteration():
    sink = NotificationSink()

    async def collect() -> list[FollowRecord]:
        return [event async for event in sink.events()]

    task = asyncio.create_task(collect())
    await sink.publish(_follow())
    await asyncio.sleep(0.01)
    sink.close()
    received = await asyncio.wait_for(task, timeout=1)
    assert [event.latest_address for event in received] == ["b3head"]

    # Events published after close are dropped.
    await asyncio.wait_for(sink.publish(_follow("b3late")), timeout=0.05)


@pytest.mark.asyncio
async def test_sink_forwards_to_desktop_notifier():
    notifier = AsyncMock(spec=DesktopNotifier)
    sink = NotificationSink(notifier)
    await sink.publish(_follow())
    notifier.notify.assert_awaited_once()


@pytest.mark.asyncio
async def test_desktop_notifier_without_notify_send(mocker):
    mocker.patch("dchannel.services.notifications.shutil.which", return_value=None)
    spawn = mocker.patch("asyncio.create_subprocess_exec")
    notifier = DesktopNotifier()
    assert not notifier.available
    await notifier.notify(_follow())
    spawn.assert_not_called()


@pytest.mark.asyncio
async def test_desktop_notifier_runs_notify_send(mocker):
    mocker.patch(
        "dchannel.services.notifications.shutil.which", return_value="/usr/bin/notify-send"
    )
    process = mocker.MagicMock()
    process.wait = AsyncMock(return_value=0)
    spawn = mocker.patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process))

    await DesktopNotifier().notify(_follow())

    args = spawn.call_args.args
    assert args[0] == "/usr/bin/notify-send"
    assert "New post from Alice" in args
    assert "b3head" in args


@pytest.mark.asyncio
async def test_desktop_notifier_failure_is_logged(mocker, caplog):
    mocker.patch(
        "dchannel.services.notifications.shutil.which", return_value="/usr/bin/notify-send"
    )
    mocker.patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=OSError("no display")))
    await DesktopNotifier().notify(_follow())
    assert "no display" in caplog.text
