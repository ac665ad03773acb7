from __future__ import annotations

from inventa.core.errors import ErrorKind
from inventa.db import models
from inventa.services import notification_service


async def _queue(harness, seed, *titles):
    async with harness.session_factory() as s:
        async with s.begin():
            for title in titles:
                await notification_service.notify_users(s, [seed.actors.unit_staff.id], title, f"{title} body")


async def test_notifications_skip_unknown_users(harness, seed):
    async with harness.session_factory() as s:
        async with s.begin():
            sent = await notification_service.notify_users(
                s, [seed.actors.unit_staff.id, seed.paper.id], "hello", "world"
            )
    assert sent == 1
    assert await harness.count(models.Notification) == 1


async def test_list_and_mark_read(harness, seed):
    await _queue(harness, seed, "one", "two", "three")
    staff = seed.actors.unit_staff

    items = await harness.ok(notification_service.list_notifications, staff)
    assert len(items) == 3
    await harness.ok(notification_service.mark_read, staff, items[0].id)
    assert len(await harness.ok(notification_service.list_notifications, staff, unread_only=True)) == 2

    assert await harness.ok(notification_service.mark_all_read, staff) == 2
    assert await harness.ok(notification_service.list_notifications, staff, unread_only=True) == []


async def test_users_only_touch_their_own_notifications(harness, seed):
    await _queue(harness, seed, "private")
    item = (await harness.ok(notification_service.list_notifications, seed.actors.unit_staff))[0]

    assert await harness.ok(notification_service.list_notifications, seed.actors.unit_admin) == []
    outcome = await harness.run(notification_service.delete_notification, seed.actors.unit_admin, item.id)
    assert outcome.error_kind == ErrorKind.NOT_FOUND

    await harness.ok(notification_service.delete_notification, seed.actors.unit_staff, item.id)
    assert await harness.count(models.Notification) == 0
