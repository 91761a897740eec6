import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from tests.base import *  # noqa: F401,F403

from app.core.config import settings
from app.services.status_errors import InvalidStatusType, InvalidTimeSpec, StatusUpdateValidationError
from app.services.status_updates import (
    EXECUTE_AT_IN_PAST,
    apply_category_auto_close,
    delete_status_updates_for_topic,
    get_status_update,
    register_new_post,
    serialize_status_update,
    set_or_create_status_update,
)


class StatusUpdateSchedulingTests(StatusUpdateDbBase):
    def _schedule(self, topic_id, status_type, time_spec, *, by_user_id=None, **options):
        with self.SessionLocal() as db:
            topic = db.get(Topic, topic_id)
            by_user = db.get(User, by_user_id) if by_user_id is not None else None
            result = set_or_create_status_update(db, topic, status_type, time_spec, by_user=by_user, **options)
            db.commit()
            return result

    def test_schedule_close_in_72_hours(self):
        staff_id = self._make_user("mod", moderator=True)
        topic_id = self._make_topic()

        result = self._schedule(topic_id, StatusType.CLOSE, "72", by_user_id=staff_id)

        self.assertTrue(result.valid)
        rows = self._status_updates(topic_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].status_type, "close")
        self.assertEqual(rows[0].execute_at, datetime(2013, 11, 23, 8, 0, tzinfo=timezone.utc))
        self.assertEqual(rows[0].duration, 72)
        self.assertEqual(rows[0].created_by_id, staff_id)

    def test_rescheduling_keeps_one_row_and_created_at(self):
        staff_id = self._make_user("mod", moderator=True)
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 24, by_user_id=staff_id)

        with clock.travel(FROZEN_NOW + hours(1)):
            self._schedule(topic_id, "close", "13:00", by_user_id=staff_id)

        rows = self._status_updates(topic_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].execute_at, datetime(2013, 11, 20, 13, 0, tzinfo=timezone.utc))
        self.assertIsNone(rows[0].duration)
        self.assertEqual(rows[0].created_at, FROZEN_NOW)
        self.assertEqual(rows[0].updated_at, FROZEN_NOW + hours(1))

    def test_different_status_types_coexist(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 24)
        self._schedule(topic_id, "reminder", 48)

        rows = self._status_updates(topic_id)
        self.assertEqual(sorted(row.status_type for row in rows), ["close", "reminder"])

    def test_blank_time_cancels_existing_row(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "open", 5)

        result = self._schedule(topic_id, "open", "")

        self.assertTrue(result.cancelled)
        self.assertIsNone(result.status_update)
        self.assertEqual(self._status_updates(topic_id), [])

    def test_cancel_without_row_is_a_noop(self):
        topic_id = self._make_topic()
        result = self._schedule(topic_id, "close", None)
        self.assertTrue(result.cancelled)
        self.assertEqual(self._status_updates(topic_id), [])

    def test_past_time_is_persisted_and_flagged(self):
        topic_id = self._make_topic()

        result = self._schedule(topic_id, "close", "2013-11-19 5:00")

        self.assertFalse(result.valid)
        self.assertEqual(result.errors, {"execute_at": [EXECUTE_AT_IN_PAST]})
        rows = self._status_updates(topic_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].execute_at, datetime(2013, 11, 19, 5, 0, tzinfo=timezone.utc))

    def test_past_time_rejected_when_configured(self):
        topic_id = self._make_topic()
        with patch.object(settings, "STATUS_UPDATE_REJECT_PAST", True):
            with self.assertRaises(StatusUpdateValidationError) as ctx:
                self._schedule(topic_id, "close", "2013-11-19 5:00")
        self.assertIn("execute_at", ctx.exception.errors)
        self.assertEqual(self._status_updates(topic_id), [])

    def test_unknown_status_type_and_time_spec(self):
        topic_id = self._make_topic()
        with self.assertRaises(InvalidStatusType):
            self._schedule(topic_id, "explode", 1)
        with self.assertRaises(InvalidTimeSpec):
            self._schedule(topic_id, "close", "next week")
        with self.assertRaises(InvalidTimeSpec):
            self._schedule(topic_id, "close", "99999999")
        self.assertEqual(self._status_updates(topic_id), [])

    def test_publish_to_category_requires_category(self):
        topic_id = self._make_topic()
        with self.assertRaises(StatusUpdateValidationError):
            self._schedule(topic_id, "publish_to_category", 1)

        self._schedule(topic_id, "publish_to_category", 1, category_id=9)
        rows = self._status_updates(topic_id)
        self.assertEqual(rows[0].category_id, 9)

    def test_creator_falls_back_to_topic_owner_then_system(self):
        regular_id = self._make_user("regular", trust_level=1)
        leader_id = self._make_user("leader", trust_level=4)
        led_topic = self._make_topic(user_id=leader_id)
        plain_topic = self._make_topic(user_id=regular_id)

        self._schedule(led_topic, "close", 1, by_user_id=regular_id)
        self._schedule(plain_topic, "close", 1, by_user_id=regular_id)

        self.assertEqual(self._status_updates(led_topic)[0].created_by_id, leader_id)
        self.assertEqual(self._status_updates(plain_topic)[0].created_by_id, settings.SYSTEM_USER_ID)

    def test_based_on_last_post_counts_from_last_reply(self):
        topic_id = self._make_topic()
        with self.SessionLocal() as db:
            topic = db.get(Topic, topic_id)
            topic.last_posted_at = FROZEN_NOW - hours(10)
            db.commit()

        self._schedule(topic_id, "close", 24, based_on_last_post=True)

        row = self._status_updates(topic_id)[0]
        self.assertTrue(row.based_on_last_post)
        self.assertEqual(row.execute_at, FROZEN_NOW + hours(14))

    def test_new_reply_pushes_based_on_last_post_close(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 24, based_on_last_post=True)

        with self.SessionLocal() as db:
            topic = db.get(Topic, topic_id)
            register_new_post(db, topic, FROZEN_NOW + hours(3))
            register_new_post(db, topic, FROZEN_NOW + hours(3))
            db.commit()

        row = self._status_updates(topic_id)[0]
        self.assertEqual(row.execute_at, FROZEN_NOW + hours(27))
        with self.SessionLocal() as db:
            self.assertEqual(db.get(Topic, topic_id).last_posted_at, FROZEN_NOW + hours(3))

    def test_new_reply_leaves_fixed_close_alone(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 24)

        with self.SessionLocal() as db:
            register_new_post(db, db.get(Topic, topic_id), FROZEN_NOW + hours(3))
            db.commit()

        self.assertEqual(self._status_updates(topic_id)[0].execute_at, FROZEN_NOW + hours(24))

    def test_category_auto_close(self):
        with self.SessionLocal() as db:
            category = Category(name="Support", auto_close_hours=48, auto_close_based_on_last_post=True)
            db.add(category)
            db.commit()
            category_id = category.id
        topic_id = self._make_topic(category_id=category_id)
        uncategorized_id = self._make_topic()

        with self.SessionLocal() as db:
            result = apply_category_auto_close(db, db.get(Topic, topic_id))
            self.assertIsNone(apply_category_auto_close(db, db.get(Topic, uncategorized_id)))
            db.commit()

        self.assertTrue(result.valid)
        row = self._status_updates(topic_id)[0]
        self.assertEqual(row.duration, 48)
        self.assertTrue(row.based_on_last_post)
        self.assertEqual(row.created_by_id, settings.SYSTEM_USER_ID)

    def test_serialize_and_delete_for_topic(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 72)
        self._schedule(topic_id, "bump", 1)

        with self.SessionLocal() as db:
            payload = serialize_status_update(get_status_update(db, topic_id, "close"))
            self.assertEqual(payload["execute_at"], "2013-11-23T08:00:00+00:00")
            self.assertEqual(payload["duration"], 72)
            self.assertEqual(payload["status_type"], "close")
            self.assertFalse(payload["based_on_last_post"])
            self.assertEqual(delete_status_updates_for_topic(db, topic_id), 2)
            db.commit()

        self.assertEqual(self._status_updates(topic_id), [])
        self.assertIsNone(serialize_status_update(None))


if __name__ == "__main__":
    unittest.main()
