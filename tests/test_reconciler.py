import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from tests.base import *  # noqa: F401,F403

from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.models.topic import ARCHETYPE_BANNER, ARCHETYPE_REGULAR
from app.services.events import topic_channel
from app.services.reconciler import PendingUpdate, StatusUpdateReconciler, run_once
from app.services.status_errors import TransientFailure
from app.services.status_updates import get_status_update, set_or_create_status_update
from app.services.topic_status import apply_status


class ExplodingDestroyer:
    def __init__(self):
        self.calls = 0

    def destroy_topic(self, db, topic, actor):
        self.calls += 1
        raise TransientFailure("post store timed out")

    def destroy_replies(self, db, topic, actor):
        self.calls += 1
        raise TransientFailure("post store timed out")


class ReconcilerTests(StatusUpdateDbBase):
    def _schedule(self, topic_id, status_type, time_spec, **options):
        with self.SessionLocal() as db:
            result = set_or_create_status_update(db, db.get(Topic, topic_id), status_type, time_spec, **options)
            db.commit()
            return result

    def _reconcile(self, now, **kwargs):
        with self.SessionLocal() as db:
            reconciler = StatusUpdateReconciler(db, publisher=self.publisher, **kwargs)
            with clock.travel(now):
                applied = reconciler.run_once(now)
            return reconciler, applied

    def _topic(self, topic_id):
        with self.SessionLocal() as db:
            return db.get(Topic, topic_id)

    def test_72_hour_close_fires_once(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", "72")

        reconciler, applied = self._reconcile(FROZEN_NOW + hours(72) + hours(1 / 60))

        self.assertEqual(len(applied), 1)
        self.assertEqual(applied[0].status_type, StatusType.CLOSE)
        self.assertEqual(applied[0].execute_at, datetime(2013, 11, 23, 8, 0, tzinfo=timezone.utc))
        self.assertTrue(self._topic(topic_id).closed)
        self.assertEqual(self._status_updates(topic_id), [])
        posts = self._history_posts(topic_id)
        self.assertEqual(len(posts), 1)
        self.assertEqual(posts[0].action_code, "autoclosed.enabled")
        self.assertIn("closed after 3 days", posts[0].raw)
        self.assertEqual(posts[0].user_id, settings.SYSTEM_USER_ID)
        self.assertEqual(reconciler.stats.applied, 1)

        _, again = self._reconcile(FROZEN_NOW + hours(80))
        self.assertEqual(again, [])
        self.assertEqual(len(self._history_posts(topic_id)), 1)

    def test_nothing_due_before_execute_at(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 72)

        reconciler, applied = self._reconcile(FROZEN_NOW + hours(71))

        self.assertEqual(applied, [])
        self.assertEqual(reconciler.stats.checked, 0)
        self.assertFalse(self._topic(topic_id).closed)
        self.assertEqual(len(self._status_updates(topic_id)), 1)

    def test_claim_is_at_most_once(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "bump", 1)

        with self.SessionLocal() as first, self.SessionLocal() as second:
            row = get_status_update(first, topic_id, "bump")
            pending = PendingUpdate.from_row(row)
            first.rollback()
            racer_a = StatusUpdateReconciler(first, publisher=self.publisher)
            racer_b = StatusUpdateReconciler(second, publisher=self.publisher)

            self.assertTrue(racer_a.claim(pending))
            first.commit()
            self.assertFalse(racer_b.claim(pending))
            second.rollback()

    def test_rescheduled_row_is_not_claimed_with_stale_time(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 1)
        with self.SessionLocal() as db:
            pending = PendingUpdate.from_row(get_status_update(db, topic_id, "close"))
        self._schedule(topic_id, "close", 5)

        with self.SessionLocal() as db:
            self.assertFalse(StatusUpdateReconciler(db, publisher=self.publisher).claim(pending))
            db.rollback()
        self.assertEqual(len(self._status_updates(topic_id)), 1)

    def test_past_row_fires_on_next_sweep(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", "2013-11-19 5:00")

        _, applied = self._reconcile(FROZEN_NOW)

        self.assertEqual(len(applied), 1)
        self.assertTrue(self._topic(topic_id).closed)

    def test_rows_of_one_topic_apply_in_order(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "open", 3)
        self._schedule(topic_id, "close", 1)

        _, applied = self._reconcile(FROZEN_NOW + hours(4))

        self.assertEqual([item.status_type for item in applied], [StatusType.CLOSE, StatusType.OPEN])
        self.assertFalse(self._topic(topic_id).closed)
        self.assertEqual(
            [post.action_code for post in self._history_posts(topic_id)],
            ["autoclosed.enabled", "autoclosed.disabled"],
        )

    def test_oldest_rows_first_across_topics(self):
        late_id = self._make_topic("Late")
        early_id = self._make_topic("Early")
        self._schedule(late_id, "bump", 2)
        self._schedule(early_id, "bump", 1)

        _, applied = self._reconcile(FROZEN_NOW + hours(3))

        self.assertEqual([item.topic_id for item in applied], [early_id, late_id])

    def test_deleted_topic_drops_row(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 1)
        with self.SessionLocal() as db:
            db.get(Topic, topic_id).deleted_at = FROZEN_NOW
            db.commit()

        reconciler, applied = self._reconcile(FROZEN_NOW + hours(2))

        self.assertEqual(applied, [])
        self.assertEqual(reconciler.stats.dropped, 1)
        self.assertEqual(self._status_updates(topic_id), [])

    def test_transient_failure_keeps_row_for_next_sweep(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "delete", 1)
        self._schedule(topic_id, "bump", 1)
        failures = []
        destroyer = ExplodingDestroyer()

        reconciler, applied = self._reconcile(
            FROZEN_NOW + hours(2),
            destroyer=destroyer,
            on_failure=lambda pending, exc: failures.append((pending.status_type, type(exc))),
        )

        self.assertEqual([item.status_type for item in applied], [StatusType.BUMP])
        self.assertEqual(reconciler.stats.failed, 1)
        self.assertEqual(failures, [(StatusType.DELETE, TransientFailure)])
        self.assertEqual([row.status_type for row in self._status_updates(topic_id)], ["delete"])
        self.assertIsNone(self._topic(topic_id).deleted_at)

        _, retried = self._reconcile(FROZEN_NOW + hours(3))
        self.assertEqual([item.status_type for item in retried], [StatusType.DELETE])
        self.assertIsNotNone(self._topic(topic_id).deleted_at)

    def test_failed_commit_publishes_nothing(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "bump", 1)
        locked = OperationalError("COMMIT", {}, Exception("database is locked"))

        with self.SessionLocal() as db:
            reconciler = StatusUpdateReconciler(db, publisher=self.publisher)
            with clock.travel(FROZEN_NOW + hours(2)), patch.object(db, "commit", side_effect=locked):
                applied = reconciler.run_once(FROZEN_NOW + hours(2))

        self.assertEqual(applied, [])
        self.assertEqual(reconciler.stats.failed, 1)
        self.assertEqual(self.publisher.on(topic_channel(topic_id)), [])
        self.assertEqual([row.status_type for row in self._status_updates(topic_id)], ["bump"])

        _, retried = self._reconcile(FROZEN_NOW + hours(3))
        self.assertEqual([item.status_type for item in retried], [StatusType.BUMP])
        self.assertEqual([event.payload["type"] for event in self.publisher.on(topic_channel(topic_id))], ["bump"])

    def test_delete_removes_topic_and_pending_updates(self):
        topic_id = self._make_topic(replies=2)
        self._schedule(topic_id, "delete", 1)
        self._schedule(topic_id, "reminder", 48)

        _, applied = self._reconcile(FROZEN_NOW + hours(2))

        self.assertEqual(applied[0].detail, {"deleted": True})
        self.assertEqual(self._status_updates(topic_id), [])
        with self.SessionLocal() as db:
            self.assertIsNotNone(db.get(Topic, topic_id).deleted_at)
            posts = db.execute(select(Post).where(Post.topic_id == topic_id)).scalars().all()
            self.assertTrue(all(post.deleted_at is not None for post in posts))

    def test_delete_replies_keeps_first_post(self):
        topic_id = self._make_topic(replies=2)
        self._schedule(topic_id, "delete_replies", 1)

        _, applied = self._reconcile(FROZEN_NOW + hours(2))

        self.assertEqual(applied[0].detail, {"replies_deleted": 2})
        with self.SessionLocal() as db:
            posts = db.execute(select(Post).where(Post.topic_id == topic_id).order_by(Post.post_number)).scalars().all()
            self.assertEqual([post.deleted_at is None for post in posts], [True, False, False])
            self.assertIsNone(db.get(Topic, topic_id).deleted_at)

    def test_publish_to_category_demotes_banner(self):
        topic_id = self._make_topic(archetype=ARCHETYPE_BANNER)
        self._schedule(topic_id, "publish_to_category", 1, category_id=12)

        self._reconcile(FROZEN_NOW + hours(2))

        topic = self._topic(topic_id)
        self.assertEqual(topic.category_id, 12)
        self.assertEqual(topic.archetype, ARCHETYPE_REGULAR)
        self.assertEqual(
            self.publisher.on(topic_channel(topic_id))[-1].payload,
            {"type": "published", "category_id": 12},
        )

    def test_bump_and_reminder_only_emit_events(self):
        owner_id = self._make_user("owner", admin=True)
        topic_id = self._make_topic(user_id=owner_id)
        self._schedule(topic_id, "bump", 1)
        self._schedule(topic_id, "reminder", 1)

        _, applied = self._reconcile(FROZEN_NOW + hours(2))

        self.assertEqual(len(applied), 2)
        topic = self._topic(topic_id)
        self.assertEqual(topic.bumped_at, FROZEN_NOW)
        self.assertFalse(topic.closed)
        events = self.publisher.on(topic_channel(topic_id))
        self.assertEqual(sorted(event.payload["type"] for event in events), ["bump", "reminder"])
        reminder = next(event for event in events if event.payload["type"] == "reminder")
        self.assertEqual(reminder.user_ids, [owner_id])
        self.assertEqual(self._history_posts(topic_id), [])

    def test_expired_pins_are_released(self):
        staff_id = self._make_user("mod", moderator=True)
        topic_id = self._make_topic()
        kept_id = self._make_topic()
        with self.SessionLocal() as db:
            apply_status(db, topic_id, "pinned", True, db.get(User, staff_id), until="24")
            apply_status(db, kept_id, "pinned", True, db.get(User, staff_id))
            db.commit()

        reconciler, _ = self._reconcile(FROZEN_NOW + hours(25))

        self.assertEqual(reconciler.stats.unpinned, 1)
        self.assertIsNone(self._topic(topic_id).pinned_at)
        self.assertIsNone(self._topic(topic_id).pinned_until)
        self.assertIsNotNone(self._topic(kept_id).pinned_at)

    def test_frozen_last_post_close_fires_at_stored_time(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 24, based_on_last_post=True)
        with self.SessionLocal() as db:
            db.get(Topic, topic_id).last_posted_at = FROZEN_NOW + hours(12)
            db.commit()

        _, applied = self._reconcile(FROZEN_NOW + hours(25), live_last_post=False)

        self.assertEqual(len(applied), 1)
        self.assertIn("since the last reply", self._history_posts(topic_id)[0].raw)

    def test_live_last_post_reschedules_close(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 24, based_on_last_post=True)
        with self.SessionLocal() as db:
            db.get(Topic, topic_id).last_posted_at = FROZEN_NOW + hours(12)
            db.commit()

        reconciler, applied = self._reconcile(FROZEN_NOW + hours(25), live_last_post=True)

        self.assertEqual(applied, [])
        self.assertEqual(reconciler.stats.rescheduled, 1)
        self.assertFalse(self._topic(topic_id).closed)
        self.assertEqual(self._status_updates(topic_id)[0].execute_at, FROZEN_NOW + hours(36))

        _, later = self._reconcile(FROZEN_NOW + hours(37), live_last_post=True)
        self.assertEqual(len(later), 1)
        self.assertTrue(self._topic(topic_id).closed)

    def test_module_run_once(self):
        topic_id = self._make_topic()
        self._schedule(topic_id, "close", 1)

        with self.SessionLocal() as db:
            with clock.travel(FROZEN_NOW + hours(2)):
                applied = run_once(db, publisher=self.publisher)

        self.assertEqual([item.topic_id for item in applied], [topic_id])
        self.assertEqual(applied[0].as_dict()["status_type"], "close")


if __name__ == "__main__":
    unittest.main()
