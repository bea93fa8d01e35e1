"""Tests de la selección de desafíos y del recálculo de progreso."""

import random
from datetime import date, datetime, timedelta

from challenges import (
    DAILY_CHALLENGES, WEEKLY_CHALLENGES, available_challenges, ensure_challenges,
    measure_progress, notify_progress, select_challenges, update_progress
)
from gamification import complete_task
from models import Streak, UserChallenge
from tests.helpers import make_task

NOW = datetime(2024, 1, 15, 10, 0)   # lunes


def open_challenge(db, user, slug, target, bonus, challenge_type="DAILY", start=date(2024, 1, 15)):
    end = start if challenge_type == "DAILY" else start + timedelta(days=6)
    row = UserChallenge(user_id=user.id, type=challenge_type, category="MIT", slug=slug,
                        title=slug, description=slug, target_value=target, bonus_xp=bonus,
                        period_start=start, period_end=end)
    db.add(row)
    db.commit()
    return row


class TestSelection:
    def test_level_and_streak_requirements(self):
        slugs = {t.slug for t in available_challenges(WEEKLY_CHALLENGES, 1, 0)}
        assert "complete_20_tasks" in slugs
        assert "complete_30_tasks" not in slugs   # nivel 3
        assert "maintain_streak" not in slugs     # racha 3

        veteran = {t.slug for t in available_challenges(WEEKLY_CHALLENGES, 4, 5)}
        assert {"complete_30_tasks", "weekly_alignment_100", "maintain_streak"} <= veteran

    def test_random_pick_is_reproducible_with_seed(self):
        first = select_challenges(DAILY_CHALLENGES, rng=random.Random(7))
        second = select_challenges(DAILY_CHALLENGES, rng=random.Random(7))

        assert len(first) == 3
        assert len({t.slug for t in first}) == 3
        assert [t.slug for t in first] == [t.slug for t in second]

    def test_fewer_templates_than_count_returns_all(self):
        assert select_challenges(DAILY_CHALLENGES[:2], rng=random.Random(1)) == DAILY_CHALLENGES[:2]


class TestEnsureChallenges:
    def test_creates_three_daily_and_three_weekly_once(self, db, user):
        first = ensure_challenges(db, user, NOW, rng=random.Random(3))
        second = ensure_challenges(db, user, NOW + timedelta(hours=5), rng=random.Random(99))

        assert sorted(c.type for c in first) == ["DAILY"] * 3 + ["WEEKLY"] * 3
        assert [c.id for c in second] == [c.id for c in first]
        assert db.query(UserChallenge).count() == 6

    def test_weekly_period_is_monday_to_sunday(self, db, user):
        challenges = ensure_challenges(db, user, datetime(2024, 1, 18, 9, 0), rng=random.Random(3))
        weekly = [c for c in challenges if c.type == "WEEKLY"]
        assert {(c.period_start, c.period_end) for c in weekly} == {(date(2024, 1, 15), date(2024, 1, 21))}

    def test_next_day_gets_new_daily_challenges(self, db, user):
        ensure_challenges(db, user, NOW, rng=random.Random(3))
        ensure_challenges(db, user, NOW + timedelta(days=1), rng=random.Random(3))
        assert db.query(UserChallenge).filter_by(type="DAILY").count() == 6
        assert db.query(UserChallenge).filter_by(type="WEEKLY").count() == 3


class TestProgress:
    def test_completing_mit_closes_challenge_and_awards_bonus(self, db, user):
        challenge = open_challenge(db, user, "complete_mit", 1, 25)
        task = make_task(db, user, priority="MIT")
        complete_task(db, user, task, NOW)
        points_before = user.total_points

        report = update_progress(db, user, "task_completed", NOW)

        assert report.completed == ["complete_mit"]
        assert report.bonus_xp == 25
        assert challenge.is_completed is True
        assert challenge.current_value == 1
        assert user.total_points == points_before + 25

    def test_closed_challenge_is_not_paid_twice(self, db, user):
        open_challenge(db, user, "complete_mit", 1, 25)
        complete_task(db, user, make_task(db, user, priority="MIT"), NOW)
        update_progress(db, user, "task_completed", NOW)

        report = update_progress(db, user, "task_completed", NOW)

        assert report.completed == []
        assert report.bonus_xp == 0

    def test_partial_progress_is_recorded(self, db, user):
        challenge = open_challenge(db, user, "complete_3_tasks", 3, 30)
        complete_task(db, user, make_task(db, user), NOW)
        complete_task(db, user, make_task(db, user), NOW)

        report = update_progress(db, user, "task_completed", NOW)

        assert report.updated == [{"slug": "complete_3_tasks", "current_value": 2}]
        assert challenge.is_completed is False

    def test_mit_before_noon_and_streak_guardian(self, db, user):
        db.add(Streak(user_id=user.id, type="MIT_COMPLETION", current_count=9,
                      longest_count=9, last_action_at=NOW - timedelta(days=1)))
        db.commit()
        complete_task(db, user, make_task(db, user, priority="MIT"), NOW)

        values = measure_progress(db, user, NOW)

        assert values["mit_before_noon"] == 1
        # lunes → primer día de la semana
        assert values["maintain_streak"] == 1
        assert values["all_tasks_aligned"] == 0


class TestNotifyProgress:
    def test_missing_user_reports_error(self, db):
        report = notify_progress(lambda: db, 12345, "task_completed", NOW)
        assert not report.ok
        assert "12345" in report.errors[0]

    def test_failures_never_raise(self):
        class BrokenSession:
            rolled_back = closed = False

            def query(self, *args):
                raise RuntimeError("la BD se ha ido")

            def rollback(self):
                self.rolled_back = True

            def close(self):
                self.closed = True

        session = BrokenSession()
        report = notify_progress(lambda: session, 1, "kaizen_checkin", NOW)

        assert report.errors == ["RuntimeError: la BD se ha ido"]
        assert session.rolled_back and session.closed
