"""Tests del check-in Kaizen y de las revisiones semanales y mensuales."""

from datetime import date, datetime, timedelta

import pytest
from fastapi import HTTPException
from freezegun import freeze_time

import reviews
from gamification import save_kaizen_checkin
from models import Goal, KaizenCheckin
from schemas import KaizenCheckinCreate, MonthlyReviewCreate, WeeklyReviewCreate
from tests.helpers import make_task

NOW = datetime(2024, 1, 15, 18, 0)   # lunes
ALL_AREAS = dict(health=True, relationships=True, wealth=True, career=True,
                 personal_growth=True, lifestyle=True)


# =============================================================================
# KAIZEN
# =============================================================================


class TestKaizen:
    def test_checkin_gives_ten_points(self, db, user):
        result = save_kaizen_checkin(db, user, KaizenCheckinCreate(health=True), NOW)

        assert result["is_new"] is True
        assert result["points_earned"] == 10
        assert result["is_balanced_day"] is False
        assert result["streak"]["current_count"] == 1
        assert user.total_points == 10

    def test_balanced_day_gives_bonus(self, db, user):
        result = save_kaizen_checkin(db, user, KaizenCheckinCreate(**ALL_AREAS), NOW)
        assert result["points_earned"] == 35
        assert result["is_balanced_day"] is True

    def test_redoing_applies_only_the_difference(self, db, user):
        save_kaizen_checkin(db, user, KaizenCheckinCreate(health=True), NOW)

        upgraded = save_kaizen_checkin(db, user, KaizenCheckinCreate(**ALL_AREAS), NOW)
        assert upgraded["is_new"] is False
        assert upgraded["points_delta"] == 25
        assert user.total_points == 35

        downgraded = save_kaizen_checkin(db, user, KaizenCheckinCreate(career=True), NOW)
        assert downgraded["points_delta"] == -25
        assert user.total_points == 10
        assert db.query(KaizenCheckin).count() == 1

    def test_redo_does_not_extend_streak(self, db, user):
        save_kaizen_checkin(db, user, KaizenCheckinCreate(health=True), NOW)
        result = save_kaizen_checkin(db, user, KaizenCheckinCreate(wealth=True), NOW)
        assert result["streak"]["current_count"] == 1

    @freeze_time("2024-01-15 18:00:00")
    def test_endpoints(self, client, auth_headers):
        response = client.post("/kaizen", json={"health": True, "notes": "Caminé 5 km"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["checkin"]["checkin_date"] == "2024-01-15"

        body = client.get("/kaizen", headers=auth_headers).json()
        assert [c["notes"] for c in body["checkins"]] == ["Caminé 5 km"]
        assert body["streak"]["current_count"] == 1

    def test_range_needs_both_ends(self, client, auth_headers):
        response = client.get("/kaizen", params={"start_date": "2024-01-01"}, headers=auth_headers)
        assert response.status_code == 400


# =============================================================================
# RESÚMENES
# =============================================================================


class TestSummaries:
    def test_weekly_summary(self, db, user):
        make_task(db, user, priority="MIT", status="COMPLETED", points_earned=100,
                  scheduled_date=date(2024, 1, 15))
        make_task(db, user, scheduled_date=date(2024, 1, 16))
        make_task(db, user, status="COMPLETED", scheduled_date=date(2024, 1, 8))   # semana anterior
        save_kaizen_checkin(db, user, KaizenCheckinCreate(health=True), NOW)

        summary = reviews.weekly_summary(db, user, 0, NOW)

        assert summary["week_range"] == {"start": "2024-01-15", "end": "2024-01-21", "week_offset": 0}
        assert summary["stats"]["tasks_completed"] == 1
        assert summary["stats"]["total_tasks"] == 2
        assert summary["stats"]["completion_rate"] == 50
        assert summary["stats"]["points_earned"] == 100
        assert summary["goal_alignment"]["unlinked_completed"] == 1
        assert summary["goal_alignment"]["alignment_rate"] == 0

        monday = summary["daily_breakdown"][0]
        assert (monday["day_of_week"], monday["mit_completed"], monday["total"]) == ("MON", True, 1)
        assert len(summary["daily_breakdown"]) == 7

        kaizen = summary["kaizen"]
        assert (kaizen["checkins_completed"], kaizen["checkins_total"]) == (1, 7)
        assert kaizen["strongest_area"] == {"area": "health", "count": 1}
        assert kaizen["weakest_area"]["count"] == 0
        assert summary["submitted"] is False

    def test_previous_week_offset(self, db, user):
        make_task(db, user, status="COMPLETED", scheduled_date=date(2024, 1, 8))
        summary = reviews.weekly_summary(db, user, -1, NOW)
        assert summary["week_range"]["start"] == "2024-01-08"
        assert summary["stats"]["tasks_completed"] == 1

    def test_monthly_summary(self, db, user):
        db.add(Goal(user_id=user.id, level="monthly", title="Ahorrar", status="COMPLETED",
                    target_month=date(2024, 1, 1), progress=100))
        db.add(Goal(user_id=user.id, level="monthly", title="Febrero", target_month=date(2024, 2, 1)))
        db.commit()
        make_task(db, user, status="COMPLETED", scheduled_date=date(2024, 1, 3))

        summary = reviews.monthly_summary(db, user, 0, NOW)

        assert summary["month_range"]["end"] == "2024-01-31"
        assert [w["start_date"] for w in summary["weekly_breakdown"]] == [
            "2024-01-01", "2024-01-08", "2024-01-15", "2024-01-22", "2024-01-29"
        ]
        assert summary["weekly_breakdown"][0]["tasks_completed"] == 1
        assert (summary["goals"]["completed"], summary["goals"]["total"]) == (1, 1)


# =============================================================================
# REFLEXIONES
# =============================================================================


class TestSubmitReviews:
    def test_first_weekly_review_awards_points_once(self, db, user):
        first = reviews.submit_weekly_review(db, user, WeeklyReviewCreate(wins="Todo"), NOW)
        again = reviews.submit_weekly_review(db, user, WeeklyReviewCreate(wins="Todo, corregido"), NOW)

        assert first["is_new"] is True
        assert first["points_awarded"] == 50
        assert again["is_new"] is False
        assert again["points_awarded"] == 0
        assert again["review"].wins == "Todo, corregido"
        assert user.total_points == 50

    def test_snapshot_is_recomputed_on_update(self, db, user):
        reviews.submit_weekly_review(db, user, WeeklyReviewCreate(), NOW)
        make_task(db, user, status="COMPLETED", scheduled_date=date(2024, 1, 15))

        result = reviews.submit_weekly_review(db, user, WeeklyReviewCreate(), NOW)

        assert result["review"].tasks_completed == 1

    def test_consecutive_weeks_build_a_streak(self, db, user):
        reviews.submit_weekly_review(db, user, WeeklyReviewCreate(week_offset=-1), NOW)
        result = reviews.submit_weekly_review(db, user, WeeklyReviewCreate(week_offset=0), NOW)
        assert result["streak"]["current_count"] == 2

    def test_skipped_week_restarts_streak(self, db, user):
        reviews.submit_weekly_review(db, user, WeeklyReviewCreate(week_offset=-2), NOW)
        result = reviews.submit_weekly_review(db, user, WeeklyReviewCreate(week_offset=0), NOW)
        assert result["streak"]["current_count"] == 1

    def test_late_review_joins_the_weeks_around_it(self, db, user):
        wednesday = datetime(2024, 1, 17, 10, 0)
        reviews.submit_weekly_review(db, user, WeeklyReviewCreate(), datetime(2024, 1, 3, 10, 0))
        reviews.submit_weekly_review(db, user, WeeklyReviewCreate(), wednesday)

        result = reviews.submit_weekly_review(db, user, WeeklyReviewCreate(week_offset=-1), wednesday)

        assert result["review"].week_start == date(2024, 1, 8)
        assert result["streak"] == {"current_count": 3, "longest_count": 3}

    def test_late_monthly_review_joins_the_months_around_it(self, db, user):
        march = datetime(2024, 3, 5, 10, 0)
        reviews.submit_monthly_review(db, user, MonthlyReviewCreate(), datetime(2024, 1, 20, 10, 0))
        reviews.submit_monthly_review(db, user, MonthlyReviewCreate(), march)

        result = reviews.submit_monthly_review(db, user, MonthlyReviewCreate(month_offset=-1), march)

        assert result["streak"]["current_count"] == 3

    def test_period_runs(self):
        def previous_week(d):
            return d - timedelta(weeks=1)

        starts = [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 29), date(2024, 2, 5)]
        assert reviews.period_runs(starts, previous_week) == (2, 2)
        assert reviews.period_runs([date(2024, 1, 1)], previous_week) == (1, 1)
        assert reviews.period_runs([], previous_week) == (0, 0)

    def test_monthly_review(self, db, user):
        db.add(Goal(user_id=user.id, level="monthly", title="Enero", target_month=date(2024, 1, 1)))
        db.commit()

        result = reviews.submit_monthly_review(db, user, MonthlyReviewCreate(learnings="Menos es más"), NOW)

        assert result["points_awarded"] == 100
        assert result["review"].month_start == date(2024, 1, 1)
        assert (result["review"].goals_completed, result["review"].goals_total) == (0, 1)

    def test_history(self, db, user):
        reviews.submit_weekly_review(db, user, WeeklyReviewCreate(week_offset=-1), NOW)
        reviews.submit_weekly_review(db, user, WeeklyReviewCreate(week_offset=0), NOW)

        rows, total = reviews.review_history(db, user, "weekly", limit=1)

        assert total == 2
        assert [r.week_start for r in rows] == [date(2024, 1, 15)]

    def test_history_rejects_unknown_type(self, db, user):
        with pytest.raises(HTTPException) as exc:
            reviews.review_history(db, user, "yearly")
        assert exc.value.status_code == 400

    @freeze_time("2024-01-15 18:00:00")
    def test_endpoints(self, client, auth_headers):
        submitted = client.post("/review/weekly", json={"wins": "Entrené 3 días"}, headers=auth_headers)
        assert submitted.json()["data"]["points_awarded"] == 50

        summary = client.get("/review/weekly", headers=auth_headers).json()
        assert summary["submitted"] is True

        history = client.get("/review/history", params={"type": "weekly"}, headers=auth_headers).json()
        assert history["total"] == 1
        assert history["has_more"] is False
        assert history["reviews"][0]["wins"] == "Entrené 3 días"

    def test_future_offset_is_rejected(self, client, auth_headers):
        response = client.get("/review/weekly", params={"week_offset": 1}, headers=auth_headers)
        assert response.status_code == 400
