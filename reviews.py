"""
=============================================================================
REVIEWS.PY - Revisiones Semanales y Mensuales
=============================================================================
Dos cosas distintas:

  1. RESUMEN (GET): estadísticas calculadas al vuelo para una semana
     (lunes-domingo) o un mes, en la zona horaria del usuario.
  2. REFLEXIÓN (POST): el usuario escribe sus "wins", retos y foco.
     Se guarda con una FOTO de las estadísticas de ese momento.
     La primera vez de cada periodo → puntos + racha de revisión.

Offsets: 0 = periodo actual, -1 = el anterior, etc.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from gamification import (
    BONUS_POINTS, KAIZEN_AREAS, add_points, get_streak, check_badges, badge_to_dict
)
from models import (
    User, Goal, DailyTask, KaizenCheckin, WeeklyReview, MonthlyReview, Streak,
    GoalLevel, GoalStatus, TaskPriority, TaskStatus, StreakType
)
from timezones import (
    user_today, week_start, month_start, month_end, shift_months, date_range,
    day_code, to_naive_utc
)

logger = logging.getLogger("cascada.reviews")


# =============================================================================
# ===================== PERIODOS ==============================================
# =============================================================================

def week_bounds(user: User, week_offset: int = 0, now: Optional[datetime] = None) -> tuple[date, date]:
    """(lunes, domingo) de la semana pedida"""
    monday = week_start(user_today(user.timezone, now)) + timedelta(weeks=week_offset)
    return monday, monday + timedelta(days=6)


def month_bounds(user: User, month_offset: int = 0, now: Optional[datetime] = None) -> tuple[date, date]:
    """(día 1, último día) del mes pedido"""
    first = shift_months(month_start(user_today(user.timezone, now)), month_offset)
    return first, month_end(first)


# =============================================================================
# ===================== ESTADÍSTICAS ==========================================
# =============================================================================

def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def _tasks_between(db: Session, user: User, start: date, end: date) -> list[DailyTask]:
    return db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.scheduled_date >= start,
        DailyTask.scheduled_date <= end
    ).order_by(DailyTask.scheduled_date).all()


def task_stats(tasks: list) -> dict:
    """Conteos, MIT, alineación con objetivos y puntos de una lista de tareas"""
    completed = [t for t in tasks if t.status == TaskStatus.COMPLETED.value]
    mit = [t for t in tasks if t.priority == TaskPriority.MIT.value]
    mit_completed = [t for t in mit if t.status == TaskStatus.COMPLETED.value]
    linked = [t for t in tasks if t.weekly_goal_id is not None]
    linked_completed = [t for t in completed if t.weekly_goal_id is not None]

    return {
        "tasks_completed": len(completed),
        "total_tasks": len(tasks),
        "completion_rate": _percent(len(completed), len(tasks)),
        "mit_completed": len(mit_completed),
        "mit_total": len(mit),
        "mit_completion_rate": _percent(len(mit_completed), len(mit)),
        "goals_progressed": len({t.weekly_goal_id for t in linked_completed}),
        "points_earned": sum(t.points_earned or 0 for t in tasks),
        "goal_alignment": {
            "linked_completed": len(linked_completed),
            "unlinked_completed": len(completed) - len(linked_completed),
            "alignment_rate": _percent(len(linked_completed), len(completed)),
            # alineación → de lo COMPLETADO, cuánto iba hacia un objetivo
            "total_linked": len(linked),
            "total_unlinked": len(tasks) - len(linked),
        },
    }


def kaizen_stats(db: Session, user: User, start: date, end: date) -> dict:
    """Check-ins del periodo, días equilibrados y área más fuerte / más débil"""
    checkins = db.query(KaizenCheckin).filter(
        KaizenCheckin.user_id == user.id,
        KaizenCheckin.checkin_date >= start,
        KaizenCheckin.checkin_date <= end
    ).order_by(KaizenCheckin.checkin_date).all()

    days = len(date_range(start, end))
    breakdown = {area: sum(1 for c in checkins if getattr(c, area)) for area in KAIZEN_AREAS}
    ranked = sorted(breakdown.items(), key=lambda item: item[1], reverse=True)

    strongest = {"area": ranked[0][0], "count": ranked[0][1]} if checkins else None
    weakest = None
    if checkins and ranked[-1][1] < days:
        weakest = {"area": ranked[-1][0], "count": ranked[-1][1]}

    return {
        "checkins_completed": len(checkins),
        "checkins_total": days,
        "balanced_days": sum(1 for c in checkins if all(getattr(c, a) for a in KAIZEN_AREAS)),
        "area_breakdown": breakdown,
        "strongest_area": strongest,
        "weakest_area": weakest,
    }


def weekly_summary(db: Session, user: User, week_offset: int = 0, now: Optional[datetime] = None) -> dict:
    start, end = week_bounds(user, week_offset, now)
    tasks = _tasks_between(db, user, start, end)
    stats = task_stats(tasks)

    daily = []
    for day in date_range(start, end):
        day_tasks = [t for t in tasks if t.scheduled_date == day]
        daily.append({
            "date": day.isoformat(),
            "day_of_week": day_code(day),
            "completed": sum(1 for t in day_tasks if t.status == TaskStatus.COMPLETED.value),
            "total": len(day_tasks),
            "mit_completed": any(
                t.priority == TaskPriority.MIT.value and t.status == TaskStatus.COMPLETED.value
                for t in day_tasks
            ),
            "points_earned": sum(t.points_earned or 0 for t in day_tasks),
        })

    review = db.query(WeeklyReview).filter(
        WeeklyReview.user_id == user.id,
        WeeklyReview.week_start == start
    ).first()

    return {
        "week_range": {"start": start.isoformat(), "end": end.isoformat(), "week_offset": week_offset},
        "stats": {k: v for k, v in stats.items() if k != "goal_alignment"},
        "goal_alignment": stats["goal_alignment"],
        "daily_breakdown": daily,
        "kaizen": kaizen_stats(db, user, start, end),
        "submitted": review is not None,
    }


def _monthly_goals(db: Session, user: User, first: date) -> list[Goal]:
    return db.query(Goal).filter(
        Goal.user_id == user.id,
        Goal.level == GoalLevel.monthly.value,
        Goal.target_month == first
    ).all()


def monthly_summary(db: Session, user: User, month_offset: int = 0, now: Optional[datetime] = None) -> dict:
    first, last = month_bounds(user, month_offset, now)
    tasks = _tasks_between(db, user, first, last)
    stats = task_stats(tasks)

    weekly = []
    monday = week_start(first)
    number = 1
    while monday <= last:
        sunday = monday + timedelta(days=6)
        week_tasks = [t for t in tasks if monday <= t.scheduled_date <= sunday]
        week_stats = task_stats(week_tasks)
        weekly.append({
            "week_number": number,
            "start_date": monday.isoformat(),
            "end_date": sunday.isoformat(),
            "tasks_completed": week_stats["tasks_completed"],
            "total_tasks": week_stats["total_tasks"],
            "mit_completed": week_stats["mit_completed"],
            "mit_total": week_stats["mit_total"],
            "points_earned": week_stats["points_earned"],
        })
        monday += timedelta(weeks=1)
        number += 1

    goals = _monthly_goals(db, user, first)
    review = db.query(MonthlyReview).filter(
        MonthlyReview.user_id == user.id,
        MonthlyReview.month_start == first
    ).first()

    return {
        "month_range": {"start": first.isoformat(), "end": last.isoformat(), "month_offset": month_offset},
        "stats": {k: v for k, v in stats.items() if k != "goal_alignment"},
        "goal_alignment": stats["goal_alignment"],
        "weekly_breakdown": weekly,
        "goals": {
            "completed": sum(1 for g in goals if g.status == GoalStatus.COMPLETED.value),
            "total": len(goals),
            "items": [
                {"id": g.id, "title": g.title, "status": g.status, "progress": g.progress or 0}
                for g in goals
            ],
        },
        "kaizen": kaizen_stats(db, user, first, last),
        "submitted": review is not None,
    }


# =============================================================================
# ===================== RACHAS DE REVISIÓN ====================================
# =============================================================================
# Cuentan PERIODOS seguidos, no días: revisar la semana 10 y luego la 11
# suma uno; saltarse la 11 y revisar la 12 empieza de nuevo.

def period_runs(reviewed_starts, step) -> tuple[int, int]:
    """
    (tramo que acaba en el último periodo revisado, tramo más largo).

    step → función que da el inicio del periodo anterior
    """
    current = longest = run = 0
    expected = None
    for start in sorted(set(reviewed_starts), reverse=True):
        if start == expected:
            run += 1
        else:
            if current == 0 and run:
                current = run
            run = 1
        longest = max(longest, run)
        expected = step(start)
    if current == 0:
        current = run
    return current, longest


def record_period_streak(db: Session, user: User, streak_type: StreakType,
                         reviewed_starts, step, now: datetime) -> Streak:
    """
    Sin commit. Recalcula la racha con TODOS los periodos revisados
    (incluido el nuevo): una revisión atrasada puede unir dos tramos.
    """
    row = get_streak(db, user, streak_type)
    if row is None:
        row = Streak(user_id=user.id, type=streak_type.value, current_count=0, longest_count=0)
        db.add(row)
        db.flush()

    current, longest = period_runs(reviewed_starts, step)
    row.current_count = current
    row.longest_count = max(row.longest_count or 0, longest)
    row.last_action_at = to_naive_utc(now)
    return row


# =============================================================================
# ===================== ENVIAR REFLEXIÓN ======================================
# =============================================================================

def submit_weekly_review(db: Session, user: User, data, now: Optional[datetime] = None) -> dict:
    """
    Crea o actualiza la revisión de la semana. Las estadísticas se
    recalculan siempre; los puntos y la racha solo la primera vez.
    """
    now = now or datetime.utcnow()
    start, end = week_bounds(user, data.week_offset, now)
    stats = task_stats(_tasks_between(db, user, start, end))

    review = db.query(WeeklyReview).filter(
        WeeklyReview.user_id == user.id,
        WeeklyReview.week_start == start
    ).first()

    is_new = review is None
    if is_new:
        review = WeeklyReview(user_id=user.id, week_start=start, review_points=BONUS_POINTS["weekly_review"])
        db.add(review)

    review.wins = data.wins
    review.challenges = data.challenges
    review.next_week_focus = data.next_week_focus
    review.tasks_completed = stats["tasks_completed"]
    review.total_tasks = stats["total_tasks"]
    review.mit_completed = stats["mit_completed"]
    review.mit_total = stats["mit_total"]
    review.points_earned = stats["points_earned"]
    review.goal_alignment_rate = stats["goal_alignment"]["alignment_rate"]

    leveled_up = False
    streak = None
    badges = []
    if is_new:
        leveled_up = add_points(user, BONUS_POINTS["weekly_review"])
        db.flush()
        reviewed = db.query(WeeklyReview.week_start).filter(WeeklyReview.user_id == user.id).all()
        streak = record_period_streak(
            db, user, StreakType.WEEKLY_REVIEW,
            [r[0] for r in reviewed], lambda d: d - timedelta(weeks=1), now
        )
        badges = check_badges(db, user)

    db.commit()
    logger.info(f"📝 Revisión semanal de {user.email} ({start}) {'creada' if is_new else 'actualizada'}")

    return {
        "review": review,
        "is_new": is_new,
        "points_awarded": BONUS_POINTS["weekly_review"] if is_new else 0,
        "leveled_up": leveled_up,
        "streak": {"current_count": streak.current_count, "longest_count": streak.longest_count} if streak else None,
        "badges": [badge_to_dict(b) for b in badges],
    }


def submit_monthly_review(db: Session, user: User, data, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    first, last = month_bounds(user, data.month_offset, now)
    stats = task_stats(_tasks_between(db, user, first, last))
    goals = _monthly_goals(db, user, first)

    review = db.query(MonthlyReview).filter(
        MonthlyReview.user_id == user.id,
        MonthlyReview.month_start == first
    ).first()

    is_new = review is None
    if is_new:
        review = MonthlyReview(user_id=user.id, month_start=first, review_points=BONUS_POINTS["monthly_review"])
        db.add(review)

    review.wins = data.wins
    review.learnings = data.learnings
    review.next_month_focus = data.next_month_focus
    review.tasks_completed = stats["tasks_completed"]
    review.total_tasks = stats["total_tasks"]
    review.mit_completed = stats["mit_completed"]
    review.mit_total = stats["mit_total"]
    review.points_earned = stats["points_earned"]
    review.goal_alignment_rate = stats["goal_alignment"]["alignment_rate"]
    review.goals_completed = sum(1 for g in goals if g.status == GoalStatus.COMPLETED.value)
    review.goals_total = len(goals)

    leveled_up = False
    streak = None
    badges = []
    if is_new:
        leveled_up = add_points(user, BONUS_POINTS["monthly_review"])
        db.flush()
        reviewed = db.query(MonthlyReview.month_start).filter(MonthlyReview.user_id == user.id).all()
        streak = record_period_streak(
            db, user, StreakType.MONTHLY_REVIEW,
            [r[0] for r in reviewed], lambda d: shift_months(d, -1), now
        )
        badges = check_badges(db, user)

    db.commit()
    logger.info(f"🗓️ Revisión mensual de {user.email} ({first:%Y-%m}) {'creada' if is_new else 'actualizada'}")

    return {
        "review": review,
        "is_new": is_new,
        "points_awarded": BONUS_POINTS["monthly_review"] if is_new else 0,
        "leveled_up": leveled_up,
        "streak": {"current_count": streak.current_count, "longest_count": streak.longest_count} if streak else None,
        "badges": [badge_to_dict(b) for b in badges],
    }


# =============================================================================
# ===================== HISTORIAL =============================================
# =============================================================================

REVIEW_TYPES = {
    "weekly": (WeeklyReview, WeeklyReview.week_start),
    "monthly": (MonthlyReview, MonthlyReview.month_start),
}


def review_history(db: Session, user: User, review_type: str = "weekly",
                   limit: int = 10, offset: int = 0) -> tuple[list, int]:
    """Revisiones enviadas, de la más reciente a la más antigua. Retorna (filas, total)"""
    if review_type not in REVIEW_TYPES:
        raise HTTPException(status_code=400, detail="Tipo no válido. Usa 'weekly' o 'monthly'")

    model, order_column = REVIEW_TYPES[review_type]
    query = db.query(model).filter(model.user_id == user.id)
    total = query.count()
    rows = query.order_by(order_column.desc()).offset(offset).limit(min(limit, 50)).all()
    return rows, total
