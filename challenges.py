"""
=============================================================================
CHALLENGES.PY - Desafíos Diarios y Semanales
=============================================================================
Cada día el usuario recibe 3 desafíos diarios y cada semana (lunes-domingo)
3 semanales, elegidos al azar entre los que encajan con su nivel y su racha.

Progreso:
  Tras completar una tarea, hacer el Kaizen o completar un objetivo, se
  recalcula el progreso de los desafíos abiertos. Esto NO forma parte de la
  transacción principal: main.py lo programa como BackgroundTask con
  notify_progress(), que abre su propia sesión.

  Es una notificación "best effort": si falla, la acción del usuario ya
  está guardada. El error se registra con traceback y se devuelve en el
  ProgressReport, pero nunca llega a la petición HTTP.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from gamification import add_points, active_streak_days, kaizen_checked_areas
from models import (
    User, Goal, DailyTask, KaizenCheckin, UserChallenge,
    ChallengeType, ChallengeCategory, GoalLevel, GoalStatus,
    TaskPriority, TaskStatus, StreakType
)
from timezones import user_today, week_start, local_day_bounds, get_timezone, to_utc, to_naive_utc

logger = logging.getLogger("cascada.challenges")

CHALLENGES_PER_PERIOD = 3


# =============================================================================
# ===================== PLANTILLAS ============================================
# =============================================================================

@dataclass
class ChallengeTemplate:
    slug: str
    title: str
    description: str
    category: ChallengeCategory
    type: ChallengeType
    target_value: int
    bonus_xp: int
    min_level: Optional[int] = None
    min_streak: Optional[int] = None


DAILY_CHALLENGES = [
    # ── Tareas ──
    ChallengeTemplate("complete_3_tasks", "Task Tackler", "Completa 3 tareas hoy",
                      ChallengeCategory.TASKS, ChallengeType.DAILY, 3, 30),
    ChallengeTemplate("complete_5_tasks", "Productivity Surge", "Completa 5 tareas hoy",
                      ChallengeCategory.TASKS, ChallengeType.DAILY, 5, 50, min_level=2),
    ChallengeTemplate("complete_all_primary", "Primary Focus", "Completa todas tus tareas PRIMARY de hoy",
                      ChallengeCategory.TASKS, ChallengeType.DAILY, 1, 40),
    # ── MIT ──
    ChallengeTemplate("complete_mit", "MIT Master", "Completa tu tarea más importante",
                      ChallengeCategory.MIT, ChallengeType.DAILY, 1, 25),
    ChallengeTemplate("mit_before_noon", "Early Bird", "Completa tu MIT antes de mediodía",
                      ChallengeCategory.MIT, ChallengeType.DAILY, 1, 35),
    # ── Alineación ──
    ChallengeTemplate("all_tasks_aligned", "Goal Aligned", "Completa solo tareas vinculadas a objetivos",
                      ChallengeCategory.ALIGNMENT, ChallengeType.DAILY, 1, 45),
    # ── Kaizen ──
    ChallengeTemplate("kaizen_checkin", "Reflect & Grow", "Haz tu check-in Kaizen",
                      ChallengeCategory.KAIZEN, ChallengeType.DAILY, 1, 20),
    ChallengeTemplate("kaizen_all_areas", "Balanced Day", "Marca las 6 áreas en tu Kaizen",
                      ChallengeCategory.KAIZEN, ChallengeType.DAILY, 6, 40),
]

WEEKLY_CHALLENGES = [
    ChallengeTemplate("complete_20_tasks", "Weekly Warrior", "Completa 20 tareas esta semana",
                      ChallengeCategory.TASKS, ChallengeType.WEEKLY, 20, 150),
    ChallengeTemplate("complete_30_tasks", "Productivity Champion", "Completa 30 tareas esta semana",
                      ChallengeCategory.TASKS, ChallengeType.WEEKLY, 30, 250, min_level=3),
    ChallengeTemplate("mit_5_days", "MIT Streak", "Completa tu MIT 5 días esta semana",
                      ChallengeCategory.MIT, ChallengeType.WEEKLY, 5, 200),
    ChallengeTemplate("mit_7_days", "Perfect MIT Week", "Completa tu MIT todos los días de la semana",
                      ChallengeCategory.MIT, ChallengeType.WEEKLY, 7, 350, min_level=2),
    ChallengeTemplate("weekly_alignment_80", "Focused Week", "Mantén un 80% de alineación esta semana",
                      ChallengeCategory.ALIGNMENT, ChallengeType.WEEKLY, 80, 175),
    ChallengeTemplate("weekly_alignment_100", "Laser Focus", "Consigue un 100% de alineación esta semana",
                      ChallengeCategory.ALIGNMENT, ChallengeType.WEEKLY, 100, 300, min_level=4),
    ChallengeTemplate("kaizen_5_days", "Reflection Habit", "Haz el Kaizen 5 días esta semana",
                      ChallengeCategory.KAIZEN, ChallengeType.WEEKLY, 5, 125),
    ChallengeTemplate("kaizen_7_days", "Perfect Reflection", "Haz el Kaizen todos los días de la semana",
                      ChallengeCategory.KAIZEN, ChallengeType.WEEKLY, 7, 250),
    ChallengeTemplate("complete_weekly_goal", "Goal Crusher", "Completa un objetivo semanal",
                      ChallengeCategory.GOALS, ChallengeType.WEEKLY, 1, 200),
    ChallengeTemplate("advance_3_goals", "Multi-Goal Progress", "Avanza en 3 objetivos distintos",
                      ChallengeCategory.GOALS, ChallengeType.WEEKLY, 3, 175),
    ChallengeTemplate("maintain_streak", "Streak Guardian", "Mantén tu racha toda la semana",
                      ChallengeCategory.STREAKS, ChallengeType.WEEKLY, 7, 150, min_streak=3),
]


def available_challenges(templates: list, user_level: int, current_streak: int) -> list:
    """Filtra las plantillas por nivel mínimo y racha mínima"""
    result = []
    for template in templates:
        if template.min_level and user_level < template.min_level:
            continue
        if template.min_streak and current_streak < template.min_streak:
            continue
        result.append(template)
    return result


def select_challenges(templates: list, count: int = CHALLENGES_PER_PERIOD,
                      rng: Optional[random.Random] = None) -> list:
    """Elige `count` al azar (todas si hay menos). rng inyectable para tests."""
    if len(templates) <= count:
        return list(templates)
    return (rng or random).sample(templates, count)


# =============================================================================
# ===================== GENERACIÓN ============================================
# =============================================================================

def current_periods(user: User, now: Optional[datetime] = None) -> dict:
    """Periodo actual de cada tipo, en la zona del usuario"""
    today = user_today(user.timezone, now)
    monday = week_start(today)
    return {
        ChallengeType.DAILY: (today, today),
        ChallengeType.WEEKLY: (monday, monday + timedelta(days=6)),
    }


def current_challenges(db: Session, user: User, now: Optional[datetime] = None) -> list[UserChallenge]:
    periods = current_periods(user, now)
    challenges = []
    for challenge_type, (start, _) in periods.items():
        challenges.extend(db.query(UserChallenge).filter(
            UserChallenge.user_id == user.id,
            UserChallenge.type == challenge_type.value,
            UserChallenge.period_start == start
        ).order_by(UserChallenge.id).all())
    return challenges


def ensure_challenges(db: Session, user: User, now: Optional[datetime] = None,
                      rng: Optional[random.Random] = None) -> list[UserChallenge]:
    """
    Crea los desafíos del día y de la semana si todavía no existen.
    Llamarla dos veces en el mismo periodo no crea nada nuevo.
    """
    now = now or datetime.utcnow()
    streak = active_streak_days(db, user, StreakType.MIT_COMPLETION, now)
    created = 0

    for challenge_type, (start, end) in current_periods(user, now).items():
        exists = db.query(UserChallenge).filter(
            UserChallenge.user_id == user.id,
            UserChallenge.type == challenge_type.value,
            UserChallenge.period_start == start
        ).first()
        if exists:
            continue

        templates = DAILY_CHALLENGES if challenge_type == ChallengeType.DAILY else WEEKLY_CHALLENGES
        for template in select_challenges(available_challenges(templates, user.level or 1, streak), rng=rng):
            db.add(UserChallenge(
                user_id=user.id,
                type=challenge_type.value,
                category=template.category.value,
                slug=template.slug,
                title=template.title,
                description=template.description,
                target_value=template.target_value,
                bonus_xp=template.bonus_xp,
                period_start=start,
                period_end=end,
            ))
            created += 1

    if created:
        db.commit()
        logger.info(f"🎲 {created} desafíos nuevos para {user.email}")

    return current_challenges(db, user, now)


# =============================================================================
# ===================== PROGRESO ==============================================
# =============================================================================

@dataclass
class ProgressReport:
    """Lo que ha pasado al recalcular el progreso"""
    event: str
    updated: list = field(default_factory=list)
    completed: list = field(default_factory=list)
    bonus_xp: int = 0
    errors: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _completed_tasks(db: Session, user: User):
    return db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.status == TaskStatus.COMPLETED.value
    )


def _alignment_rate(tasks: list) -> int:
    """% de tareas completadas que están vinculadas a un objetivo semanal"""
    if not tasks:
        return 0
    linked = sum(1 for t in tasks if t.weekly_goal_id is not None)
    return round(linked / len(tasks) * 100)


def _mit_before_noon(tasks: list, timezone: str) -> bool:
    tz = get_timezone(timezone)
    for task in tasks:
        if task.priority == TaskPriority.MIT.value and task.completed_at:
            if to_utc(task.completed_at).astimezone(tz).hour < 12:
                return True
    return False


def measure_progress(db: Session, user: User, now: datetime) -> dict:
    """
    Valor actual de cada desafío (por slug), calculado desde cero.
    Recalcular en vez de sumar +1 hace que desmarcar una tarea también cuente.
    """
    tz = user.timezone
    today = user_today(tz, now)
    monday = week_start(today)
    sunday = monday + timedelta(days=6)
    day_start, day_end = local_day_bounds(today, today, tz)
    week_from, week_to = local_day_bounds(monday, sunday, tz)

    today_tasks = _completed_tasks(db, user).filter(DailyTask.scheduled_date == today).all()
    week_tasks = _completed_tasks(db, user).filter(
        DailyTask.scheduled_date >= monday, DailyTask.scheduled_date <= sunday
    ).all()

    completed_today = _completed_tasks(db, user).filter(
        DailyTask.completed_at >= day_start, DailyTask.completed_at < day_end
    ).count()
    completed_week = _completed_tasks(db, user).filter(
        DailyTask.completed_at >= week_from, DailyTask.completed_at < week_to
    ).count()

    primary_today = db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.scheduled_date == today,
        DailyTask.priority == TaskPriority.PRIMARY.value
    ).all()
    all_primary_done = bool(primary_today) and all(
        t.status == TaskStatus.COMPLETED.value for t in primary_today
    )

    mit_days = len({t.scheduled_date for t in week_tasks if t.priority == TaskPriority.MIT.value})

    checkin_today = db.query(KaizenCheckin).filter(
        KaizenCheckin.user_id == user.id,
        KaizenCheckin.checkin_date == today
    ).first()
    kaizen_days = db.query(KaizenCheckin).filter(
        KaizenCheckin.user_id == user.id,
        KaizenCheckin.checkin_date >= monday,
        KaizenCheckin.checkin_date <= sunday
    ).count()

    weekly_goals_done = db.query(Goal).filter(
        Goal.user_id == user.id,
        Goal.level == GoalLevel.weekly.value,
        Goal.status == GoalStatus.COMPLETED.value,
        Goal.completed_at >= week_from,
        Goal.completed_at < week_to
    ).count()
    goals_advanced = db.query(func.count(func.distinct(DailyTask.weekly_goal_id))).filter(
        DailyTask.user_id == user.id,
        DailyTask.status == TaskStatus.COMPLETED.value,
        DailyTask.weekly_goal_id.isnot(None),
        DailyTask.completed_at >= week_from,
        DailyTask.completed_at < week_to
    ).scalar() or 0

    mit_streak = active_streak_days(db, user, StreakType.MIT_COMPLETION, now)
    days_into_week = (today - monday).days + 1
    weekly_alignment = _alignment_rate(week_tasks)
    daily_alignment = _alignment_rate(today_tasks)

    return {
        "complete_3_tasks": completed_today,
        "complete_5_tasks": completed_today,
        "complete_all_primary": 1 if all_primary_done else 0,
        "complete_mit": 1 if any(t.priority == TaskPriority.MIT.value for t in today_tasks) else 0,
        "mit_before_noon": 1 if _mit_before_noon(today_tasks, tz) else 0,
        "all_tasks_aligned": 1 if daily_alignment == 100 else 0,
        "kaizen_checkin": 1 if checkin_today else 0,
        "kaizen_all_areas": kaizen_checked_areas(checkin_today) if checkin_today else 0,
        "complete_20_tasks": completed_week,
        "complete_30_tasks": completed_week,
        "mit_5_days": mit_days,
        "mit_7_days": mit_days,
        "weekly_alignment_80": weekly_alignment,
        "weekly_alignment_100": weekly_alignment,
        "kaizen_5_days": kaizen_days,
        "kaizen_7_days": kaizen_days,
        "complete_weekly_goal": min(weekly_goals_done, 1),
        "advance_3_goals": goals_advanced,
        "maintain_streak": min(mit_streak, days_into_week),
    }


def update_progress(db: Session, user: User, event: str, now: Optional[datetime] = None) -> ProgressReport:
    """
    Actualiza los desafíos abiertos del periodo actual.
    Un desafío que llega a su objetivo se cierra y da su bonus_xp.
    """
    now = now or datetime.utcnow()
    report = ProgressReport(event=event)
    values = measure_progress(db, user, now)

    for challenge in current_challenges(db, user, now):
        if challenge.is_completed or challenge.slug not in values:
            continue
        new_value = values[challenge.slug]
        if new_value == challenge.current_value:
            continue

        challenge.current_value = new_value
        report.updated.append({"slug": challenge.slug, "current_value": new_value})

        if new_value >= challenge.target_value:
            challenge.is_completed = True
            challenge.completed_at = to_naive_utc(now)
            add_points(user, challenge.bonus_xp)
            report.completed.append(challenge.slug)
            report.bonus_xp += challenge.bonus_xp
            logger.info(f"🎯 {user.email} completa el desafío {challenge.slug} (+{challenge.bonus_xp} XP)")

    db.commit()
    return report


def notify_progress(session_factory, user_id: int, event: str, now: Optional[datetime] = None) -> ProgressReport:
    """
    Punto de entrada para BackgroundTasks: abre su propia sesión.
    Nunca lanza: los fallos se registran y se devuelven en el informe.
    """
    db = session_factory()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            report = ProgressReport(event=event)
            report.errors.append(f"Usuario {user_id} no encontrado")
            logger.warning(f"⚠️ Progreso de desafíos sin usuario ({user_id}, {event})")
            return report
        return update_progress(db, user, event, now)
    except Exception as e:
        db.rollback()
        logger.exception(f"❌ Error actualizando desafíos (user {user_id}, {event})")
        report = ProgressReport(event=event)
        report.errors.append(f"{type(e).__name__}: {e}")
        return report
    finally:
        db.close()
