"""
=============================================================================
GAMIFICATION.PY - Sistema de Gamificación
=============================================================================
Gestiona:
  - Puntos por tarea (MIT 100 / PRIMARY 50 / SECONDARY 25 + bonus de racha)
  - Niveles (Beginner → Fastlaner, tabla fija)
  - Rachas (streaks) por tipo de acción, en la zona horaria del usuario
  - Insignias (badges)
  - Kaizen: reflexión diaria en 6 áreas
  - Servicios que lo juntan todo: completar / desmarcar / aplazar tareas,
    planificación diaria

Filosofía:
  La gamificación NO es el objetivo. Es un MEDIO para mantener la motivación.
  Los puntos premian la constancia (racha) y el foco (MIT), no el volumen.

Regla de transacciones:
  Los servicios que cambian varias cosas (tarea + puntos + nivel + racha +
  insignias) hacen UN solo db.commit() al final. Si algo falla antes, la
  sesión se cierra sin commit y no queda nada a medias.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import (
    User, Goal, DailyTask, Streak, Badge, EarnedBadge, KaizenCheckin,
    GoalLevel, GoalStatus, TaskPriority, TaskStatus, StreakType
)
from timezones import local_date, user_today, days_between, to_naive_utc

logger = logging.getLogger("cascada.gamification")


# =============================================================================
# ===================== PUNTOS ================================================
# =============================================================================

TASK_PRIORITY_POINTS = {
    TaskPriority.MIT.value: 100,
    TaskPriority.PRIMARY.value: 50,
    TaskPriority.SECONDARY.value: 25,
}

GOAL_POINTS = {
    GoalLevel.weekly.value: 200,
    GoalLevel.monthly.value: 500,
    GoalLevel.one_year.value: 1000,
    GoalLevel.three_year.value: 2500,
    GoalLevel.vision.value: 5000,
}

BONUS_POINTS = {
    "daily_planning": 50,     # Planificar el día
    "kaizen_checkin": 10,     # Check-in Kaizen (cualquiera)
    "kaizen_balanced": 25,    # Extra si marca las 6 áreas
    "weekly_review": 50,      # Primera revisión semanal
    "monthly_review": 100,    # Primera revisión mensual
}

STREAK_BONUS_PER_DAY = Decimal("0.10")
STREAK_BONUS_CAP = Decimal("1.00")
# +10% por día de racha, como mucho +100% (día 10 en adelante)

STREAK_MILESTONES = [7, 14, 30, 60, 90]


def streak_multiplier(streak_days: int) -> Decimal:
    streak_days = max(streak_days or 0, 0)
    return 1 + min(streak_days * STREAK_BONUS_PER_DAY, STREAK_BONUS_CAP)


def points_for_completion(priority: str, streak_days: int) -> int:
    """
    Puntos por completar una tarea.

      points_for_completion("MIT", 10)      → 200  (100 × 2.00)
      points_for_completion("PRIMARY", 3)   → 65   (50 × 1.30)
      points_for_completion("SECONDARY", 0) → 25

    Redondeo: mitad hacia arriba (25 × 1.30 = 32.5 → 33).
    """
    base = TASK_PRIORITY_POINTS[TaskPriority(priority).value]
    total = Decimal(base) * streak_multiplier(streak_days)
    return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# ===================== NIVELES ===============================================
# =============================================================================

LEVELS = [
    (1, "Beginner", 0),
    (2, "Starter", 500),
    (3, "Achiever", 2000),
    (4, "Go-Getter", 5000),
    (5, "Performer", 10000),
    (6, "Rockstar", 25000),
    (7, "Champion", 50000),
    (8, "Elite", 75000),
    (9, "Master", 100000),
    (10, "Fastlaner", 150000),
]


@dataclass
class LevelInfo:
    level: int
    name: str
    min_points: int
    next_level: Optional[int] = None
    next_level_name: Optional[str] = None
    next_level_points: Optional[int] = None
    points_to_next: int = 0
    progress: float = 100.0

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "name": self.name,
            "min_points": self.min_points,
            "next_level": self.next_level,
            "next_level_name": self.next_level_name,
            "next_level_points": self.next_level_points,
            "points_to_next": self.points_to_next,
            "progress": self.progress,
        }


def level_for_points(total_points: int) -> LevelInfo:
    """
    El nivel más alto cuyo umbral ≤ total_points.
      2000 → 3 "Achiever"
      1999 → 2 "Starter"
    """
    index = 0
    for i, (_, _, threshold) in enumerate(LEVELS):
        if total_points >= threshold:
            index = i

    level, name, threshold = LEVELS[index]
    info = LevelInfo(level=level, name=name, min_points=threshold)

    if index + 1 < len(LEVELS):
        next_level, next_name, next_threshold = LEVELS[index + 1]
        info.next_level = next_level
        info.next_level_name = next_name
        info.next_level_points = next_threshold
        info.points_to_next = next_threshold - max(total_points, 0)
        span = next_threshold - threshold
        info.progress = round((max(total_points, 0) - threshold) / span * 100, 1)

    return info


def add_points(user: User, points: int) -> bool:
    """
    Suma puntos al usuario y sube de nivel si toca.
    El nivel NUNCA baja. Retorna True si ha subido de nivel.
    """
    user.total_points = (user.total_points or 0) + points
    new_level = level_for_points(user.total_points).level
    old_level = user.level or 1
    if new_level > old_level:
        user.level = new_level
        logger.info(f"⬆️ {user.email} sube a nivel {new_level}")
        return True
    return False


def remove_points(user: User, points: int):
    """Resta puntos sin bajar de 0. El nivel se queda como está."""
    user.total_points = max((user.total_points or 0) - points, 0)


# =============================================================================
# ===================== RACHAS ================================================
# =============================================================================
# Máquina de estados (por usuario y por tipo):
#   sin registro          → current=1, longest=1 (racha nueva)
#   última acción HOY     → no cambia
#   última acción AYER    → current+1, longest=max(longest, current)
#   última acción antes   → current=1 (racha nueva), longest no cambia
# "Hoy" y "ayer" siempre en la zona horaria del usuario (timezones.local_date).

@dataclass
class StreakState:
    current_count: int = 0
    longest_count: int = 0
    last_action_at: Optional[datetime] = None


@dataclass
class StreakUpdate:
    streak: StreakState
    is_new_streak: bool
    changed: bool


def update_streak(streak, now: datetime, timezone: str) -> StreakUpdate:
    """
    Calcula el nuevo estado de una racha. No toca la BD.
    `streak` puede ser None, un StreakState o una fila Streak.
    """
    if streak is None or streak.last_action_at is None:
        state = StreakState(current_count=1, longest_count=max(getattr(streak, "longest_count", 0) or 0, 1),
                            last_action_at=to_naive_utc(now))
        return StreakUpdate(streak=state, is_new_streak=True, changed=True)

    today = local_date(now, timezone)
    last_day = local_date(streak.last_action_at, timezone)
    gap = days_between(last_day, today)

    current = streak.current_count or 0
    longest = streak.longest_count or 0

    if gap <= 0:
        # Ya registrada hoy (o reloj por detrás): no cambia nada
        state = StreakState(current_count=current, longest_count=longest,
                            last_action_at=streak.last_action_at)
        return StreakUpdate(streak=state, is_new_streak=False, changed=False)

    if gap == 1:
        current += 1
        state = StreakState(current_count=current, longest_count=max(longest, current),
                            last_action_at=to_naive_utc(now))
        return StreakUpdate(streak=state, is_new_streak=False, changed=True)

    state = StreakState(current_count=1, longest_count=max(longest, 1),
                        last_action_at=to_naive_utc(now))
    return StreakUpdate(streak=state, is_new_streak=True, changed=True)


STREAK_MAX_GAP = {
    StreakType.WEEKLY_REVIEW.value: 13,
    StreakType.MONTHLY_REVIEW.value: 62,
}
# Las rachas de revisión son por semana/mes: siguen vivas hasta que pasa
# el periodo siguiente sin revisar. El resto, hoy o ayer (1).


def is_streak_active(streak, now: datetime, timezone: str) -> bool:
    """Una racha sigue viva si la última acción fue hoy o ayer"""
    if streak is None or streak.last_action_at is None or not streak.current_count:
        return False
    gap = days_between(local_date(streak.last_action_at, timezone), local_date(now, timezone))
    return gap <= STREAK_MAX_GAP.get(getattr(streak, "type", None), 1)


def get_streak(db: Session, user: User, streak_type: StreakType) -> Optional[Streak]:
    return db.query(Streak).filter(
        Streak.user_id == user.id,
        Streak.type == streak_type.value
    ).first()


def active_streak_days(db: Session, user: User, streak_type: StreakType, now: datetime) -> int:
    """Días de racha que cuentan para el bonus (0 si la racha está rota)"""
    streak = get_streak(db, user, streak_type)
    if is_streak_active(streak, now, user.timezone):
        return streak.current_count
    return 0


def record_streak(db: Session, user: User, streak_type: StreakType, now: datetime) -> StreakUpdate:
    """Aplica update_streak() a la fila de la BD (la crea si no existe). Sin commit."""
    row = get_streak(db, user, streak_type)
    update = update_streak(row, now, user.timezone)

    if row is None:
        row = Streak(user_id=user.id, type=streak_type.value)
        db.add(row)
        db.flush()

    if update.changed:
        row.current_count = update.streak.current_count
        row.longest_count = update.streak.longest_count
        row.last_action_at = update.streak.last_action_at

    return update


def decrement_streak(db: Session, user: User, streak_type: StreakType, now: Optional[datetime] = None):
    """
    Resta un día a la racha (al desmarcar una MIT). Nunca por debajo de 0.

    Si la acción que se deshace era la de HOY, la última acción vuelve a
    "ayer": así, si el usuario la vuelve a completar hoy, la racha recupera
    el día en vez de quedarse congelada.
    """
    row = get_streak(db, user, streak_type)
    if row is None or (row.current_count or 0) <= 0:
        return

    now = now or datetime.utcnow()
    row.current_count -= 1
    if row.current_count == 0:
        row.last_action_at = None
    elif row.last_action_at and local_date(row.last_action_at, user.timezone) == local_date(now, user.timezone):
        row.last_action_at = row.last_action_at - timedelta(days=1)


def streak_summary(streak: Optional[Streak], streak_type: StreakType, now: datetime, timezone: str) -> dict:
    return {
        "type": streak_type.value,
        "current_count": streak.current_count if streak else 0,
        "longest_count": streak.longest_count if streak else 0,
        "last_action_at": streak.last_action_at.isoformat() if streak and streak.last_action_at else None,
        "is_active": is_streak_active(streak, now, timezone),
    }


# =============================================================================
# ===================== INSIGNIAS =============================================
# =============================================================================

BADGE_DEFINITIONS = [
    # ── Rachas ──
    {"slug": "first_blood", "name": "First Blood", "description": "Completa tu primera tarea", "category": "streak", "icon": "⚡"},
    {"slug": "on_fire_7", "name": "On Fire", "description": "Mantén una racha de MIT de 7 días", "category": "streak", "icon": "🔥"},
    {"slug": "on_fire_30", "name": "Unstoppable", "description": "Mantén una racha de MIT de 30 días", "category": "streak", "icon": "💪"},
    {"slug": "rockstar", "name": "Rockstar", "description": "Mantén una racha de MIT de 80 días o más", "category": "streak", "icon": "🌟"},

    # ── Logros ──
    {"slug": "century_club", "name": "Century Club", "description": "Gana 100 puntos en un solo día", "category": "achievement", "icon": "💯"},
    {"slug": "goal_getter", "name": "Goal Getter", "description": "Completa tu primer objetivo", "category": "achievement", "icon": "🎯"},
    {"slug": "dream_starter", "name": "Vision Starter", "description": "Crea tu primera visión a 7 años", "category": "achievement", "icon": "🔮"},
    {"slug": "planner_pro", "name": "Planner Pro", "description": "Planifica tu día 7 días seguidos", "category": "achievement", "icon": "📋"},
    {"slug": "visionary", "name": "Visionary", "description": "Ten objetivos activos en los 5 niveles", "category": "achievement", "icon": "👁️"},

    # ── Categorías ──
    {"slug": "health_nut", "name": "Health Nut", "description": "Completa 10 tareas de salud", "category": "category", "icon": "🏃"},
    {"slug": "wealth_builder", "name": "Wealth Builder", "description": "Completa 10 tareas de finanzas", "category": "category", "icon": "💰"},

    # ── Kaizen ──
    {"slug": "kaizen_starter", "name": "Kaizen Starter", "description": "Haz tu primer check-in Kaizen", "category": "kaizen", "icon": "🧘"},
]

BADGES_BY_SLUG = {b["slug"]: b for b in BADGE_DEFINITIONS}

STREAK_BADGES = {"on_fire_7": 7, "on_fire_30": 30, "rockstar": 80}
CATEGORY_BADGES = {"HEALTH": "health_nut", "WEALTH": "wealth_builder"}
CATEGORY_BADGE_TARGET = 10


def earned_slugs(db: Session, user: User) -> set:
    rows = db.query(Badge.slug).join(EarnedBadge, EarnedBadge.badge_id == Badge.id).filter(
        EarnedBadge.user_id == user.id
    ).all()
    return {slug for (slug,) in rows}


def get_or_create_badge(db: Session, slug: str) -> Badge:
    """Las filas de badges se crean la primera vez que alguien gana la insignia"""
    badge = db.query(Badge).filter(Badge.slug == slug).first()
    if badge is None:
        definition = BADGES_BY_SLUG[slug]
        badge = Badge(
            slug=slug,
            name=definition["name"],
            description=definition["description"],
            category=definition["category"],
            icon=definition["icon"],
        )
        db.add(badge)
        db.flush()
    return badge


def award_badge(db: Session, user: User, slug: str) -> Badge:
    """Da la insignia al usuario. Sin commit: lo hace quien llama."""
    badge = get_or_create_badge(db, slug)
    db.add(EarnedBadge(user_id=user.id, badge_id=badge.id))
    logger.info(f"🏆 {user.email} gana la insignia: {badge.name}")
    return badge


def _count_completed_tasks(db: Session, user: User) -> int:
    return db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.status == TaskStatus.COMPLETED.value
    ).count()


def _count_category_tasks(db: Session, user: User, category: str) -> int:
    return db.query(DailyTask).join(Goal, DailyTask.weekly_goal_id == Goal.id).filter(
        DailyTask.user_id == user.id,
        DailyTask.status == TaskStatus.COMPLETED.value,
        Goal.category == category
    ).count()


def _count_goals(db: Session, user: User, **filters) -> int:
    query = db.query(Goal).filter(Goal.user_id == user.id)
    for column, value in filters.items():
        query = query.filter(getattr(Goal, column) == value)
    return query.count()


def _active_goal_levels(db: Session, user: User) -> set:
    rows = db.query(Goal.level).filter(
        Goal.user_id == user.id,
        Goal.status == GoalStatus.ACTIVE.value
    ).distinct().all()
    return {level for (level,) in rows}


def _streak_count(db: Session, user: User, streak_type: StreakType) -> int:
    streak = get_streak(db, user, streak_type)
    return streak.current_count if streak else 0


def check_badges(db: Session, user: User, context: Optional[dict] = None) -> list[Badge]:
    """
    Comprueba qué insignias nuevas ha ganado el usuario tras una acción.

    context (todas las claves opcionales):
      task_completed  → se acaba de completar una tarea
      kaizen_checkin  → se acaba de hacer un check-in
      goal_changed    → se ha creado o completado un objetivo
      day_points      → puntos de tareas del día
      current_streak  → racha de MIT actual
      category        → categoría del objetivo semanal de la tarea
    """
    context = context or {}
    db.flush()
    # flush → que los conteos vean los cambios de esta misma transacción

    owned = earned_slugs(db, user)
    new_badges = []

    def grant(slug):
        if slug not in owned:
            new_badges.append(award_badge(db, user, slug))
            owned.add(slug)

    if context.get("task_completed") and _count_completed_tasks(db, user) >= 1:
        grant("first_blood")

    if context.get("kaizen_checkin"):
        if db.query(KaizenCheckin).filter(KaizenCheckin.user_id == user.id).count() >= 1:
            grant("kaizen_starter")

    current_streak = context.get("current_streak") or 0
    for slug, days in STREAK_BADGES.items():
        if current_streak >= days:
            grant(slug)

    if (context.get("day_points") or 0) >= 100:
        grant("century_club")

    category = context.get("category")
    if category in CATEGORY_BADGES and CATEGORY_BADGES[category] not in owned:
        if _count_category_tasks(db, user, category) >= CATEGORY_BADGE_TARGET:
            grant(CATEGORY_BADGES[category])

    if context.get("goal_changed"):
        if _count_goals(db, user, level=GoalLevel.vision.value) >= 1:
            grant("dream_starter")
        if _count_goals(db, user, status=GoalStatus.COMPLETED.value) >= 1:
            grant("goal_getter")
        if len(_active_goal_levels(db, user)) == len(GoalLevel):
            grant("visionary")

    if _streak_count(db, user, StreakType.DAILY_PLANNING) >= 7:
        grant("planner_pro")

    return new_badges


def badge_to_dict(badge: Badge) -> dict:
    return {
        "slug": badge.slug,
        "name": badge.name,
        "description": badge.description,
        "icon": badge.icon,
    }


def list_badges(db: Session, user: User) -> list[dict]:
    """Todas las insignias con su estado (ganada o no) para el usuario"""
    earned = {
        eb.badge.slug: eb.earned_at
        for eb in db.query(EarnedBadge).filter(EarnedBadge.user_id == user.id).all()
        if eb.badge
    }
    return [
        {
            **definition,
            "earned": definition["slug"] in earned,
            "earned_at": earned[definition["slug"]].isoformat() if definition["slug"] in earned else None,
        }
        for definition in BADGE_DEFINITIONS
    ]


def badge_progress(db: Session, user: User, now: datetime) -> dict:
    """(actual, objetivo) de cada insignia medible"""
    mit_streak = active_streak_days(db, user, StreakType.MIT_COMPLETION, now)
    today = user_today(user.timezone, now)
    today_points = db.query(func.coalesce(func.sum(DailyTask.points_earned), 0)).filter(
        DailyTask.user_id == user.id,
        DailyTask.scheduled_date == today,
        DailyTask.status == TaskStatus.COMPLETED.value
    ).scalar()

    return {
        "first_blood": (_count_completed_tasks(db, user), 1),
        "on_fire_7": (mit_streak, 7),
        "on_fire_30": (mit_streak, 30),
        "rockstar": (mit_streak, 80),
        "century_club": (int(today_points or 0), 100),
        "goal_getter": (_count_goals(db, user, status=GoalStatus.COMPLETED.value), 1),
        "dream_starter": (_count_goals(db, user, level=GoalLevel.vision.value), 1),
        "planner_pro": (active_streak_days(db, user, StreakType.DAILY_PLANNING, now), 7),
        "visionary": (len(_active_goal_levels(db, user)), len(GoalLevel)),
        "health_nut": (_count_category_tasks(db, user, "HEALTH"), CATEGORY_BADGE_TARGET),
        "wealth_builder": (_count_category_tasks(db, user, "WEALTH"), CATEGORY_BADGE_TARGET),
        "kaizen_starter": (db.query(KaizenCheckin).filter(KaizenCheckin.user_id == user.id).count(), 1),
    }


def next_badge(db: Session, user: User, now: datetime) -> Optional[dict]:
    """La insignia no ganada más cercana (mayor % de progreso)"""
    owned = earned_slugs(db, user)
    best = None
    for slug, (current, target) in badge_progress(db, user, now).items():
        if slug in owned:
            continue
        pct = min(round(current / target * 100, 1), 100.0)
        if best is None or pct > best["progress"]:
            best = {**BADGES_BY_SLUG[slug], "current": min(current, target),
                    "target": target, "progress": pct}
    return best


# =============================================================================
# ===================== SERVICIOS DE TAREAS ===================================
# =============================================================================

def _day_points(db: Session, user: User, day: date) -> int:
    total = db.query(func.coalesce(func.sum(DailyTask.points_earned), 0)).filter(
        DailyTask.user_id == user.id,
        DailyTask.scheduled_date == day,
        DailyTask.status == TaskStatus.COMPLETED.value
    ).scalar()
    return int(total or 0)


def complete_task(db: Session, user: User, task: DailyTask, now: Optional[datetime] = None) -> dict:
    """
    Completa una tarea y reparte TODO lo que conlleva, en una transacción:
      1. Puntos (base; las MIT además × bonus de racha MIT activa)
      2. Total del usuario y nivel
      3. Racha MIT (solo si la tarea es MIT)
      4. Insignias
    Un único commit al final.
    """
    now = now or datetime.utcnow()

    if task.status == TaskStatus.COMPLETED.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="La tarea ya está completada")

    priority = TaskPriority(task.priority).value
    streak_days = 0
    if priority == TaskPriority.MIT.value:
        streak_days = active_streak_days(db, user, StreakType.MIT_COMPLETION, now)
    base = TASK_PRIORITY_POINTS[priority]
    earned = points_for_completion(priority, streak_days)

    task.status = TaskStatus.COMPLETED.value
    task.completed_at = to_naive_utc(now)
    task.points_earned = earned

    leveled_up = add_points(user, earned)

    streak_info = None
    if priority == TaskPriority.MIT.value:
        previous = _streak_count(db, user, StreakType.MIT_COMPLETION)
        update = record_streak(db, user, StreakType.MIT_COMPLETION, now)
        current = update.streak.current_count
        milestone = next((m for m in STREAK_MILESTONES if previous < m <= current), None)
        streak_info = {"current": current, "is_new_streak": update.is_new_streak, "milestone": milestone}

    db.flush()
    badges = check_badges(db, user, {
        "task_completed": True,
        "day_points": _day_points(db, user, task.scheduled_date),
        "current_streak": _streak_count(db, user, StreakType.MIT_COMPLETION),
        "category": task.weekly_goal.category if task.weekly_goal else None,
    })

    db.commit()

    logger.info(f"✅ {user.email} completa '{task.title}' ({priority}): +{earned} pts")

    level = level_for_points(user.total_points)
    return {
        "task": task,
        "points": {
            "earned": earned,
            "base": base,
            "streak_bonus": earned - base,
            "new_total": user.total_points,
        },
        "leveled_up": leveled_up,
        "new_level": user.level if leveled_up else None,
        "level_name": level.name,
        "badges": [badge_to_dict(b) for b in badges],
        "streak": streak_info,
    }


def uncomplete_task(db: Session, user: User, task: DailyTask, now: Optional[datetime] = None) -> dict:
    """
    Deshace la completación: PENDING, se quitan los puntos (total ≥ 0) y
    si era MIT la racha baja un día. El nivel no baja.
    """
    if task.status != TaskStatus.COMPLETED.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="La tarea no está completada")

    points_removed = task.points_earned or 0
    task.status = TaskStatus.PENDING.value
    task.completed_at = None
    task.points_earned = 0

    remove_points(user, points_removed)

    if TaskPriority(task.priority) == TaskPriority.MIT:
        decrement_streak(db, user, StreakType.MIT_COMPLETION, now)

    db.commit()
    logger.info(f"↩️ {user.email} desmarca '{task.title}': -{points_removed} pts")
    return {"task": task, "points_removed": points_removed, "new_total": user.total_points}


def carry_over_tasks(db: Session, user: User, task_ids: list[int], now: Optional[datetime] = None) -> list[DailyTask]:
    """
    Pasa tareas sin completar a MAÑANA (en la zona del usuario).
    Una MIT aplazada pasa a PRIMARY: el MIT de mañana se elige mañana.
    Las que no existen, son de otro usuario o ya están completadas se ignoran.
    """
    tomorrow = user_today(user.timezone, now) + timedelta(days=1)
    tasks = db.query(DailyTask).filter(
        DailyTask.id.in_(task_ids),
        DailyTask.user_id == user.id,
        DailyTask.status != TaskStatus.COMPLETED.value
    ).all()

    for task in tasks:
        task.scheduled_date = tomorrow
        if task.priority == TaskPriority.MIT.value:
            task.priority = TaskPriority.PRIMARY.value

    db.commit()
    logger.info(f"➡️ {user.email} aplaza {len(tasks)} tareas a {tomorrow}")
    return tasks


def record_daily_planning(db: Session, user: User, now: Optional[datetime] = None) -> dict:
    """
    El usuario ha planificado su día. Racha DAILY_PLANNING + 50 puntos,
    solo la primera vez de cada día local.
    """
    now = now or datetime.utcnow()
    update = record_streak(db, user, StreakType.DAILY_PLANNING, now)

    bonus = 0
    leveled_up = False
    badges = []
    if update.changed:
        bonus = BONUS_POINTS["daily_planning"]
        leveled_up = add_points(user, bonus)
        badges = check_badges(db, user)

    db.commit()
    return {
        "already_planned": not update.changed,
        "points_earned": bonus,
        "new_total": user.total_points,
        "leveled_up": leveled_up,
        "streak": {"current": update.streak.current_count, "longest": update.streak.longest_count},
        "badges": [badge_to_dict(b) for b in badges],
    }


# =============================================================================
# ===================== KAIZEN ================================================
# =============================================================================

KAIZEN_AREAS = ["health", "relationships", "wealth", "career", "personal_growth", "lifestyle"]


def kaizen_checked_areas(checkin) -> int:
    return sum(1 for area in KAIZEN_AREAS if getattr(checkin, area))


def is_balanced_day(checkin) -> bool:
    return kaizen_checked_areas(checkin) == len(KAIZEN_AREAS)


def kaizen_points(checkin) -> int:
    """10 por hacer el check-in, +25 si marca las 6 áreas"""
    points = BONUS_POINTS["kaizen_checkin"]
    if is_balanced_day(checkin):
        points += BONUS_POINTS["kaizen_balanced"]
    return points


def save_kaizen_checkin(db: Session, user: User, data, now: Optional[datetime] = None) -> dict:
    """
    Crea o actualiza el check-in del día.
      - Nuevo      → puntos completos, racha KAIZEN_CHECKIN, insignias
      - Existente  → solo se aplica la DIFERENCIA de puntos
    """
    now = now or datetime.utcnow()
    checkin_date = data.checkin_date or user_today(user.timezone, now)
    points = kaizen_points(data)

    checkin = db.query(KaizenCheckin).filter(
        KaizenCheckin.user_id == user.id,
        KaizenCheckin.checkin_date == checkin_date
    ).first()

    is_new = checkin is None
    if is_new:
        checkin = KaizenCheckin(user_id=user.id, checkin_date=checkin_date, points_earned=0)
        db.add(checkin)

    delta = points - (checkin.points_earned or 0)
    for area in KAIZEN_AREAS:
        setattr(checkin, area, bool(getattr(data, area)))
    checkin.notes = data.notes or None
    checkin.points_earned = points

    leveled_up = False
    if delta > 0:
        leveled_up = add_points(user, delta)
    elif delta < 0:
        remove_points(user, -delta)

    badges = []
    if is_new:
        record_streak(db, user, StreakType.KAIZEN_CHECKIN, now)
        badges = check_badges(db, user, {"kaizen_checkin": True})

    db.commit()

    streak = get_streak(db, user, StreakType.KAIZEN_CHECKIN)
    logger.info(f"🧘 Kaizen de {user.email} ({checkin_date}): {kaizen_checked_areas(checkin)}/6 áreas")
    return {
        "checkin": checkin,
        "is_new": is_new,
        "points_earned": points,
        "points_delta": delta,
        "is_balanced_day": is_balanced_day(checkin),
        "leveled_up": leveled_up,
        "badges": [badge_to_dict(b) for b in badges],
        "streak": {
            "current_count": streak.current_count if streak else 0,
            "longest_count": streak.longest_count if streak else 0,
        },
    }
