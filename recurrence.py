"""
=============================================================================
RECURRENCE.PY - Tareas Recurrentes
=============================================================================
Dos piezas:

  1. should_generate(template, day)
     ¿Toca crear una tarea de esta plantilla este día?
       DAILY    → todos los días
       WEEKDAYS → lunes a viernes
       WEEKLY   → solo los días de days_of_week (["MON", "WED"])
       CUSTOM   → cada N días contando desde start_date

  2. generate(templates, dates, existing, primary_limit, now)
     Recorre fechas × plantillas y decide qué tareas crear.
     Es IDEMPOTENTE: si ya existe la tarea de (plantilla, día) no se repite.
     Respeta los límites diarios por prioridad:
       MIT       → 1
       PRIMARY   → configurable por usuario (primary_task_limit)
       SECONDARY → sin límite

Las dos funciones son puras (no tocan la BD). generate_recurring_tasks()
es la capa que carga de la BD, llama a generate() y guarda el resultado.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from models import DailyTask, RecurringTaskTemplate, RecurrencePattern, TaskPriority, User
from timezones import DAY_CODES

logger = logging.getLogger("cascada.recurrence")


# =============================================================================
# ===================== LÍMITES POR PRIORIDAD =================================
# =============================================================================

TASK_PRIORITY_LIMITS = {
    TaskPriority.MIT.value: 1,
    TaskPriority.PRIMARY.value: 3,
    TaskPriority.SECONDARY.value: None,
}
# None → sin límite. PRIMARY=3 es el valor por defecto; cada usuario tiene el suyo.


def daily_limit(priority: str, primary_limit: int) -> Optional[int]:
    """Cuántas tareas de esta prioridad caben en un día"""
    priority = TaskPriority(priority).value
    if priority == TaskPriority.PRIMARY.value:
        return primary_limit
    return TASK_PRIORITY_LIMITS[priority]


# =============================================================================
# ===================== 1. ¿TOCA HOY? =========================================
# =============================================================================

def should_generate(template, day: date) -> bool:
    """
    Decide si la plantilla genera tarea el día `day`.

    NO mira start_date/end_date como ventana: eso lo filtra quien llama
    (generate). CUSTOM sí usa start_date como punto de partida del intervalo.
    """
    pattern = RecurrencePattern(template.pattern)

    if pattern == RecurrencePattern.DAILY:
        return True

    if pattern == RecurrencePattern.WEEKDAYS:
        return day.weekday() < 5

    if pattern == RecurrencePattern.WEEKLY:
        if not template.days_of_week:
            return False
        return DAY_CODES[day.weekday()] in template.days_of_week

    if pattern == RecurrencePattern.CUSTOM:
        if not template.custom_interval:
            return False
        diff_days = (day - template.start_date).days
        return diff_days >= 0 and diff_days % template.custom_interval == 0

    return False


def in_window(template, day: date) -> bool:
    """¿Está el día dentro de [start_date, end_date]?"""
    if day < template.start_date:
        return False
    if template.end_date is not None and day > template.end_date:
        return False
    return True


# =============================================================================
# ===================== 2. GENERADOR ==========================================
# =============================================================================

@dataclass
class PlannedTask:
    """Una tarea que hay que crear (todavía no está en la BD)"""
    template: object
    scheduled_date: date

    @property
    def priority(self) -> str:
        return TaskPriority(self.template.priority).value


@dataclass
class SkippedTask:
    template: object
    date: date
    reason: str

    def to_dict(self) -> dict:
        return {
            "template": self.template.title,
            "date": self.date.isoformat(),
            "reason": self.reason,
        }


@dataclass
class GenerationResult:
    created: list = field(default_factory=list)
    skipped: list = field(default_factory=list)


def generate(templates: Iterable, dates: Iterable[date], existing: Iterable,
             primary_limit: int, now: datetime) -> GenerationResult:
    """
    Planifica las tareas de `templates` para cada día de `dates`.

    existing → tareas que ya hay en esos días (de plantilla o manuales).
      Cuentan para los límites y para saber qué ya se generó.

    Cada tarea planificada pone template.last_generated_at = now.
    """
    templates = [t for t in templates if t.is_active]
    result = GenerationResult()

    already_generated = set()
    per_day_count = Counter()
    for task in existing:
        priority = TaskPriority(task.priority).value
        per_day_count[(task.scheduled_date, priority)] += 1
        if task.recurring_template_id is not None:
            already_generated.add((task.recurring_template_id, task.scheduled_date))

    for day in dates:
        for template in templates:
            if not in_window(template, day) or not should_generate(template, day):
                continue

            if (template.id, day) in already_generated:
                result.skipped.append(SkippedTask(template, day, "Already exists"))
                continue

            priority = TaskPriority(template.priority).value
            limit = daily_limit(priority, primary_limit)
            if limit is not None and per_day_count[(day, priority)] >= limit:
                result.skipped.append(SkippedTask(template, day, f"{priority} limit reached"))
                continue

            result.created.append(PlannedTask(template, day))
            already_generated.add((template.id, day))
            per_day_count[(day, priority)] += 1
            template.last_generated_at = now

    return result


# =============================================================================
# ===================== 3. CAPA DE BD =========================================
# =============================================================================

def generate_recurring_tasks(db: Session, user: User, dates: list[date],
                             now: Optional[datetime] = None):
    """
    Carga plantillas activas y tareas existentes del usuario, ejecuta
    generate() y guarda las tareas nuevas en UN solo commit.

    Retorna (GenerationResult, [DailyTask creadas]).
    Los errores de BD se propagan tal cual: sin reintentos.
    """
    now = now or datetime.utcnow()
    if not dates:
        return GenerationResult(), []

    templates = db.query(RecurringTaskTemplate).filter(
        RecurringTaskTemplate.user_id == user.id,
        RecurringTaskTemplate.is_active == True
    ).order_by(RecurringTaskTemplate.id).all()

    existing = db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.scheduled_date >= min(dates),
        DailyTask.scheduled_date <= max(dates)
    ).all()

    result = generate(templates, dates, existing, user.primary_task_limit, now)

    created = []
    for planned in result.created:
        template = planned.template
        task = DailyTask(
            user_id=user.id,
            recurring_template_id=template.id,
            weekly_goal_id=template.weekly_goal_id,
            title=template.title,
            description=template.description,
            priority=planned.priority,
            scheduled_date=planned.scheduled_date,
            estimated_minutes=template.estimated_minutes,
        )
        db.add(task)
        created.append(task)

    db.commit()

    logger.info(
        f"🔁 Recurrentes de {user.email}: {len(created)} creadas, "
        f"{len(result.skipped)} omitidas ({min(dates)} → {max(dates)})"
    )
    return result, created
