"""
=============================================================================
MAIN.PY - La API de Cascada
=============================================================================
Este archivo define TODOS los endpoints de la API REST.

Organización por secciones:
  1. AUTH         → Registro, login, perfil
  2. GOALS        → La cascada de objetivos, jerarquía y mapa mental
  3. TASKS        → Tareas diarias, completar, aplazar, subtareas
  4. RECURRING    → Plantillas recurrentes y generación de tareas
  5. USER         → Insignias, rachas, estadísticas, exportar
  6. CHALLENGES   → Desafíos diarios y semanales
  7. KAIZEN       → Check-in diario en 6 áreas
  8. REVIEWS      → Revisiones semanales y mensuales
  9. AI           → Sugerencias de cascada y objetivos SMART

Arranque:
  uvicorn main:create_app --factory

No hay una `app` global: create_app(settings) monta una aplicación con su
propio engine, sesiones y cliente de IA (en app.state). Los tests crean
la suya con SQLite en memoria.

Formato de respuesta:
  Éxito en mutaciones → {"success": true, "data": ...}
  Error               → {"error": "mensaje"}
"""

import logging
from datetime import datetime, date
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, APIRouter, BackgroundTasks, Depends, HTTPException, status, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import goals
import reviews
from ai import GoalCoach, ai_usage, build_ai_client, check_ai_limit, log_interaction
from auth import hash_password, verify_password, create_access_token, get_current_user
from challenges import ensure_challenges, notify_progress
from config import Settings
from database import build_engine, build_session_factory, get_db, init_db
from gamification import (
    complete_task, uncomplete_task, carry_over_tasks, record_daily_planning,
    save_kaizen_checkin, list_badges, next_badge, level_for_points, get_streak,
    streak_summary, earned_slugs, badge_to_dict
)
from models import *
from recurrence import daily_limit, generate_recurring_tasks
from schemas import *
from timezones import user_today, is_valid_timezone, date_range

logger = logging.getLogger("cascada.api")

APP_NAME = "Cascada API"
APP_VERSION = "1.0.0"
MAX_GENERATION_DAYS = 90
PRIORITY_ORDER = {TaskPriority.MIT.value: 0, TaskPriority.PRIMARY.value: 1, TaskPriority.SECONDARY.value: 2}

router = APIRouter()


def ok(data) -> dict:
    return {"success": True, "data": data}


def schedule_progress(background_tasks: BackgroundTasks, request: Request, user: User, event: str):
    """Los desafíos se actualizan DESPUÉS de responder, con su propia sesión"""
    background_tasks.add_task(notify_progress, request.app.state.session_factory, user.id, event)


# =============================================================================
# ===================== HEALTH CHECK ==========================================
# =============================================================================

@router.get("/health", tags=["Health"])
def health_check(db: Session = Depends(get_db)):
    """Verifica que la API está viva y que la BD responde"""
    payload = {
        "status": "ok",
        "app": APP_NAME,
        "version": APP_VERSION,
        "timestamp": datetime.utcnow().isoformat()
    }
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"❌ La BD no responde: {e}")
        payload["status"] = "error"
        return JSONResponse(status_code=503, content=payload)
    return payload


# =============================================================================
# ===================== SECCIÓN 1: AUTH =======================================
# =============================================================================

@router.post("/auth/register", response_model=TokenResponse, tags=["Auth"])
def register(data: UserRegister, request: Request, db: Session = Depends(get_db)):
    """
    Registra un usuario nuevo.

    Flujo:
      1. Verificar que el email no existe
      2. Validar la zona horaria
      3. Crear el usuario con la contraseña hasheada
      4. Generar y devolver token JWT
    """
    settings = request.app.state.settings

    existing = db.query(User).filter(User.email == data.email).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Ya existe una cuenta con este email"
        )

    timezone = data.timezone or settings.default_timezone
    if not is_valid_timezone(timezone):
        raise HTTPException(status_code=400, detail=f"Zona horaria no válida: {timezone}")

    user = User(
        email=data.email,
        password_hash=hash_password(data.password),
        name=data.name,
        timezone=timezone,
        primary_task_limit=settings.default_primary_limit,
        total_points=0,
        level=1
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"👤 Nuevo usuario: {user.email}")
    return TokenResponse(
        access_token=create_access_token(settings, user.id, user.email),
        user_id=user.id,
        name=user.name
    )


@router.post("/auth/login", response_model=TokenResponse, tags=["Auth"])
def login(data: UserLogin, request: Request, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email).first()
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email o contraseña incorrectos"
        )

    user.last_active = datetime.utcnow()
    db.commit()
    return TokenResponse(
        access_token=create_access_token(request.app.state.settings, user.id, user.email),
        user_id=user.id,
        name=user.name
    )


@router.get("/auth/me", response_model=UserResponse, tags=["Auth"])
def get_me(user: User = Depends(get_current_user)):
    """Devuelve los datos del usuario autenticado"""
    return user


@router.patch("/auth/me", tags=["Auth"])
def update_me(data: UserUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Actualiza nombre, zona horaria o límite de tareas PRIMARY"""
    if data.timezone is not None and not is_valid_timezone(data.timezone):
        raise HTTPException(status_code=400, detail=f"Zona horaria no válida: {data.timezone}")

    for key, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, key, value)

    db.commit()
    db.refresh(user)
    return ok(UserResponse.model_validate(user).model_dump())


@router.delete("/auth/me", tags=["Auth"])
def delete_account(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Borra la cuenta y TODOS los datos del usuario (irreversible)"""
    db.delete(user)
    db.commit()
    logger.info(f"🗑️ Cuenta borrada: {user.email}")
    return ok({"message": "Cuenta y todos los datos eliminados correctamente"})


# =============================================================================
# ===================== SECCIÓN 2: GOALS ======================================
# =============================================================================
# Las rutas fijas (/goals/hierarchy, /goals/cascade...) van ANTES de
# /goals/{goal_id}; si no, FastAPI intentaría leer "hierarchy" como un id.

def goal_dict(goal: Goal) -> dict:
    return GoalResponse.model_validate(goal).model_dump()


@router.get("/goals", response_model=list[GoalResponse], tags=["Goals"])
def list_goals(
    level: Optional[GoalLevel] = None,
    parent_id: Optional[int] = None,
    status_filter: Optional[GoalStatus] = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Lista objetivos con filtros opcionales"""
    query = db.query(Goal).filter(Goal.user_id == user.id)
    if level:
        query = query.filter(Goal.level == level.value)
    if parent_id is not None:
        query = query.filter(Goal.parent_id == parent_id)
    if status_filter:
        query = query.filter(Goal.status == status_filter.value)
    return query.order_by(Goal.created_at.desc(), Goal.id.desc()).all()


@router.post("/goals", tags=["Goals"])
def create_goal(data: GoalCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    goal, badges = goals.create_goal(db, user, data)
    return ok({"goal": goal_dict(goal), "badges": [badge_to_dict(b) for b in badges]})


@router.get("/goals/hierarchy", tags=["Goals"])
def goal_hierarchy(
    include_tasks: bool = False,
    status_filter: Optional[GoalStatus] = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Árbol completo: visiones → ... → semanales (→ tareas)"""
    return goals.build_hierarchy(db, user, include_tasks, status_filter.value if status_filter else None)


@router.get("/goals/unlinked", response_model=list[GoalResponse], tags=["Goals"])
def unlinked_goals(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Objetivos semanales que no cuelgan de ningún objetivo mensual"""
    return goals.unlinked_weekly_goals(db, user)


@router.get("/goals/mindmap", tags=["Goals"])
def goal_mind_map(
    direction: str = Query("horizontal", pattern="^(horizontal|vertical)$"),
    include_tasks: bool = False,
    collapsed: Optional[str] = Query(None, description="IDs de nodo separados por comas"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Nodos + aristas con posición. Sin `collapsed` se pliegan los nodos
    a partir de profundidad 2; con `collapsed=""` no se pliega nada.
    """
    tree = goals.build_hierarchy(db, user, include_tasks)["visions"]
    if collapsed is None:
        collapsed_ids = goals.initial_collapsed(tree)
    else:
        collapsed_ids = {c.strip() for c in collapsed.split(",") if c.strip()}

    mind_map = goals.build_mind_map(tree, collapsed_ids, direction, include_tasks)
    mind_map["direction"] = direction
    mind_map["collapsed"] = sorted(collapsed_ids)
    return mind_map


@router.post("/goals/cascade", tags=["Goals"])
def create_goal_cascade(data: CascadeCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Crea una cadena de objetivos (ej: visión → 3 años → 1 año) de una vez"""
    created, badges = goals.create_cascade(db, user, data)
    return ok({
        "goals": [goal_dict(g) for g in created],
        "badges": [badge_to_dict(b) for b in badges],
    })


@router.get("/goals/{goal_id}", tags=["Goals"])
def get_goal(goal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    goal = goals.get_user_goal(db, user, goal_id)
    return {
        **goal_dict(goal),
        "children": [goal_dict(c) for c in goal.children],
        "tasks": [TaskResponse.model_validate(t).model_dump() for t in goal.tasks],
    }


@router.patch("/goals/{goal_id}", tags=["Goals"])
def update_goal(
    goal_id: int, data: GoalUpdate, request: Request, background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Actualiza un objetivo. Pasar a COMPLETED da los puntos del nivel (una vez)"""
    goal = goals.get_user_goal(db, user, goal_id)
    result = goals.update_goal(db, user, goal, data)

    if result["just_completed"]:
        schedule_progress(background_tasks, request, user, "goal_completed")

    return ok({
        "goal": goal_dict(result["goal"]),
        "points_earned": result["points_earned"],
        "new_total": user.total_points,
        "badges": result["badges"],
    })


@router.delete("/goals/{goal_id}", tags=["Goals"])
def delete_goal(goal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Borra el objetivo y sus descendientes. Las tareas quedan sin vincular"""
    goal = goals.get_user_goal(db, user, goal_id)
    deleted = goals.delete_goal(db, user, goal)
    return ok({"deleted_count": deleted})


# =============================================================================
# ===================== SECCIÓN 3: TASKS ======================================
# =============================================================================

def get_user_task(db: Session, user: User, task_id: int) -> DailyTask:
    task = db.query(DailyTask).filter(DailyTask.id == task_id, DailyTask.user_id == user.id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Tarea no encontrada")
    return task


def check_weekly_goal(db: Session, user: User, goal_id: Optional[int]):
    """Una tarea o plantilla solo puede colgar de un objetivo SEMANAL del usuario"""
    if goal_id is None:
        return None
    goal = goals.get_user_goal(db, user, goal_id)
    if goal.level != GoalLevel.weekly.value:
        raise HTTPException(status_code=400, detail="Las tareas solo se vinculan a objetivos semanales")
    return goal


def check_priority_limit(db: Session, user: User, priority: str, day: date, exclude_id: Optional[int] = None):
    """400 si ese día ya tiene el máximo de tareas de esa prioridad"""
    limit = daily_limit(priority, user.primary_task_limit)
    if limit is None:
        return
    query = db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.scheduled_date == day,
        DailyTask.priority == priority
    )
    if exclude_id is not None:
        query = query.filter(DailyTask.id != exclude_id)
    if query.count() >= limit:
        raise HTTPException(
            status_code=400,
            detail=f"Límite de tareas {priority} alcanzado para {day.isoformat()} (máximo {limit})"
        )


def task_dict(task: DailyTask) -> dict:
    return TaskResponse.model_validate(task).model_dump()


@router.get("/tasks", tags=["Tasks"])
def list_tasks(
    day: Optional[date] = Query(None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Tareas de un día (por defecto hoy), ordenadas MIT → PRIMARY → SECONDARY"""
    day = day or user_today(user.timezone)
    tasks = db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.scheduled_date == day
    ).all()
    tasks.sort(key=lambda t: (PRIORITY_ORDER.get(t.priority, 3), t.created_at or datetime.min, t.id))

    completed = [t for t in tasks if t.status == TaskStatus.COMPLETED.value]
    by_priority = {p: sum(1 for t in tasks if t.priority == p) for p in PRIORITY_ORDER}
    return {
        "date": day.isoformat(),
        "tasks": [task_dict(t) for t in tasks],
        "stats": {
            "total": len(tasks),
            "completed": len(completed),
            "by_priority": by_priority,
            "mit_completed": any(t.priority == TaskPriority.MIT.value for t in completed),
            "points_earned": sum(t.points_earned or 0 for t in completed),
        },
        "limits": {
            TaskPriority.MIT.value: daily_limit(TaskPriority.MIT.value, user.primary_task_limit),
            TaskPriority.PRIMARY.value: user.primary_task_limit,
            TaskPriority.SECONDARY.value: None,
        },
    }


@router.post("/tasks", tags=["Tasks"])
def create_task(data: TaskCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Crea una tarea. Respeta el límite diario de su prioridad"""
    day = data.scheduled_date or user_today(user.timezone)
    priority = data.priority.value
    check_weekly_goal(db, user, data.weekly_goal_id)
    check_priority_limit(db, user, priority, day)

    task = DailyTask(
        user_id=user.id,
        weekly_goal_id=data.weekly_goal_id,
        title=data.title,
        description=data.description,
        priority=priority,
        scheduled_date=day,
        estimated_minutes=data.estimated_minutes
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return ok(task_dict(task))


@router.post("/tasks/carry-over", tags=["Tasks"])
def carry_over(data: CarryOverRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Pasa tareas sin terminar a mañana"""
    moved = carry_over_tasks(db, user, data.task_ids)
    return ok({"moved_count": len(moved), "tasks": [task_dict(t) for t in moved]})


@router.post("/tasks/plan", tags=["Tasks"])
def plan_day(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """El usuario ha planificado su día: racha + bonus (una vez por día)"""
    return ok(record_daily_planning(db, user))


@router.patch("/tasks/{task_id}", tags=["Tasks"])
def update_task(
    task_id: int, data: TaskUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """
    Actualiza una tarea. Completar y desmarcar tienen sus propios
    endpoints porque mueven puntos y rachas.
    """
    task = get_user_task(db, user, task_id)
    update_data = data.model_dump(exclude_unset=True)

    new_status = update_data.get("status")
    if new_status is not None:
        new_status = TaskStatus(new_status).value
        if new_status == TaskStatus.COMPLETED.value and task.status != TaskStatus.COMPLETED.value:
            raise HTTPException(status_code=400, detail="Usa POST /tasks/{id}/complete para completar una tarea")
        if task.status == TaskStatus.COMPLETED.value and new_status != TaskStatus.COMPLETED.value:
            raise HTTPException(status_code=400, detail="Usa POST /tasks/{id}/uncomplete para desmarcar una tarea")
        update_data["status"] = new_status

    if "priority" in update_data and update_data["priority"] is not None:
        update_data["priority"] = TaskPriority(update_data["priority"]).value

    priority = update_data.get("priority") or task.priority
    day = update_data.get("scheduled_date") or task.scheduled_date
    if priority != task.priority or day != task.scheduled_date:
        check_priority_limit(db, user, priority, day, exclude_id=task.id)

    if "weekly_goal_id" in update_data:
        check_weekly_goal(db, user, update_data["weekly_goal_id"])

    for key, value in update_data.items():
        if value is None and key in ("title", "priority", "status", "scheduled_date"):
            continue
        setattr(task, key, value)

    db.commit()
    db.refresh(task)
    return ok(task_dict(task))


@router.delete("/tasks/{task_id}", tags=["Tasks"])
def delete_task(task_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    task = get_user_task(db, user, task_id)
    db.delete(task)
    db.commit()
    return ok({"message": "Tarea eliminada"})


@router.post("/tasks/{task_id}/complete", tags=["Tasks"])
def complete_task_endpoint(
    task_id: int, request: Request, background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """
    Completa una tarea: puntos (con bonus de racha), nivel, racha MIT e
    insignias en una sola transacción. Los desafíos se actualizan después.
    """
    task = get_user_task(db, user, task_id)
    result = complete_task(db, user, task)
    schedule_progress(background_tasks, request, user, "task_completed")

    result["task"] = task_dict(result["task"])
    return ok(result)


@router.post("/tasks/{task_id}/uncomplete", tags=["Tasks"])
def uncomplete_task_endpoint(
    task_id: int, request: Request, background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    task = get_user_task(db, user, task_id)
    result = uncomplete_task(db, user, task)
    schedule_progress(background_tasks, request, user, "task_uncompleted")

    result["task"] = task_dict(result["task"])
    return ok(result)


# ─── Subtareas ───

def get_task_subtask(task: DailyTask, subtask_id: int) -> Subtask:
    subtask = next((s for s in task.subtasks if s.id == subtask_id), None)
    if subtask is None:
        raise HTTPException(status_code=404, detail="Subtarea no encontrada")
    return subtask


@router.post("/tasks/{task_id}/subtasks", tags=["Tasks"])
def add_subtask(
    task_id: int, data: SubtaskCreate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    task = get_user_task(db, user, task_id)
    order = data.order if data.order is not None else len(task.subtasks)
    subtask = Subtask(task_id=task.id, title=data.title, order=order, completed=False)
    db.add(subtask)
    db.commit()
    db.refresh(subtask)
    return ok(SubtaskResponse.model_validate(subtask).model_dump())


@router.patch("/tasks/{task_id}/subtasks/{subtask_id}", tags=["Tasks"])
def update_subtask(
    task_id: int, subtask_id: int, data: SubtaskUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    task = get_user_task(db, user, task_id)
    subtask = get_task_subtask(task, subtask_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(subtask, key, value)
    db.commit()
    return ok(SubtaskResponse.model_validate(subtask).model_dump())


@router.delete("/tasks/{task_id}/subtasks/{subtask_id}", tags=["Tasks"])
def delete_subtask(
    task_id: int, subtask_id: int,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    task = get_user_task(db, user, task_id)
    subtask = get_task_subtask(task, subtask_id)
    db.delete(subtask)
    db.commit()
    return ok({"message": "Subtarea eliminada"})


# =============================================================================
# ===================== SECCIÓN 4: RECURRING TASKS ============================
# =============================================================================

def get_user_template(db: Session, user: User, template_id: int) -> RecurringTaskTemplate:
    template = db.query(RecurringTaskTemplate).filter(
        RecurringTaskTemplate.id == template_id,
        RecurringTaskTemplate.user_id == user.id
    ).first()
    if not template:
        raise HTTPException(status_code=404, detail="Tarea recurrente no encontrada")
    return template


def template_dict(template: RecurringTaskTemplate) -> dict:
    return RecurringTaskResponse.model_validate(template).model_dump()


@router.get("/recurring-tasks", response_model=list[RecurringTaskResponse], tags=["Recurring"])
def list_recurring_tasks(
    active_only: bool = False,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(RecurringTaskTemplate).filter(RecurringTaskTemplate.user_id == user.id)
    if active_only:
        query = query.filter(RecurringTaskTemplate.is_active == True)
    return query.order_by(RecurringTaskTemplate.created_at.desc(), RecurringTaskTemplate.id.desc()).all()


@router.post("/recurring-tasks", tags=["Recurring"])
def create_recurring_task(data: RecurringTaskCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    check_weekly_goal(db, user, data.weekly_goal_id)
    start = data.start_date or user_today(user.timezone)
    if data.end_date and data.end_date < start:
        raise HTTPException(status_code=400, detail="end_date no puede ser anterior a start_date")

    template = RecurringTaskTemplate(
        user_id=user.id,
        weekly_goal_id=data.weekly_goal_id,
        title=data.title,
        description=data.description,
        priority=data.priority.value,
        estimated_minutes=data.estimated_minutes,
        pattern=data.pattern.value,
        days_of_week=data.days_of_week if data.pattern == RecurrencePattern.WEEKLY else None,
        custom_interval=data.custom_interval if data.pattern == RecurrencePattern.CUSTOM else None,
        start_date=start,
        end_date=data.end_date,
        is_active=True
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    logger.info(f"🔁 {user.email} crea plantilla {template.pattern}: {template.title}")
    return ok(template_dict(template))


@router.post("/recurring-tasks/generate", tags=["Recurring"])
def generate_tasks(
    data: Optional[GenerateRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Genera las tareas de las plantillas activas para un día o un rango.
    Sin cuerpo → hoy. Idempotente: repetirlo no duplica tareas.
    """
    data = data or GenerateRequest()
    if data.start_date:
        dates = date_range(data.start_date, data.end_date)
    else:
        dates = [data.date or user_today(user.timezone)]

    if len(dates) > MAX_GENERATION_DAYS:
        raise HTTPException(status_code=400, detail=f"El rango máximo es de {MAX_GENERATION_DAYS} días")

    result, created = generate_recurring_tasks(db, user, dates)
    return ok({
        "created_count": len(created),
        "task_ids": [t.id for t in created],
        "skipped": [s.to_dict() for s in result.skipped],
    })


@router.patch("/recurring-tasks/{template_id}", tags=["Recurring"])
def update_recurring_task(
    template_id: int, data: RecurringTaskUpdate,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    template = get_user_template(db, user, template_id)
    update_data = data.model_dump(exclude_unset=True)

    pattern = RecurrencePattern(update_data.get("pattern") or template.pattern)
    days_of_week = update_data.get("days_of_week", template.days_of_week)
    custom_interval = update_data.get("custom_interval", template.custom_interval)
    start = update_data.get("start_date") or template.start_date
    end = update_data.get("end_date", template.end_date)
    try:
        validate_pattern_fields(pattern, days_of_week, custom_interval)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if end and end < start:
        raise HTTPException(status_code=400, detail="end_date no puede ser anterior a start_date")

    if "weekly_goal_id" in update_data:
        check_weekly_goal(db, user, update_data["weekly_goal_id"])

    for key in ("priority", "pattern"):
        if update_data.get(key) is not None:
            update_data[key] = update_data[key].value
    for key, value in update_data.items():
        if value is None and key in ("title", "priority", "pattern", "start_date", "is_active"):
            continue
        setattr(template, key, value)

    db.commit()
    db.refresh(template)
    return ok(template_dict(template))


@router.delete("/recurring-tasks/{template_id}", tags=["Recurring"])
def delete_recurring_task(template_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Borra la plantilla. Las tareas que ya generó se quedan"""
    template = get_user_template(db, user, template_id)
    db.query(DailyTask).filter(DailyTask.recurring_template_id == template.id).update(
        {DailyTask.recurring_template_id: None}, synchronize_session=False
    )
    db.expire_all()
    db.delete(template)
    db.commit()
    return ok({"message": "Tarea recurrente eliminada"})


# =============================================================================
# ===================== SECCIÓN 5: USER =======================================
# =============================================================================

@router.get("/user/badges", tags=["User"])
def get_badges(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    badges = list_badges(db, user)
    return {
        "badges": badges,
        "earned_count": sum(1 for b in badges if b["earned"]),
        "total": len(badges),
    }


@router.get("/user/next-badge", tags=["User"])
def get_next_badge(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """La insignia más cerca de conseguirse"""
    return {"next_badge": next_badge(db, user, datetime.utcnow())}


def all_streaks(db: Session, user: User, now: datetime) -> list[dict]:
    return [
        streak_summary(get_streak(db, user, streak_type), streak_type, now, user.timezone)
        for streak_type in StreakType
    ]


@router.get("/user/streaks", tags=["User"])
def get_streaks(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"streaks": all_streaks(db, user, datetime.utcnow())}


@router.get("/user/stats", tags=["User"])
def get_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Puntos, nivel, rachas e insignias del usuario"""
    now = datetime.utcnow()
    level_info = level_for_points(user.total_points or 0).to_dict()
    completed = db.query(DailyTask).filter(
        DailyTask.user_id == user.id,
        DailyTask.status == TaskStatus.COMPLETED.value
    ).count()

    return {
        "total_points": user.total_points or 0,
        "level": user.level,
        "level_info": level_info,
        "streaks": all_streaks(db, user, now),
        "badge_count": len(earned_slugs(db, user)),
        "tasks_completed": completed,
    }


@router.get("/user/export", tags=["User"])
def export_all_data(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """
    Exporta TODOS los datos del usuario en formato JSON.
    Cumple con GDPR: el usuario tiene derecho a descargar sus datos.
    """
    user_goals = db.query(Goal).filter(Goal.user_id == user.id).all()
    tasks = db.query(DailyTask).filter(DailyTask.user_id == user.id).all()
    templates = db.query(RecurringTaskTemplate).filter(RecurringTaskTemplate.user_id == user.id).all()
    checkins = db.query(KaizenCheckin).filter(KaizenCheckin.user_id == user.id).all()
    weekly = db.query(WeeklyReview).filter(WeeklyReview.user_id == user.id).all()
    monthly = db.query(MonthlyReview).filter(MonthlyReview.user_id == user.id).all()

    return {
        "export_date": datetime.utcnow().isoformat(),
        "user": UserResponse.model_validate(user).model_dump(),
        "goals": [GoalResponse.model_validate(g).model_dump() for g in user_goals],
        "tasks": [TaskResponse.model_validate(t).model_dump() for t in tasks],
        "recurring_tasks": [RecurringTaskResponse.model_validate(t).model_dump() for t in templates],
        "kaizen_checkins": [KaizenCheckinResponse.model_validate(c).model_dump() for c in checkins],
        "weekly_reviews": [WeeklyReviewResponse.model_validate(r).model_dump() for r in weekly],
        "monthly_reviews": [MonthlyReviewResponse.model_validate(r).model_dump() for r in monthly],
    }


# =============================================================================
# ===================== SECCIÓN 6: CHALLENGES =================================
# =============================================================================

@router.get("/challenges", tags=["Challenges"])
def get_challenges(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Desafíos del día y de la semana (se crean la primera vez que se piden)"""
    challenges = ensure_challenges(db, user)
    items = [ChallengeResponse.model_validate(c).model_dump() for c in challenges]
    return {
        "daily": [c for c in items if c["type"] == ChallengeType.DAILY.value],
        "weekly": [c for c in items if c["type"] == ChallengeType.WEEKLY.value],
    }


# =============================================================================
# ===================== SECCIÓN 7: KAIZEN =====================================
# =============================================================================

@router.post("/kaizen", tags=["Kaizen"])
def kaizen_checkin(
    data: KaizenCheckinCreate, request: Request, background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Check-in del día: ¿he mejorado en cada área? Se puede rehacer"""
    result = save_kaizen_checkin(db, user, data)
    schedule_progress(background_tasks, request, user, "kaizen_checkin")

    result["checkin"] = KaizenCheckinResponse.model_validate(result["checkin"]).model_dump()
    return ok(result)


@router.get("/kaizen", tags=["Kaizen"])
def get_kaizen(
    day: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(7, ge=1, le=90),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Un día (date), un rango (start_date + end_date) o los últimos `limit`"""
    query = db.query(KaizenCheckin).filter(KaizenCheckin.user_id == user.id)
    if day:
        query = query.filter(KaizenCheckin.checkin_date == day)
    elif start_date or end_date:
        if not (start_date and end_date):
            raise HTTPException(status_code=400, detail="start_date y end_date van juntos")
        query = query.filter(KaizenCheckin.checkin_date >= start_date, KaizenCheckin.checkin_date <= end_date)

    query = query.order_by(KaizenCheckin.checkin_date.desc())
    if not (day or start_date):
        query = query.limit(limit)
    checkins = query.all()
    streak = get_streak(db, user, StreakType.KAIZEN_CHECKIN)
    return {
        "checkins": [KaizenCheckinResponse.model_validate(c).model_dump() for c in checkins],
        "streak": streak_summary(streak, StreakType.KAIZEN_CHECKIN, datetime.utcnow(), user.timezone),
    }


# =============================================================================
# ===================== SECCIÓN 8: REVIEWS ====================================
# =============================================================================

@router.get("/review/weekly", tags=["Reviews"])
def weekly_review_summary(
    week_offset: int = Query(0, le=0, ge=-52),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return reviews.weekly_summary(db, user, week_offset)


@router.post("/review/weekly", tags=["Reviews"])
def submit_weekly_review(data: WeeklyReviewCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = reviews.submit_weekly_review(db, user, data)
    result["review"] = WeeklyReviewResponse.model_validate(result["review"]).model_dump()
    return ok(result)


@router.get("/review/monthly", tags=["Reviews"])
def monthly_review_summary(
    month_offset: int = Query(0, le=0, ge=-24),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return reviews.monthly_summary(db, user, month_offset)


@router.post("/review/monthly", tags=["Reviews"])
def submit_monthly_review(data: MonthlyReviewCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = reviews.submit_monthly_review(db, user, data)
    result["review"] = MonthlyReviewResponse.model_validate(result["review"]).model_dump()
    return ok(result)


@router.get("/review/history", tags=["Reviews"])
def review_history(
    review_type: str = Query("weekly", alias="type"),
    limit: int = Query(10, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    rows, total = reviews.review_history(db, user, review_type, limit, offset)
    schema = WeeklyReviewResponse if review_type == "weekly" else MonthlyReviewResponse
    return {
        "reviews": [schema.model_validate(r).model_dump() for r in rows],
        "total": total,
        "has_more": offset + len(rows) < total,
    }


# =============================================================================
# ===================== SECCIÓN 9: AI =========================================
# =============================================================================

def get_coach(request: Request) -> GoalCoach:
    """503 si la app arrancó sin cliente de IA"""
    client = request.app.state.ai_client
    if client is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="La IA no está configurada")
    return GoalCoach(client, request.app.state.settings.ai_model)


@router.get("/ai/usage", tags=["AI"])
def get_ai_usage(request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    usage = ai_usage(db, user, request.app.state.settings.ai_daily_limit)
    usage["enabled"] = request.app.state.ai_client is not None
    return usage


@router.post("/ai/cascade", tags=["AI"])
def ai_cascade(
    data: AICascadeRequest, request: Request,
    user: User = Depends(get_current_user), db: Session = Depends(get_db),
    coach: GoalCoach = Depends(get_coach)
):
    """Sugiere los hijos de un objetivo (3 mensuales, 4 semanales o 5 tareas...)"""
    limit = request.app.state.settings.ai_daily_limit
    usage = check_ai_limit(db, user, limit)

    if data.goal_id is not None:
        goal = goals.get_user_goal(db, user, data.goal_id)
        title, description, level = goal.title, goal.description, goal.level
    else:
        title, description, level = data.parent_title, data.parent_description, data.parent_level

    suggestions, meta = coach.suggest_cascade(title, description, level)
    log_interaction(db, user, "cascade", coach.model, meta)

    return ok({
        "parent_level": level,
        "child_level": goals.CHILD_LEVEL[GoalLevel(level)].value if GoalLevel(level) in goals.CHILD_LEVEL else "task",
        "suggestions": suggestions,
        "remaining": usage["remaining"] - 1,
    })


@router.post("/ai/sharpen", tags=["AI"])
def ai_sharpen(
    data: AISharpenRequest, request: Request,
    user: User = Depends(get_current_user), db: Session = Depends(get_db),
    coach: GoalCoach = Depends(get_coach)
):
    """Reescribe un objetivo vago en formato SMART"""
    usage = check_ai_limit(db, user, request.app.state.settings.ai_daily_limit)
    sharpened, meta = coach.sharpen_goal(data.title, data.description)
    log_interaction(db, user, "sharpen", coach.model, meta)

    return ok({
        "original": {"title": data.title, "description": data.description},
        "sharpened": sharpened,
        "remaining": usage["remaining"] - 1,
    })


# =============================================================================
# ===================== APLICACIÓN ============================================
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Arranque: crear tablas si no existen.
    Apagado: cerrar las conexiones del engine.
    """
    logger.info(f"🚀 Arrancando {APP_NAME} v{APP_VERSION}...")
    init_db(app.state.engine)
    logger.info("✅ Base de datos inicializada")

    yield  # ← La aplicación está corriendo

    logger.info(f"🛑 Apagando {APP_NAME}...")
    app.state.engine.dispose()
    logger.info("👋 Apagado completo")


def register_error_handlers(app: FastAPI):
    """Todas las respuestas de error tienen la forma {"error": ...}"""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Datos no válidos", "details": details}
        )

    # Captura CUALQUIER error no manejado y devuelve un JSON en vez de un
    # genérico "Internal Server Error"
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"❌ Error no manejado en {request.url}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": "Error interno del servidor", "type": type(exc).__name__}
        )


def create_app(settings: Optional[Settings] = None, ai_client=None) -> FastAPI:
    """
    Monta la aplicación completa.

    settings  → None = leer de variables de entorno
    ai_client → None = crear el de OpenAI (si hay clave). Los tests pasan uno falso.
    """
    settings = settings or Settings.from_env()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    )

    app = FastAPI(
        title=APP_NAME,
        description="Cascada de objetivos (visión → tareas diarias) con gamificación",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = build_engine(settings.database_url)
    app.state.session_factory = build_session_factory(app.state.engine)
    app.state.ai_client = ai_client if ai_client is not None else build_ai_client(settings)

    # CORS → permite que la web haga peticiones a esta API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(router)
    return app
