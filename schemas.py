"""
=============================================================================
SCHEMAS.PY - Esquemas de Validación (Pydantic)
=============================================================================
Models (SQLAlchemy) → definen las TABLAS de la BD
Schemas (Pydantic)  → definen qué DATOS acepta/devuelve la API

Si algo no valida → error 400 con {"error": ..., "details": [...]}
(ver el handler de RequestValidationError en main.py).

Convención de nombres:
  XxxCreate   → para crear algo nuevo (POST)
  XxxUpdate   → para actualizar algo (PATCH)
  XxxResponse → lo que devuelve la API (GET)
"""

from pydantic import BaseModel, Field, EmailStr, model_validator
import datetime as dt
from datetime import date, datetime
from typing import Optional

from models import (
    GoalLevel, GoalCategory, GoalStatus, TaskPriority, TaskStatus,
    RecurrencePattern
)
from timezones import DAY_CODES


# =============================================================================
# ===================== AUTH ==================================================
# =============================================================================

class UserRegister(BaseModel):
    """Datos para registrar un usuario nuevo"""
    email: EmailStr
    password: str = Field(min_length=8, description="Mínimo 8 caracteres")
    name: str = Field(min_length=1, max_length=100)
    timezone: Optional[str] = None

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    """Respuesta con el token JWT"""
    access_token: str
    token_type: str = "bearer"
    user_id: int
    name: str

class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    timezone: str
    primary_task_limit: int
    total_points: int
    level: int
    created_at: datetime
    last_active: Optional[datetime] = None
    model_config = {"from_attributes": True}

class UserUpdate(BaseModel):
    """Campos actualizables del usuario"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    timezone: Optional[str] = None
    primary_task_limit: Optional[int] = Field(default=None, ge=1, le=10)


# =============================================================================
# ===================== GOALS =================================================
# =============================================================================

class GoalCreate(BaseModel):
    level: GoalLevel
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: GoalCategory = GoalCategory.OTHER
    parent_id: Optional[int] = None
    target_date: Optional[date] = None
    target_month: Optional[date] = None
    week_start: Optional[date] = None

class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[GoalCategory] = None
    status: Optional[GoalStatus] = None
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    parent_id: Optional[int] = None
    target_date: Optional[date] = None
    target_month: Optional[date] = None
    week_start: Optional[date] = None

class GoalResponse(BaseModel):
    id: int
    parent_id: Optional[int] = None
    level: str
    title: str
    description: Optional[str] = None
    category: str
    status: str
    progress: float
    target_date: Optional[date] = None
    target_month: Optional[date] = None
    week_start: Optional[date] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    model_config = {"from_attributes": True}

class CascadeStep(BaseModel):
    """Un eslabón de la cadena en POST /goals/cascade"""
    level: GoalLevel
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    target_date: Optional[date] = None
    target_month: Optional[date] = None
    week_start: Optional[date] = None

class CascadeCreate(BaseModel):
    category: GoalCategory = GoalCategory.OTHER
    parent_id: Optional[int] = None
    # parent_id → enganchar la cadena debajo de un objetivo existente
    steps: list[CascadeStep] = Field(min_length=1, max_length=5)


# =============================================================================
# ===================== DAILY TASKS ===========================================
# =============================================================================

class SubtaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    order: Optional[int] = None

class SubtaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    completed: Optional[bool] = None
    order: Optional[int] = None

class SubtaskResponse(BaseModel):
    id: int
    title: str
    completed: bool
    order: int
    model_config = {"from_attributes": True}

class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.SECONDARY
    scheduled_date: Optional[date] = None
    # scheduled_date → si no viene, "hoy" en la zona del usuario
    estimated_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    weekly_goal_id: Optional[int] = None

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    scheduled_date: Optional[date] = None
    estimated_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    weekly_goal_id: Optional[int] = None

class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    priority: str
    status: str
    scheduled_date: date
    estimated_minutes: Optional[int] = None
    weekly_goal_id: Optional[int] = None
    recurring_template_id: Optional[int] = None
    points_earned: int
    completed_at: Optional[datetime] = None
    created_at: datetime
    subtasks: list[SubtaskResponse] = []
    model_config = {"from_attributes": True}

class CarryOverRequest(BaseModel):
    task_ids: list[int] = Field(min_length=1)


# =============================================================================
# ===================== RECURRING TASKS =======================================
# =============================================================================

def validate_pattern_fields(pattern, days_of_week, custom_interval):
    """WEEKLY necesita días, CUSTOM necesita intervalo"""
    if pattern == RecurrencePattern.WEEKLY and not days_of_week:
        raise ValueError("WEEKLY necesita al menos un día en days_of_week")
    if pattern == RecurrencePattern.CUSTOM and not custom_interval:
        raise ValueError("CUSTOM necesita custom_interval >= 1")
    for code in days_of_week or []:
        if code not in DAY_CODES:
            raise ValueError(f"Día no válido: {code} (usa {', '.join(DAY_CODES)})")


class RecurringTaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    priority: TaskPriority
    estimated_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    weekly_goal_id: Optional[int] = None
    pattern: RecurrencePattern
    days_of_week: Optional[list[str]] = None
    custom_interval: Optional[int] = Field(default=None, ge=1, le=365)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_pattern(self):
        validate_pattern_fields(self.pattern, self.days_of_week, self.custom_interval)
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date no puede ser anterior a start_date")
        return self

class RecurringTaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    estimated_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    weekly_goal_id: Optional[int] = None
    pattern: Optional[RecurrencePattern] = None
    days_of_week: Optional[list[str]] = None
    custom_interval: Optional[int] = Field(default=None, ge=1, le=365)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None

class RecurringTaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    priority: str
    estimated_minutes: Optional[int] = None
    weekly_goal_id: Optional[int] = None
    pattern: str
    days_of_week: Optional[list[str]] = None
    custom_interval: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    last_generated_at: Optional[datetime] = None
    created_at: datetime
    model_config = {"from_attributes": True}

class GenerateRequest(BaseModel):
    """Un día (date) o un rango (start_date + end_date). Vacío → hoy"""
    date: Optional[dt.date] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    # dt.date → el campo "date" taparía al tipo dentro de la clase

    @model_validator(mode="after")
    def check_range(self):
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date y end_date van juntos")
        if self.start_date and self.end_date < self.start_date:
            raise ValueError("end_date no puede ser anterior a start_date")
        return self


# =============================================================================
# ===================== KAIZEN ================================================
# =============================================================================

class KaizenCheckinCreate(BaseModel):
    checkin_date: Optional[date] = None
    health: bool = False
    relationships: bool = False
    wealth: bool = False
    career: bool = False
    personal_growth: bool = False
    lifestyle: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)

class KaizenCheckinResponse(BaseModel):
    id: int
    checkin_date: date
    health: bool
    relationships: bool
    wealth: bool
    career: bool
    personal_growth: bool
    lifestyle: bool
    notes: Optional[str] = None
    points_earned: int
    created_at: datetime
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== REVIEWS ===============================================
# =============================================================================

class WeeklyReviewCreate(BaseModel):
    week_offset: int = Field(default=0, le=0, ge=-52)
    # week_offset → 0 = esta semana, -1 = la anterior...
    wins: Optional[str] = None
    challenges: Optional[str] = None
    next_week_focus: Optional[str] = None

class MonthlyReviewCreate(BaseModel):
    month_offset: int = Field(default=0, le=0, ge=-24)
    wins: Optional[str] = None
    learnings: Optional[str] = None
    next_month_focus: Optional[str] = None

class WeeklyReviewResponse(BaseModel):
    id: int
    week_start: date
    wins: Optional[str] = None
    challenges: Optional[str] = None
    next_week_focus: Optional[str] = None
    tasks_completed: int
    total_tasks: int
    mit_completed: int
    mit_total: int
    points_earned: int
    goal_alignment_rate: int
    review_points: int
    created_at: datetime
    model_config = {"from_attributes": True}

class MonthlyReviewResponse(BaseModel):
    id: int
    month_start: date
    wins: Optional[str] = None
    learnings: Optional[str] = None
    next_month_focus: Optional[str] = None
    tasks_completed: int
    total_tasks: int
    mit_completed: int
    mit_total: int
    points_earned: int
    goal_alignment_rate: int
    goals_completed: int
    goals_total: int
    review_points: int
    created_at: datetime
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== CHALLENGES ============================================
# =============================================================================

class ChallengeResponse(BaseModel):
    id: int
    type: str
    category: str
    slug: str
    title: str
    description: str
    target_value: int
    current_value: int
    bonus_xp: int
    period_start: date
    period_end: date
    is_completed: bool
    completed_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


# =============================================================================
# ===================== AI ====================================================
# =============================================================================

class AICascadeRequest(BaseModel):
    goal_id: Optional[int] = None
    # goal_id → si viene, se usa el título/nivel de ese objetivo
    parent_title: Optional[str] = Field(default=None, max_length=200)
    parent_description: Optional[str] = Field(default=None, max_length=2000)
    parent_level: Optional[str] = None

    @model_validator(mode="after")
    def check_source(self):
        if self.goal_id is None and not (self.parent_title and self.parent_level):
            raise ValueError("Indica goal_id o parent_title + parent_level")
        return self

class AISharpenRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
