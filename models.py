"""
=============================================================================
MODELS.PY - Todos los Modelos (Tablas) de la Base de Datos
=============================================================================
Cada clase aquí = una tabla en la base de datos.
Cada atributo de la clase = una columna en esa tabla.

LA CASCADA:
  Visión a 7 años
  └── Objetivo a 3 años
      └── Objetivo a 1 año
          └── Objetivo mensual
              └── Objetivo semanal
                  └── Tareas diarias (MIT / PRIMARY / SECONDARY)

Todos los niveles de objetivo viven en la MISMA tabla (goals) con una
columna `level` y un `parent_id` que apunta al objetivo de arriba.

RELACIONES:
  USER
  ├── goals[] ──→ children[] (recursivo)
  ├── daily_tasks[] ──→ subtasks[]
  ├── recurring_templates[]
  ├── streaks[]            (una por tipo)
  ├── earned_badges[]
  ├── challenges[]
  ├── kaizen_checkins[]
  ├── weekly_reviews[]
  ├── monthly_reviews[]
  └── ai_interactions[]
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Text, Date,
    DateTime, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from database import Base
import enum


# =============================================================================
# ===================== ENUMS (Tipos predefinidos) ============================
# =============================================================================

class GoalLevel(str, enum.Enum):
    """Nivel de la cascada, de más lejano a más cercano"""
    vision = "vision"            # 🔮 Visión a 7 años
    three_year = "three_year"    # Objetivo a 3 años
    one_year = "one_year"        # Objetivo a 1 año
    monthly = "monthly"          # Objetivo del mes
    weekly = "weekly"            # Objetivo de la semana

class GoalCategory(str, enum.Enum):
    HEALTH = "HEALTH"                    # 💪
    WEALTH = "WEALTH"                    # 💰
    RELATIONSHIPS = "RELATIONSHIPS"      # ❤️
    CAREER = "CAREER"                    # 💼
    PERSONAL_GROWTH = "PERSONAL_GROWTH"  # 🧠
    LIFESTYLE = "LIFESTYLE"              # 🌟
    OTHER = "OTHER"

class GoalStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"

class TaskPriority(str, enum.Enum):
    """Prioridad de una tarea diaria"""
    MIT = "MIT"                # Most Important Task → solo 1 por día
    PRIMARY = "PRIMARY"        # Importantes → límite configurable
    SECONDARY = "SECONDARY"    # El resto → sin límite

class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"

class RecurrencePattern(str, enum.Enum):
    """Con qué frecuencia se repite una plantilla de tarea"""
    DAILY = "DAILY"          # Todos los días
    WEEKDAYS = "WEEKDAYS"    # De lunes a viernes
    WEEKLY = "WEEKLY"        # Días concretos (days_of_week)
    CUSTOM = "CUSTOM"        # Cada N días desde start_date

class StreakType(str, enum.Enum):
    DAILY_PLANNING = "DAILY_PLANNING"
    MIT_COMPLETION = "MIT_COMPLETION"
    WEEKLY_REVIEW = "WEEKLY_REVIEW"
    MONTHLY_REVIEW = "MONTHLY_REVIEW"
    KAIZEN_CHECKIN = "KAIZEN_CHECKIN"

class ChallengeType(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"

class ChallengeCategory(str, enum.Enum):
    TASKS = "TASKS"
    MIT = "MIT"
    ALIGNMENT = "ALIGNMENT"
    KAIZEN = "KAIZEN"
    STREAKS = "STREAKS"
    GOALS = "GOALS"


# =============================================================================
# ===================== TABLA 1: USERS ========================================
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # ── Datos básicos ──
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)

    # ── Configuración ──
    timezone = Column(String(50), default="UTC")
    # timezone → nombre IANA ("Europe/Madrid"). Decide qué es "hoy".
    primary_task_limit = Column(Integer, default=3)
    # primary_task_limit → máximo de tareas PRIMARY por día

    # ── Gamificación ──
    total_points = Column(Integer, default=0)
    level = Column(Integer, default=1)
    # level → nunca baja, aunque se resten puntos al desmarcar una tarea

    # ── Timestamps ──
    created_at = Column(DateTime, default=datetime.utcnow)
    last_active = Column(DateTime, default=datetime.utcnow)

    # ── Relaciones ──
    goals = relationship("Goal", back_populates="user", cascade="all, delete-orphan")
    daily_tasks = relationship("DailyTask", back_populates="user", cascade="all, delete-orphan")
    recurring_templates = relationship("RecurringTaskTemplate", back_populates="user", cascade="all, delete-orphan")
    streaks = relationship("Streak", back_populates="user", cascade="all, delete-orphan")
    earned_badges = relationship("EarnedBadge", back_populates="user", cascade="all, delete-orphan")
    challenges = relationship("UserChallenge", back_populates="user", cascade="all, delete-orphan")
    kaizen_checkins = relationship("KaizenCheckin", back_populates="user", cascade="all, delete-orphan")
    weekly_reviews = relationship("WeeklyReview", back_populates="user", cascade="all, delete-orphan")
    monthly_reviews = relationship("MonthlyReview", back_populates="user", cascade="all, delete-orphan")
    ai_interactions = relationship("AIInteraction", back_populates="user", cascade="all, delete-orphan")
    # cascade="all, delete-orphan" → si borras el usuario, se borran todos sus datos


# =============================================================================
# ===================== TABLA 2: GOALS ========================================
# =============================================================================
# Un objetivo de cualquier nivel de la cascada.

class Goal(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("goals.id"), nullable=True, index=True)
    # parent_id → objetivo del nivel superior (NULL en visiones y semanales sueltos)

    level = Column(String(20), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(30), default=GoalCategory.OTHER.value)
    status = Column(String(20), default=GoalStatus.ACTIVE.value)
    progress = Column(Float, default=0)
    # progress → 0.0 a 100.0

    # ── Fechas según nivel ──
    target_date = Column(Date, nullable=True)
    # target_date → visión, 3 años, 1 año
    target_month = Column(Date, nullable=True)
    # target_month → primer día del mes (objetivos mensuales)
    week_start = Column(Date, nullable=True)
    # week_start → lunes de la semana (objetivos semanales)

    points_awarded = Column(Boolean, default=False)
    # points_awarded → los puntos por completarlo solo se dan UNA vez
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="goals")
    parent = relationship("Goal", remote_side=[id], back_populates="children")
    children = relationship("Goal", back_populates="parent", cascade="all, delete-orphan")
    tasks = relationship("DailyTask", back_populates="weekly_goal")
    # Al borrar un objetivo semanal, sus tareas NO se borran: quedan sin vincular


# =============================================================================
# ===================== TABLA 3: DAILY_TASKS ==================================
# =============================================================================

class DailyTask(Base):
    __tablename__ = "daily_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    weekly_goal_id = Column(Integer, ForeignKey("goals.id"), nullable=True)
    recurring_template_id = Column(Integer, ForeignKey("recurring_task_templates.id"), nullable=True)
    # recurring_template_id → si la generó una plantilla recurrente

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False, default=TaskPriority.SECONDARY.value)
    status = Column(String(20), nullable=False, default=TaskStatus.PENDING.value)

    scheduled_date = Column(Date, nullable=False, index=True)
    estimated_minutes = Column(Integer, nullable=True)

    points_earned = Column(Integer, default=0)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="daily_tasks")
    weekly_goal = relationship("Goal", back_populates="tasks")
    recurring_template = relationship("RecurringTaskTemplate", back_populates="tasks")
    subtasks = relationship("Subtask", back_populates="task", cascade="all, delete-orphan",
                            order_by="Subtask.order")


class Subtask(Base):
    """Pasos pequeños dentro de una tarea. Ej: 'Escribir informe' → intro, datos, conclusión"""
    __tablename__ = "subtasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("daily_tasks.id"), nullable=False)

    title = Column(String(200), nullable=False)
    completed = Column(Boolean, default=False)
    order = Column(Integer, default=0)

    task = relationship("DailyTask", back_populates="subtasks")


# =============================================================================
# ===================== TABLA 4: RECURRING_TASK_TEMPLATES =====================
# =============================================================================
# Plantillas que generan tareas diarias automáticamente.

class RecurringTaskTemplate(Base):
    __tablename__ = "recurring_task_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    weekly_goal_id = Column(Integer, ForeignKey("goals.id"), nullable=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False)
    estimated_minutes = Column(Integer, nullable=True)

    # ── Patrón de repetición ──
    pattern = Column(String(20), nullable=False)
    days_of_week = Column(JSON, nullable=True)
    # days_of_week → ["MON", "WED"] (solo para WEEKLY)
    custom_interval = Column(Integer, nullable=True)
    # custom_interval → cada cuántos días (solo para CUSTOM)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)

    is_active = Column(Boolean, default=True)
    last_generated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="recurring_templates")
    weekly_goal = relationship("Goal")
    tasks = relationship("DailyTask", back_populates="recurring_template")


# =============================================================================
# ===================== TABLA 5: STREAKS ======================================
# =============================================================================
# Una racha por usuario y por tipo de acción.

class Streak(Base):
    __tablename__ = "streaks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    type = Column(String(30), nullable=False)
    current_count = Column(Integer, default=0)
    longest_count = Column(Integer, default=0)
    last_action_at = Column(DateTime, nullable=True)
    # last_action_at → en UTC. El "día" se calcula con la zona del usuario.

    __table_args__ = (
        UniqueConstraint('user_id', 'type', name='uq_user_streak_type'),
    )

    user = relationship("User", back_populates="streaks")


# =============================================================================
# ===================== TABLA 6: BADGES =======================================
# =============================================================================
# Insignias DISPONIBLES. Se crean la primera vez que alguien las gana.

class Badge(Base):
    __tablename__ = "badges"

    id = Column(Integer, primary_key=True, autoincrement=True)

    slug = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(String(300), nullable=False)
    category = Column(String(30), nullable=False)
    icon = Column(String(10), default="🏆")


class EarnedBadge(Base):
    __tablename__ = "earned_badges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    badge_id = Column(Integer, ForeignKey("badges.id"), nullable=False)

    earned_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'badge_id', name='uq_user_badge'),
    )

    user = relationship("User", back_populates="earned_badges")
    badge = relationship("Badge")


# =============================================================================
# ===================== TABLA 7: USER_CHALLENGES ==============================
# =============================================================================
# Desafíos diarios y semanales generados para cada usuario.

class UserChallenge(Base):
    __tablename__ = "user_challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(String(10), nullable=False)
    category = Column(String(20), nullable=False)
    slug = Column(String(50), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(String(300), nullable=False)

    target_value = Column(Integer, nullable=False)
    current_value = Column(Integer, default=0)
    bonus_xp = Column(Integer, default=0)

    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    # period_start/end → día o semana (lunes-domingo) en la zona del usuario

    is_completed = Column(Boolean, default=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('user_id', 'slug', 'period_start', name='uq_user_challenge_period'),
    )

    user = relationship("User", back_populates="challenges")


# =============================================================================
# ===================== TABLA 8: KAIZEN_CHECKINS ==============================
# =============================================================================
# Reflexión diaria: ¿mejoré hoy en cada una de las 6 áreas?

class KaizenCheckin(Base):
    __tablename__ = "kaizen_checkins"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    checkin_date = Column(Date, nullable=False)
    health = Column(Boolean, default=False)
    relationships = Column(Boolean, default=False)
    wealth = Column(Boolean, default=False)
    career = Column(Boolean, default=False)
    personal_growth = Column(Boolean, default=False)
    lifestyle = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)

    points_earned = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'checkin_date', name='uq_kaizen_date'),
    )

    user = relationship("User", back_populates="kaizen_checkins")


# =============================================================================
# ===================== TABLA 9: WEEKLY_REVIEWS ===============================
# =============================================================================

class WeeklyReview(Base):
    __tablename__ = "weekly_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    week_start = Column(Date, nullable=False)
    # week_start → lunes de la semana revisada

    wins = Column(Text, nullable=True)
    # "¿Qué salió bien?"
    challenges = Column(Text, nullable=True)
    # "¿Qué costó?"
    next_week_focus = Column(Text, nullable=True)
    # "¿En qué te vas a enfocar la próxima semana?"

    # ── Foto de las estadísticas al enviar la revisión ──
    tasks_completed = Column(Integer, default=0)
    total_tasks = Column(Integer, default=0)
    mit_completed = Column(Integer, default=0)
    mit_total = Column(Integer, default=0)
    points_earned = Column(Integer, default=0)
    goal_alignment_rate = Column(Integer, default=0)
    review_points = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'week_start', name='uq_weekly_review'),
    )

    user = relationship("User", back_populates="weekly_reviews")


# =============================================================================
# ===================== TABLA 10: MONTHLY_REVIEWS =============================
# =============================================================================

class MonthlyReview(Base):
    __tablename__ = "monthly_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    month_start = Column(Date, nullable=False)

    wins = Column(Text, nullable=True)
    learnings = Column(Text, nullable=True)
    next_month_focus = Column(Text, nullable=True)

    tasks_completed = Column(Integer, default=0)
    total_tasks = Column(Integer, default=0)
    mit_completed = Column(Integer, default=0)
    mit_total = Column(Integer, default=0)
    points_earned = Column(Integer, default=0)
    goal_alignment_rate = Column(Integer, default=0)
    goals_completed = Column(Integer, default=0)
    goals_total = Column(Integer, default=0)
    review_points = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'month_start', name='uq_monthly_review'),
    )

    user = relationship("User", back_populates="monthly_reviews")


# =============================================================================
# ===================== TABLA 11: AI_INTERACTIONS =============================
# =============================================================================
# Cada llamada a la IA queda registrada. El límite diario se cuenta AQUÍ.

class AIInteraction(Base):
    __tablename__ = "ai_interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(String(30), nullable=False)
    # type → "cascade", "sharpen"
    model = Column(String(100), nullable=True)
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    prompt = Column(Text, nullable=True)
    response = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="ai_interactions")
