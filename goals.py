"""
=============================================================================
GOALS.PY - La Cascada de Objetivos y el Mapa Mental
=============================================================================
Niveles (de arriba a abajo):

  vision (7 años) → three_year → one_year → monthly → weekly → tareas

Reglas de enganche:
  - vision      → nunca tiene padre
  - three_year  → su padre es una vision
  - one_year    → su padre es un three_year
  - monthly     → su padre es un one_year (y necesita target_month)
  - weekly      → su padre es un monthly, o ninguno ("suelto")
                  (y necesita week_start)

Mapa mental:
  build_mind_map() convierte el árbol en nodos + aristas con posición.
  Layout por capas: la profundidad decide la columna (o fila, en vertical)
  y las hojas visibles reparten el otro eje. Cada padre queda centrado
  sobre sus hijos.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from gamification import GOAL_POINTS, add_points, check_badges, badge_to_dict
from models import (
    User, Goal, DailyTask, RecurringTaskTemplate,
    GoalLevel, GoalStatus, TaskStatus
)
from timezones import month_start, week_start, to_naive_utc

logger = logging.getLogger("cascada.goals")


# =============================================================================
# ===================== NIVELES Y PADRES ======================================
# =============================================================================

LEVEL_ORDER = [
    GoalLevel.vision,
    GoalLevel.three_year,
    GoalLevel.one_year,
    GoalLevel.monthly,
    GoalLevel.weekly,
]

PARENT_LEVEL = {
    GoalLevel.three_year: GoalLevel.vision,
    GoalLevel.one_year: GoalLevel.three_year,
    GoalLevel.monthly: GoalLevel.one_year,
    GoalLevel.weekly: GoalLevel.monthly,
}

CHILD_LEVEL = {parent: child for child, parent in PARENT_LEVEL.items()}

LEVEL_LABELS = {
    GoalLevel.vision: "Visión a 7 años",
    GoalLevel.three_year: "Objetivo a 3 años",
    GoalLevel.one_year: "Objetivo a 1 año",
    GoalLevel.monthly: "Objetivo mensual",
    GoalLevel.weekly: "Objetivo semanal",
}


def get_user_goal(db: Session, user: User, goal_id: int) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id, Goal.user_id == user.id).first()
    if not goal:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Objetivo no encontrado")
    return goal


def validate_parent(db: Session, user: User, level, parent_id: Optional[int]) -> Optional[Goal]:
    """
    Comprueba que el padre encaja con el nivel. Retorna el padre (o None).
    400 si el enganche no es válido, 404 si el padre no existe o es de otro.
    """
    level = GoalLevel(level)

    if level == GoalLevel.vision:
        if parent_id is not None:
            raise HTTPException(status_code=400, detail="Una visión no puede tener objetivo padre")
        return None

    expected = PARENT_LEVEL[level]
    if parent_id is None:
        if level == GoalLevel.weekly:
            return None
        raise HTTPException(
            status_code=400,
            detail=f"{LEVEL_LABELS[level]} necesita un padre de nivel {expected.value}"
        )

    parent = db.query(Goal).filter(Goal.id == parent_id, Goal.user_id == user.id).first()
    if parent is None:
        raise HTTPException(status_code=404, detail="Objetivo padre no encontrado")
    if parent.level != expected.value:
        raise HTTPException(
            status_code=400,
            detail=f"El padre de un objetivo {level.value} debe ser {expected.value}, no {parent.level}"
        )
    return parent


def normalize_dates(level, target_month=None, week_start_day=None) -> tuple:
    """
    monthly → target_month obligatorio (se guarda como día 1)
    weekly  → week_start obligatorio (se guarda como lunes)
    """
    level = GoalLevel(level)
    if level == GoalLevel.monthly:
        if target_month is None:
            raise HTTPException(status_code=400, detail="Un objetivo mensual necesita target_month")
        target_month = month_start(target_month)
    if level == GoalLevel.weekly:
        if week_start_day is None:
            raise HTTPException(status_code=400, detail="Un objetivo semanal necesita week_start")
        week_start_day = week_start(week_start_day)
    return target_month, week_start_day


# =============================================================================
# ===================== CRUD ==================================================
# =============================================================================

def create_goal(db: Session, user: User, data) -> tuple[Goal, list]:
    """Crea un objetivo. Retorna (goal, insignias nuevas)"""
    validate_parent(db, user, data.level, data.parent_id)
    target_month, week_start_day = normalize_dates(data.level, data.target_month, data.week_start)

    goal = Goal(
        user_id=user.id,
        parent_id=data.parent_id,
        level=GoalLevel(data.level).value,
        title=data.title,
        description=data.description,
        category=data.category.value,
        target_date=data.target_date,
        target_month=target_month,
        week_start=week_start_day,
    )
    db.add(goal)
    badges = check_badges(db, user, {"goal_changed": True})
    db.commit()

    logger.info(f"🎯 {user.email} crea objetivo {goal.level}: {goal.title}")
    return goal, badges


def complete_goal(db: Session, user: User, goal: Goal, now: Optional[datetime] = None) -> int:
    """
    Marca como COMPLETED. Los puntos del nivel se dan UNA sola vez por
    objetivo (points_awarded), aunque se reabra y se vuelva a completar.
    Sin commit. Retorna los puntos dados.
    """
    now = now or datetime.utcnow()
    goal.status = GoalStatus.COMPLETED.value
    goal.completed_at = to_naive_utc(now)
    goal.progress = 100.0

    if goal.points_awarded:
        return 0

    points = GOAL_POINTS[goal.level]
    goal.points_awarded = True
    add_points(user, points)
    logger.info(f"🏁 {user.email} completa {goal.level} '{goal.title}': +{points} pts")
    return points


def update_goal(db: Session, user: User, goal: Goal, data, now: Optional[datetime] = None) -> dict:
    """
    Aplica un GoalUpdate. Si el estado pasa a COMPLETED da los puntos del
    nivel y comprueba insignias. Un único commit.
    """
    update_data = data.model_dump(exclude_unset=True)

    if "parent_id" in update_data and update_data["parent_id"] != goal.parent_id:
        validate_parent(db, user, goal.level, update_data["parent_id"])
        if update_data["parent_id"] == goal.id:
            raise HTTPException(status_code=400, detail="Un objetivo no puede ser su propio padre")

    if "target_month" in update_data or "week_start" in update_data:
        target_month, week_start_day = normalize_dates(
            goal.level,
            update_data.get("target_month", goal.target_month),
            update_data.get("week_start", goal.week_start),
        )
        update_data["target_month"] = target_month
        update_data["week_start"] = week_start_day

    new_status = update_data.pop("status", None)
    for key, value in update_data.items():
        if key == "category" and value is not None:
            value = value.value
        setattr(goal, key, value)

    points = 0
    just_completed = False
    if new_status is not None:
        new_status = GoalStatus(new_status).value
        if new_status == GoalStatus.COMPLETED.value and goal.status != GoalStatus.COMPLETED.value:
            points = complete_goal(db, user, goal, now)
            just_completed = True
        elif new_status != GoalStatus.COMPLETED.value:
            goal.status = new_status
            goal.completed_at = None

    badges = check_badges(db, user, {"goal_changed": True})
    db.commit()

    return {
        "goal": goal,
        "just_completed": just_completed,
        "points_earned": points,
        "badges": [badge_to_dict(b) for b in badges],
    }


def descendant_ids(db: Session, goal: Goal) -> list[int]:
    """IDs del objetivo y de todos sus descendientes"""
    ids = [goal.id]
    frontier = [goal.id]
    while frontier:
        children = [gid for (gid,) in db.query(Goal.id).filter(Goal.parent_id.in_(frontier)).all()]
        ids.extend(children)
        frontier = children
    return ids


def delete_goal(db: Session, user: User, goal: Goal) -> int:
    """
    Borra el objetivo y sus descendientes. Las tareas y plantillas que
    colgaban de ellos NO se borran: se quedan sin objetivo.
    """
    ids = descendant_ids(db, goal)

    db.query(DailyTask).filter(DailyTask.weekly_goal_id.in_(ids)).update(
        {DailyTask.weekly_goal_id: None}, synchronize_session=False
    )
    db.query(RecurringTaskTemplate).filter(RecurringTaskTemplate.weekly_goal_id.in_(ids)).update(
        {RecurringTaskTemplate.weekly_goal_id: None}, synchronize_session=False
    )
    db.expire_all()
    # expire → las relaciones tasks/children se recargan ya desvinculadas

    db.delete(goal)
    db.commit()
    logger.info(f"🗑️ {user.email} borra objetivo {ids[0]} y {len(ids) - 1} descendientes")
    return len(ids)


def unlinked_weekly_goals(db: Session, user: User) -> list[Goal]:
    """Objetivos semanales sin objetivo mensual por encima"""
    return db.query(Goal).filter(
        Goal.user_id == user.id,
        Goal.level == GoalLevel.weekly.value,
        Goal.parent_id.is_(None),
        Goal.status != GoalStatus.ARCHIVED.value
    ).order_by(Goal.week_start.desc()).all()


def create_cascade(db: Session, user: User, data) -> tuple[list[Goal], list]:
    """
    Crea una cadena de objetivos de golpe, cada uno hijo del anterior.
    Ej: vision → three_year → one_year. Todo o nada: un solo commit.
    """
    parent = None
    if data.parent_id is not None:
        parent = get_user_goal(db, user, data.parent_id)

    created = []
    for i, step in enumerate(data.steps):
        level = GoalLevel(step.level)

        if parent is None:
            if level not in (GoalLevel.vision, GoalLevel.weekly):
                raise HTTPException(
                    status_code=400,
                    detail=f"La cascada no puede empezar en {level.value} sin un objetivo padre"
                )
        elif CHILD_LEVEL.get(GoalLevel(parent.level)) != level:
            raise HTTPException(
                status_code=400,
                detail=f"Paso {i + 1}: después de {parent.level} va {CHILD_LEVEL.get(GoalLevel(parent.level), 'nada')}, no {level.value}"
            )

        target_month, week_start_day = normalize_dates(level, step.target_month, step.week_start)
        goal = Goal(
            user_id=user.id,
            parent=parent,
            level=level.value,
            title=step.title,
            description=step.description,
            category=data.category.value,
            target_date=step.target_date,
            target_month=target_month,
            week_start=week_start_day,
        )
        db.add(goal)
        created.append(goal)
        parent = goal

    badges = check_badges(db, user, {"goal_changed": True})
    db.commit()
    logger.info(f"🌊 {user.email} crea una cascada de {len(created)} objetivos")
    return created, badges


# =============================================================================
# ===================== JERARQUÍA =============================================
# =============================================================================

TASKS_PER_WEEKLY_GOAL = 10


def _goal_node(goal: Goal) -> dict:
    return {
        "id": f"goal-{goal.id}",
        "goal_id": goal.id,
        "title": goal.title,
        "level": goal.level,
        "category": goal.category,
        "status": goal.status,
        "progress": goal.progress or 0,
        "parent_id": f"goal-{goal.parent_id}" if goal.parent_id else None,
        "children_count": 0,
        "completed_count": 0,
        "children": [],
    }


def _task_node(task: DailyTask, goal: Goal) -> dict:
    done = task.status == TaskStatus.COMPLETED.value
    return {
        "id": f"task-{task.id}",
        "task_id": task.id,
        "title": task.title,
        "level": "task",
        "category": goal.category,
        "status": GoalStatus.COMPLETED.value if done else GoalStatus.ACTIVE.value,
        "progress": 100 if done else 0,
        "parent_id": f"goal-{goal.id}",
        "children_count": 0,
        "completed_count": 0,
        "children": [],
    }


def build_hierarchy(db: Session, user: User, include_tasks: bool = False,
                    status_filter: Optional[str] = None) -> dict:
    """
    Árbol completo desde las visiones. Una consulta para los objetivos y
    (si include_tasks) una para las tareas; el árbol se monta en memoria.
    status_filter se aplica solo a las visiones (la raíz).
    """
    goals = db.query(Goal).filter(Goal.user_id == user.id).order_by(Goal.created_at.desc(), Goal.id.desc()).all()

    nodes = {g.id: _goal_node(g) for g in goals}
    by_id = {g.id: g for g in goals}
    roots = []
    for goal in goals:
        node = nodes[goal.id]
        if goal.parent_id is None:
            if goal.level == GoalLevel.vision.value:
                if status_filter is None or goal.status == status_filter:
                    roots.append(node)
            continue
        parent_node = nodes.get(goal.parent_id)
        if parent_node is not None:
            parent_node["children"].append(node)

    for goal in goals:
        node = nodes[goal.id]
        if goal.level == GoalLevel.weekly.value:
            continue
        node["children_count"] = len(node["children"])
        node["completed_count"] = sum(1 for c in node["children"] if c["status"] == GoalStatus.COMPLETED.value)

    total_tasks = 0
    weekly_ids = [g.id for g in goals if g.level == GoalLevel.weekly.value]
    if weekly_ids:
        tasks = db.query(DailyTask).filter(
            DailyTask.user_id == user.id,
            DailyTask.weekly_goal_id.in_(weekly_ids)
        ).order_by(DailyTask.scheduled_date.desc(), DailyTask.id.desc()).all()

        per_goal = {}
        for task in tasks:
            per_goal.setdefault(task.weekly_goal_id, []).append(task)

        for goal_id, goal_tasks in per_goal.items():
            node = nodes[goal_id]
            node["children_count"] = len(goal_tasks)
            node["completed_count"] = sum(1 for t in goal_tasks if t.status == TaskStatus.COMPLETED.value)
            if include_tasks:
                shown = goal_tasks[:TASKS_PER_WEEKLY_GOAL]
                node["children"] = [_task_node(t, by_id[goal_id]) for t in shown]
                total_tasks += len(shown)

    return {
        "visions": roots,
        "stats": {
            "total_visions": len(roots),
            "total_goals": len(goals),
            "total_tasks": total_tasks,
        },
    }


# =============================================================================
# ===================== MAPA MENTAL ===========================================
# =============================================================================

NODE_DIMENSIONS = {
    GoalLevel.vision.value: (220, 100),
    GoalLevel.three_year.value: (200, 90),
    GoalLevel.one_year.value: (180, 80),
    GoalLevel.monthly.value: (160, 70),
    GoalLevel.weekly.value: (150, 65),
    "task": (140, 60),
}
# (ancho, alto) en píxeles

LAYOUT_CONFIG = {
    "horizontal": {"nodesep": 40, "ranksep": 100},
    "vertical": {"nodesep": 30, "ranksep": 80},
}
# nodesep → hueco entre hermanos; ranksep → hueco entre capas


def initial_collapsed(tree: list[dict]) -> set:
    """Plegados de inicio: nodos con hijos a profundidad ≥ 2"""
    collapsed = set()

    def walk(node, depth):
        if depth >= 2 and node.get("children"):
            collapsed.add(node["id"])
        for child in node.get("children", []):
            walk(child, depth + 1)

    for root in tree:
        walk(root, 0)
    return collapsed


def build_mind_map(tree: list[dict], collapsed: Optional[set] = None,
                   direction: str = "horizontal", include_tasks: bool = False) -> dict:
    """
    Nodos y aristas listos para dibujar.

    - Los hijos de un nodo plegado no aparecen.
    - Las tareas solo aparecen con include_tasks.
    - Arista "animated" si el hijo está ACTIVE.
    - position = esquina superior izquierda del nodo.
    """
    if direction not in LAYOUT_CONFIG:
        raise ValueError(f"Dirección no válida: {direction}")
    collapsed = collapsed or set()
    config = LAYOUT_CONFIG[direction]

    nodes, edges = [], []
    visible_children = {}

    def visit(node, depth, parent_id):
        if node["level"] == "task" and not include_tasks:
            return None
        is_collapsed = node["id"] in collapsed
        width, height = NODE_DIMENSIONS[node["level"]]
        entry = {
            "id": node["id"],
            "level": node["level"],
            "title": node["title"],
            "category": node.get("category"),
            "status": node.get("status"),
            "progress": node.get("progress", 0),
            "children_count": node.get("children_count", 0),
            "completed_count": node.get("completed_count", 0),
            "depth": depth,
            "is_collapsed": is_collapsed,
            "width": width,
            "height": height,
            "position": {"x": 0, "y": 0},
        }
        nodes.append(entry)
        if parent_id is not None:
            edges.append({
                "id": f"{parent_id}-{node['id']}",
                "source": parent_id,
                "target": node["id"],
                "animated": node.get("status") == GoalStatus.ACTIVE.value,
            })

        kids = []
        if not is_collapsed:
            for child in node.get("children", []):
                child_entry = visit(child, depth + 1, node["id"])
                if child_entry is not None:
                    kids.append(child_entry)
        visible_children[node["id"]] = kids
        return entry

    roots = [e for e in (visit(r, 0, None) for r in tree) if e is not None]
    _layout(roots, nodes, visible_children, direction, config)
    return {"nodes": nodes, "edges": edges}


def _layout(roots, nodes, visible_children, direction, config):
    """Layout por capas: profundidad en un eje, hojas repartidas en el otro"""
    horizontal = direction == "horizontal"

    # Tamaño de cada capa en el eje de profundidad
    rank_size = {}
    for node in nodes:
        size = node["width"] if horizontal else node["height"]
        rank_size[node["depth"]] = max(rank_size.get(node["depth"], 0), size)
    rank_center = {}
    offset = 0
    for depth in sorted(rank_size):
        rank_center[depth] = offset + rank_size[depth] / 2
        offset += rank_size[depth] + config["ranksep"]

    # Hueco de cada hoja en el eje de los hermanos
    slot = max(((n["height"] if horizontal else n["width"]) for n in nodes), default=0) + config["nodesep"]

    leaf_cache = {}

    def leaves(entry):
        if entry["id"] not in leaf_cache:
            kids = visible_children.get(entry["id"], [])
            leaf_cache[entry["id"]] = sum(leaves(k) for k in kids) if kids else 1
        return leaf_cache[entry["id"]]

    def place(entry, first_slot):
        kids = sorted(visible_children.get(entry["id"], []), key=leaves, reverse=True)
        span = leaves(entry)
        center_cross = (first_slot + span / 2) * slot
        center_rank = rank_center[entry["depth"]]

        if horizontal:
            entry["position"] = {"x": center_rank - entry["width"] / 2,
                                 "y": center_cross - entry["height"] / 2}
        else:
            entry["position"] = {"x": center_cross - entry["width"] / 2,
                                 "y": center_rank - entry["height"] / 2}

        cursor = first_slot
        for kid in kids:
            place(kid, cursor)
            cursor += leaves(kid)

    cursor = 0
    for root in roots:
        place(root, cursor)
        cursor += leaves(root)
