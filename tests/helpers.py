"""Helpers para los tests: cliente de IA falso y constructores de filas."""

import json
from datetime import date
from types import SimpleNamespace

from models import DailyTask, RecurringTaskTemplate


# =============================================================================
# IA FALSA
# =============================================================================


class FakeCompletions:
    """Imita client.chat.completions: devuelve `reply` y guarda cada llamada."""

    def __init__(self):
        self.reply = {"suggestions": []}
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        content = self.reply if isinstance(self.reply, str) else json.dumps(self.reply)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=34),
        )


class FakeAIClient:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


# =============================================================================
# HTTP
# =============================================================================


def register(client, email="ana@example.com", timezone="UTC", name="Ana") -> dict:
    """Registra un usuario y devuelve las cabeceras de autenticación."""
    response = client.post("/auth/register", json={
        "email": email,
        "password": "contraseña-segura",
        "name": name,
        "timezone": timezone,
    })
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def create_goal(client, headers, **payload) -> dict:
    response = client.post("/goals", json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]["goal"]


def create_task(client, headers, **payload) -> dict:
    payload.setdefault("title", "Tarea")
    response = client.post("/tasks", json=payload, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]


# =============================================================================
# FILAS DIRECTAS
# =============================================================================


def make_template(db, user, **overrides) -> RecurringTaskTemplate:
    values = {
        "user_id": user.id,
        "title": "Leer 20 minutos",
        "priority": "SECONDARY",
        "pattern": "DAILY",
        "start_date": date(2024, 1, 1),
        "is_active": True,
    }
    values.update(overrides)
    template = RecurringTaskTemplate(**values)
    db.add(template)
    db.commit()
    return template


def make_task(db, user, **overrides) -> DailyTask:
    values = {
        "user_id": user.id,
        "title": "Tarea",
        "priority": "SECONDARY",
        "status": "PENDING",
        "scheduled_date": date(2024, 1, 15),
        "points_earned": 0,
    }
    values.update(overrides)
    task = DailyTask(**values)
    db.add(task)
    db.commit()
    return task
