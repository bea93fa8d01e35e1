"""
=============================================================================
AI.PY - Asistente de Objetivos (OpenAI)
=============================================================================
Dos ayudas:
  - suggest_cascade → parte un objetivo en piezas del nivel de abajo
  - sharpen_goal    → reescribe un objetivo vago en formato SMART

El cliente de OpenAI se crea en create_app() y vive en app.state.ai_client
(None si no hay OPENAI_API_KEY). GoalCoach lo recibe ya hecho: en los tests
se le pasa uno falso.

Límite diario: se CUENTAN las filas de ai_interactions del día (UTC).
Esa cuenta es la única fuente de verdad.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Optional

import openai
from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from config import Settings
from models import AIInteraction, GoalLevel, User

logger = logging.getLogger("cascada.ai")


def build_ai_client(settings: Settings):
    """openai.OpenAI o None si no hay clave"""
    if not settings.openai_api_key:
        logger.warning("⚠️ OPENAI_API_KEY no configurada: la IA queda desactivada")
        return None
    return openai.OpenAI(api_key=settings.openai_api_key)


# =============================================================================
# ===================== LÍMITE DIARIO =========================================
# =============================================================================

def ai_usage(db: Session, user: User, daily_limit: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    day_start = datetime(now.year, now.month, now.day)
    used = db.query(AIInteraction).filter(
        AIInteraction.user_id == user.id,
        AIInteraction.created_at >= day_start
    ).count()
    return {
        "used": used,
        "limit": daily_limit,
        "remaining": max(daily_limit - used, 0),
        "resets_at": (day_start + timedelta(days=1)).isoformat() + "Z",
    }


def check_ai_limit(db: Session, user: User, daily_limit: int, now: Optional[datetime] = None) -> dict:
    usage = ai_usage(db, user, daily_limit, now)
    if usage["remaining"] <= 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Límite diario de IA alcanzado. Vuelve a intentarlo mañana."
        )
    return usage


# =============================================================================
# ===================== PROMPTS ===============================================
# =============================================================================

CASCADE_CHILDREN = {
    GoalLevel.vision.value: ("objetivos a 3 años", 3),
    GoalLevel.three_year.value: ("objetivos a 1 año", 3),
    GoalLevel.one_year.value: ("objetivos mensuales", 3),
    GoalLevel.monthly.value: ("objetivos semanales", 4),
    GoalLevel.weekly.value: ("tareas diarias", 5),
}

CASCADE_SYSTEM_PROMPT = """Eres un experto en fijar objetivos. Ayudas a partir un objetivo
en piezas más pequeñas y accionables.

Reglas:
- Cada pieza es concreta y medible
- Entre todas cubren el alcance del objetivo padre
- Lenguaje de acción, títulos de menos de 60 caracteres
- Tareas: se completan en un día. Semanales: en una semana. Mensuales: en un mes.

Responde SOLO con JSON: {"suggestions": [{"title": "...", "description": "..."}]}"""

SHARPEN_SYSTEM_PROMPT = """Eres un coach experto en el método SMART. Conviertes objetivos vagos
en objetivos específicos, medibles, alcanzables, relevantes y con plazo.

Responde SOLO con JSON con esta forma:
{
  "sharpened_title": "título corto y accionable (máx. 100 caracteres)",
  "description": "descripción con criterios de éxito claros (2-3 frases)",
  "measurable_outcomes": ["resultado 1", "resultado 2", "resultado 3"],
  "suggested_timeframe": "ej. '90 días'",
  "first_step": "la próxima acción, hecha en 24-48 horas"
}

Mantén la esencia del objetivo original."""

SHARPEN_FIELDS = ["sharpened_title", "description", "measurable_outcomes", "suggested_timeframe", "first_step"]


# =============================================================================
# ===================== COACH =================================================
# =============================================================================

class GoalCoach:
    """Envuelve el cliente de OpenAI. Cada llamada devuelve (datos, meta) y meta va a log_interaction()"""

    def __init__(self, client, model: str):
        self.client = client
        self.model = model

    def _ask(self, system_prompt: str, user_prompt: str) -> tuple[dict, dict]:
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except openai.OpenAIError as e:
            logger.error(f"❌ Error llamando a OpenAI: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="El servicio de IA no responde")

        content = completion.choices[0].message.content or ""
        usage = getattr(completion, "usage", None)
        meta = {
            "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "raw": content,
        }

        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.error(f"❌ Respuesta de IA no es JSON: {content[:200]}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="No se pudo leer la respuesta de la IA")
        if not isinstance(data, dict):
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="No se pudo leer la respuesta de la IA")
        return data, meta

    def suggest_cascade(self, parent_title: str, parent_description: Optional[str],
                        parent_level: str) -> tuple[list[dict], dict]:
        if parent_level not in CASCADE_CHILDREN:
            raise HTTPException(status_code=400, detail=f"Nivel no válido: {parent_level}")
        child_name, count = CASCADE_CHILDREN[parent_level]

        prompt = f"Parte este objetivo en {count} {child_name}:\n\nObjetivo: {parent_title}"
        if parent_description:
            prompt += f"\nDescripción: {parent_description}"

        data, meta = self._ask(CASCADE_SYSTEM_PROMPT, prompt)
        raw = data.get("suggestions")
        if not isinstance(raw, list):
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="No se pudo leer la respuesta de la IA")

        suggestions = []
        for item in raw:
            if not isinstance(item, dict) or not isinstance(item.get("title"), str) or not item["title"].strip():
                continue
            description = item.get("description")
            suggestions.append({
                "title": item["title"].strip()[:100],
                "description": description.strip()[:300] if isinstance(description, str) else None,
            })
        meta["prompt"] = prompt
        return suggestions[:10], meta

    def sharpen_goal(self, title: str, description: Optional[str] = None) -> tuple[dict, dict]:
        prompt = f'Afila este objetivo: "{title}"'
        if description:
            prompt += f"\n\nContexto: {description}"

        data, meta = self._ask(SHARPEN_SYSTEM_PROMPT, prompt)
        missing = [f for f in SHARPEN_FIELDS if f not in data]
        if missing or not isinstance(data.get("measurable_outcomes"), list):
            logger.error(f"❌ Respuesta SMART incompleta, faltan: {missing}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="No se pudo leer la respuesta de la IA")

        meta["prompt"] = prompt
        return {field: data[field] for field in SHARPEN_FIELDS}, meta


def log_interaction(db: Session, user: User, interaction_type: str, model: str, meta: dict) -> AIInteraction:
    """Guarda la llamada. Es lo que cuenta para el límite diario. Con commit."""
    row = AIInteraction(
        user_id=user.id,
        type=interaction_type,
        model=model,
        input_tokens=meta.get("input_tokens", 0),
        output_tokens=meta.get("output_tokens", 0),
        prompt=meta.get("prompt"),
        response=meta.get("raw"),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.commit()
    logger.info(f"🤖 {user.email} usa la IA ({interaction_type}, {row.input_tokens}+{row.output_tokens} tokens)")
    return row
