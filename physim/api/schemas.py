# Schémas Pydantic exposés par l'API (requêtes et réponses).

from typing import Any, Literal

from pydantic import BaseModel, Field


class SimulationRequest(BaseModel):
    """Requête de génération de simulation.

    Champs:
    - text: str | None (description du scénario)
    - image_base64: str | None (photo ou schéma encodé en base64)
    - hint: str | None (précision facultative, ex. "vue de dessus")
    - user_id: str (destinataire des notifications de job)

    Exactement un de `text` / `image_base64` doit être fourni; le contrôle est fait par
    l'orchestrateur pour produire une erreur d'entrée homogène.
    """

    text: str | None = None
    image_base64: str | None = None
    hint: str | None = Field(default=None, max_length=500)
    user_id: str = "anonymous"


class FeaturedItem(BaseModel):
    id: str
    title: str
    physics_type: str
    manifest: dict[str, Any]


class SimulationResponse(BaseModel):
    """Réponse de `POST /v1/simulations`.

    Champs selon `status`:
    - ready: manifest, hit (servi depuis le cache ou non)
    - pending: job_id (génération asynchrone, suivre via `/v1/jobs/{job_id}`)
    - fallback: featured (simulations mises en avant), message
    - clarification: message, confidence
    """

    status: Literal["ready", "pending", "fallback", "clarification"]
    manifest: dict[str, Any] | None = None
    hit: bool | None = None
    job_id: str | None = None
    featured: list[FeaturedItem] | None = None
    message: str | None = None
    confidence: float | None = None


class JobResponse(BaseModel):
    """Réponse de `GET /v1/jobs/{job_id}`.

    Un job `ready` porte soit `manifest`, soit `clarification` (image trop ambiguë: pas de
    manifeste, l'utilisateur est invité à préciser sa demande).
    """

    job_id: str
    status: Literal["pending", "processing", "ready", "failed"]
    manifest: dict[str, Any] | None = None
    error: str | None = None
    confidence: float | None = None
    clarification: str | None = None


class DeadLetterItem(BaseModel):
    """Enregistrement dead-letter (vue opérateur, sans le contenu de la requête)."""

    job_id: str
    owner: str
    reason: str
    detail: str
    attempts: int
    created_at: float
    dead_lettered_at: float


class DeadLetterList(BaseModel):
    items: list[DeadLetterItem]
    count: int
