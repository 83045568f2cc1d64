"""
Client de génération basé sur l'API OpenAI (chat.completions en mode JSON).

- texte: un message système décrivant le format du manifeste et un message utilisateur;
- image: le contenu est joint en data-URI et le modèle renvoie en plus une clé `confidence`;
- toute exception du SDK est convertie en `GenerationError` classifiée.
"""

from __future__ import annotations

import base64
import json
from typing import Any

import openai
from openai import OpenAI

from physim.infra.generation.base import GenerationClient, GenerationResult
from physim.infra.generation.prompts import IMAGE_ADDENDUM, SYSTEM_PROMPT, user_content
from physim.infra.upstream import classify_exception


def split_confidence(payload: Any) -> tuple[Any, float | None]:
    """Sépare la clé `confidence` du manifeste produit (si présente et numérique)."""
    if not isinstance(payload, dict) or "confidence" not in payload:
        return payload, None
    payload = dict(payload)
    raw = payload.pop("confidence")
    try:
        confidence = float(raw)
    except (TypeError, ValueError):
        return payload, None
    return payload, min(1.0, max(0.0, confidence))


def decode_content(content: str | None) -> Any:
    """Décode le JSON renvoyé par le modèle; retourne le texte brut s'il n'est pas décodable."""
    if not content:
        return ""
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return content


class OpenAIGenerationClient(GenerationClient):
    """Génération de manifestes via OpenAI, timeout dur par appel et aucun retry SDK."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        timeout_s: float = 4.0,
        client: OpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ValueError("OPENAI_API_KEY is required for GENERATION_PROVIDER=openai")
        self.model = model
        self.client = client or OpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)

    def _messages(
        self, text: str | None, image: bytes | None, hint: str | None
    ) -> list[dict[str, Any]]:
        system = SYSTEM_PROMPT if image is None else f"{SYSTEM_PROMPT}\n{IMAGE_ADDENDUM}"
        prompt = user_content(text, hint)
        if image is None:
            user: dict[str, Any] = {"role": "user", "content": prompt}
        else:
            data_uri = "data:image/png;base64," + base64.b64encode(image).decode("ascii")
            user = {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_uri}},
                ],
            }
        return [{"role": "system", "content": system}, user]

    def generate(
        self,
        text: str | None = None,
        image: bytes | None = None,
        hint: str | None = None,
    ) -> GenerationResult:
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(text, image, hint),
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except (openai.OpenAIError, TimeoutError) as exc:
            raise classify_exception(exc) from exc
        content = resp.choices[0].message.content if resp.choices else None
        payload, confidence = split_confidence(decode_content(content))
        return GenerationResult(manifest=payload, confidence=confidence if image else None)
