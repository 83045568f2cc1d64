"""Client de génération pour un backend HTTP interne (modèle auto-hébergé).

Contrat du service: `POST {GENERATION_URL}/v1/manifests` avec
`{"text", "image_base64", "hint"}`; réponse `{"manifest": {...}, "confidence": float|null}`.
"""

from __future__ import annotations

import base64

import httpx
import structlog

from physim.domain.errors import GenerationError
from physim.infra.generation.base import GenerationClient, GenerationResult
from physim.infra.upstream import classify_exception, kind_for_status


class HttpGenerationClient(GenerationClient):
    """Client httpx avec timeouts stricts; aucun retry local."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_s: float = 4.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("GENERATION_URL is required for GENERATION_PROVIDER=http")
        self.base_url = base_url.rstrip("/")
        self._log = structlog.get_logger(__name__).bind(component="http_generation_client")
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 2.0))
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        self._client = client or httpx.Client(headers=headers, timeout=timeout, limits=limits)

    def generate(
        self,
        text: str | None = None,
        image: bytes | None = None,
        hint: str | None = None,
    ) -> GenerationResult:
        body = {
            "text": text,
            "image_base64": base64.b64encode(image).decode("ascii") if image else None,
            "hint": hint,
        }
        try:
            resp = self._client.post(f"{self.base_url}/v1/manifests", json=body)
        except httpx.HTTPError as exc:
            raise classify_exception(exc) from exc
        kind = kind_for_status(resp.status_code)
        if kind is not None:
            self._log.info("generation_http_error", status=resp.status_code, kind=kind.value)
            raise GenerationError(kind, f"upstream status {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            return GenerationResult(manifest=resp.text)
        if not isinstance(data, dict):
            return GenerationResult(manifest=data)
        confidence = data.get("confidence")
        return GenerationResult(
            manifest=data.get("manifest", data),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        )
