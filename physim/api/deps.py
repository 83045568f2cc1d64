"""Dépendances partagées pour les routes de l'API.

Les routes reçoivent le conteneur via `Depends(get_container)`; les tests remplacent cette
dépendance (`app.dependency_overrides`) par un conteneur construit sur des fakes.
"""

from __future__ import annotations

import hmac

from fastapi import Depends, Header

from physim.api.errors import APIError
from physim.core.container import Container, container


def get_container() -> Container:
    return container


def require_admin(
    x_admin_token: str | None = Header(default=None),
    c: Container = Depends(get_container),  # noqa: B008
) -> None:
    """Garde des routes opérateur: en-tête `X-Admin-Token` égal à `ADMIN_TOKEN`."""
    expected = c.settings.ADMIN_TOKEN
    if not expected:
        raise APIError(403, "FORBIDDEN", "Admin routes are disabled.")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise APIError(401, "UNAUTHORIZED", "Missing or invalid admin token.")
