"""Vérification d'existence des assets référencés par les manifestes.

Les références `builtin://` désignent les assets embarqués par le client de rendu et existent
toujours. Les autres chemins sont résolus relativement à `ASSETS_ROOT`.
"""

from __future__ import annotations

import os
from typing import Protocol

BUILTIN_PREFIX = "builtin://"


class AssetLookup(Protocol):
    def exists(self, path: str) -> bool:
        """Indique si l'asset référencé est disponible."""


class FilesystemAssetLookup:
    """Résout les assets sur un répertoire local (miroir du CDN en dev/tests)."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)

    def exists(self, path: str) -> bool:
        if not path:
            return False
        if path.startswith(BUILTIN_PREFIX):
            return True
        candidate = os.path.abspath(os.path.join(self.root, path.lstrip("/")))
        # chemins sortant de la racine (../) refusés
        if os.path.commonpath([candidate, self.root]) != self.root:
            return False
        return os.path.isfile(candidate)


class StaticAssetLookup:
    """Lookup sur un ensemble connu de chemins (catalogue pré-chargé)."""

    def __init__(self, paths: set[str] | None = None) -> None:
        self._paths = set(paths or ())

    def exists(self, path: str) -> bool:
        return bool(path) and (path.startswith(BUILTIN_PREFIX) or path in self._paths)
