"""
Modèle du manifeste de simulation et codec JSON.

Un manifeste décrit les objets simulés, leurs propriétés physiques, les paramètres ajustables et
l'environnement. Les modèles sont figés (`frozen`): un manifeste validé n'est jamais muté.

Le codec garantit l'aller-retour: `parse_manifest(dump_manifest(m)) == m`, indépendamment de
l'ordre des champs ou du formatage (forme canonique: clés triées, séparateurs compacts).
"""

from __future__ import annotations

import json
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

Vec3 = tuple[float, float, float]

MANIFEST_VERSION = "1.0"


class PhysicsType(str, Enum):
    """Familles de scénarios supportées par le client de rendu."""

    PROJECTILE = "projectile"
    PENDULUM = "pendulum"
    COLLISION = "collision"
    ORBITAL = "orbital"
    SPRING = "spring"
    ELECTROSTATICS = "electrostatics"
    CIRCUIT = "circuit"
    WAVE = "wave"
    OPTICS = "optics"
    FLUID = "fluid"
    THERMODYNAMICS = "thermodynamics"
    RIGID_BODY = "rigid_body"


class GeometryType(str, Enum):
    """Type de géométrie d'un objet simulé."""

    SPHERE = "sphere"
    BOX = "box"
    CYLINDER = "cylinder"
    PLANE = "plane"
    MESH = "mesh"
    PARTICLE_SYSTEM = "particle_system"
    POINT_PARTICLE = "point_particle"


class ParameterType(str, Enum):
    FLOAT = "float"
    INT = "int"
    BOOL = "bool"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Material(_Frozen):
    """Apparence d'un objet (couleur, texture optionnelle, preset)."""

    color: str | None = None
    texture_path: str | None = None
    preset: str | None = None


class PhysicsProperties(_Frozen):
    """Propriétés physiques d'un objet (unités SI)."""

    mass: float = 1.0
    velocity: Vec3 = (0.0, 0.0, 0.0)
    charge: float = 0.0
    voltage: float | None = None
    is_static: bool = False
    restitution: float = 0.5
    friction: float = 0.5


class SimObject(_Frozen):
    """Objet simulé: géométrie, référence d'asset, transformation, physique."""

    id: str
    type: GeometryType
    asset_path: str | None = None
    material: Material | None = None
    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Vec3 = (0.0, 0.0, 0.0)
    scale: Vec3 = (1.0, 1.0, 1.0)
    physics: PhysicsProperties = Field(default_factory=PhysicsProperties)


class Parameter(_Frozen):
    """Paramètre ajustable exposé au client (curseur, case à cocher)."""

    name: str
    type: ParameterType = ParameterType.FLOAT
    default: float | int | bool
    min: float | None = None
    max: float | None = None
    unit: str | None = None


class Environment(_Frozen):
    gravity: Vec3 = (0.0, -9.81, 0.0)
    damping: float = 0.0
    time_scale: float = 1.0


class Manifest(_Frozen):
    """Document versionné décrivant une simulation prête à être rendue."""

    version: str = MANIFEST_VERSION
    physics_type: PhysicsType
    title: str | None = None
    description: str | None = None
    objects: tuple[SimObject, ...] = ()
    parameters: tuple[Parameter, ...] = ()
    environment: Environment | None = None


def dump_manifest(manifest: Manifest, canonical: bool = True) -> str:
    """Sérialise un manifeste en JSON.

    La forme canonique trie les clés et supprime les espaces, ce qui la rend stable pour le
    hachage et les comparaisons textuelles.
    """
    data = manifest.model_dump(mode="json")
    if canonical:
        return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return json.dumps(data, indent=2, ensure_ascii=False)


def parse_manifest(raw: str | bytes) -> Manifest:
    """Désérialise un manifeste JSON (sans sanitation: réservé aux manifestes déjà validés)."""
    return Manifest.model_validate_json(raw)
