"""
Validation et sanitation des manifestes produits par le backend de génération.

Règles appliquées dans l'ordre, en collectant tous les défauts au lieu de s'arrêter au premier:

1. présence des champs requis (`version`, `physics_type`, `objects`, `parameters`): fatal;
2. existence des assets: les références manquantes sont remplacées par un défaut adapté au type
   (mesh → sphère, texture → matériau neutre, système de particules → particule ponctuelle),
   avec un avertissement, sans jamais invalider le manifeste;
3. bornes numériques: valeurs hors plage ramenées à la borne la plus proche, un avertissement
   par clamp;
4. `physics_type` dans l'énumération fixe: fatal sinon.

Le validateur n'a aucun effet de bord hors émission des événements de diagnostic; la persistance
reste à la charge de l'appelant.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from physim.domain.errors import ValidationFailedError
from physim.domain.manifest import GeometryType, Manifest, ParameterType, PhysicsType
from physim.infra.assets import AssetLookup
from physim.infra.events import EventSink, NullEventSink

REQUIRED_FIELDS = ("version", "physics_type", "objects", "parameters")

MASS_RANGE = (0.001, 10_000.0)
CHARGE_RANGE = (-1_000.0, 1_000.0)
VOLTAGE_RANGE = (0.0, 10_000.0)
UNIT_RANGE = (0.0, 1.0)
SCALE_RANGE = (0.001, 1_000.0)
POSITION_RANGE = (-10_000.0, 10_000.0)
GRAVITY_RANGE = (-100.0, 100.0)
TIME_SCALE_RANGE = (0.01, 10.0)
SPEED_OF_LIGHT = 299_792_458.0
# strictement sous la vitesse de la lumière
MAX_SPEED = SPEED_OF_LIGHT - 1.0

SPHERE_ASSET = "builtin://meshes/sphere"
NEUTRAL_MATERIAL = "builtin://materials/neutral"
POINT_PARTICLE_ASSET = "builtin://particles/point"
DEFAULT_ASSETS: dict[GeometryType, str] = {
    GeometryType.MESH: SPHERE_ASSET,
    GeometryType.PARTICLE_SYSTEM: POINT_PARTICLE_ASSET,
    GeometryType.SPHERE: SPHERE_ASSET,
    GeometryType.BOX: "builtin://meshes/box",
    GeometryType.CYLINDER: "builtin://meshes/cylinder",
    GeometryType.PLANE: "builtin://meshes/plane",
    GeometryType.POINT_PARTICLE: POINT_PARTICLE_ASSET,
}
# géométrie de remplacement quand l'asset d'origine est introuvable
FALLBACK_GEOMETRY: dict[GeometryType, GeometryType] = {
    GeometryType.MESH: GeometryType.SPHERE,
    GeometryType.PARTICLE_SYSTEM: GeometryType.POINT_PARTICLE,
}


@dataclass(frozen=True)
class Issue:
    """Diagnostic de validation localisé (`path` au format `objects[0].physics.mass`)."""

    code: str
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


@dataclass
class ValidationResult:
    valid: bool
    manifest: Manifest | None
    warnings: list[Issue] = field(default_factory=list)
    errors: list[Issue] = field(default_factory=list)

    def raise_for_errors(self) -> Manifest:
        """Retourne le manifeste validé, ou lève `ValidationFailedError`."""
        if not self.valid or self.manifest is None:
            raise ValidationFailedError([str(e) for e in self.errors])
        return self.manifest


class _Collector:
    def __init__(self) -> None:
        self.warnings: list[Issue] = []
        self.errors: list[Issue] = []

    def warn(self, code: str, path: str, message: str) -> None:
        self.warnings.append(Issue(code, path, message))

    def error(self, code: str, path: str, message: str) -> None:
        self.errors.append(Issue(code, path, message))

    def number(self, value: Any, path: str) -> float | None:
        if isinstance(value, bool) or not isinstance(value, int | float):
            self.error("type", path, f"expected a number, got {type(value).__name__}")
            return None
        if not math.isfinite(value):
            self.error("not_finite", path, "value must be finite")
            return None
        return float(value)

    def clamp(self, value: Any, path: str, bounds: tuple[float, float]) -> float | None:
        num = self.number(value, path)
        if num is None:
            return None
        lo, hi = bounds
        if num < lo or num > hi:
            clamped = min(max(num, lo), hi)
            self.warn("clamped", path, f"{num} outside [{lo}, {hi}], clamped to {clamped}")
            return clamped
        return num

    def triple(
        self, value: Any, path: str, bounds: tuple[float, float] | None = None
    ) -> list[float] | None:
        if not isinstance(value, list | tuple) or len(value) != 3:  # noqa: PLR2004
            self.error("type", path, "expected a list of 3 numbers")
            return None
        out: list[float] = []
        for i, v in enumerate(value):
            p = f"{path}[{i}]"
            num = self.clamp(v, p, bounds) if bounds else self.number(v, p)
            if num is None:
                return None
            out.append(num)
        return out


class ManifestValidator:
    """Valide et assainit un manifeste brut (dict ou JSON)."""

    def __init__(self, assets: AssetLookup, events: EventSink | None = None) -> None:
        self.assets = assets
        self.events = events or NullEventSink()

    def validate(self, raw: Any) -> ValidationResult:
        """Retourne le manifeste assaini et ses diagnostics.

        Args:
            raw: dict, ou chaîne/bytes JSON, tel que produit par le client de génération.

        Returns:
            ValidationResult: `valid` à False dès qu'une erreur fatale a été collectée.
        """
        col = _Collector()
        data = self._decode(raw, col)
        manifest: Manifest | None = None
        if data is not None:
            for name in REQUIRED_FIELDS:
                if name not in data or data[name] is None:
                    col.error("missing_field", name, f"required field '{name}' is missing")
            sanitized = dict(data)
            if isinstance(data.get("objects"), list):
                sanitized["objects"] = self._objects(data["objects"], col)
            elif "objects" in data:
                col.error("type", "objects", "expected a list of objects")
            if isinstance(data.get("parameters"), list):
                sanitized["parameters"] = self._parameters(data["parameters"], col)
            elif "parameters" in data:
                col.error("type", "parameters", "expected a list of parameters")
            if data.get("environment") is not None:
                sanitized["environment"] = self._environment(data["environment"], col)
            self._physics_type(data.get("physics_type"), col)
            if "version" in data and not isinstance(data["version"], str):
                sanitized["version"] = str(data["version"])
            if not col.errors:
                manifest = self._build(sanitized, col)
        self._emit(col)
        valid = not col.errors
        return ValidationResult(
            valid=valid,
            manifest=manifest if valid else None,
            warnings=col.warnings,
            errors=col.errors,
        )

    # -------------------- Règles --------------------

    def _decode(self, raw: Any, col: _Collector) -> dict | None:
        if isinstance(raw, Manifest):
            return raw.model_dump(mode="json")
        if isinstance(raw, str | bytes):
            try:
                raw = json.loads(raw)
            except ValueError as exc:
                col.error("not_json", "", f"manifest is not valid JSON: {exc}")
                return None
        if not isinstance(raw, dict):
            col.error("type", "", "manifest must be a JSON object")
            return None
        return raw

    def _physics_type(self, value: Any, col: _Collector) -> None:
        if value is None:
            return
        try:
            PhysicsType(value)
        except ValueError:
            col.error("unknown_physics_type", "physics_type", f"unknown physics_type '{value}'")

    def _objects(self, objects: list, col: _Collector) -> list[dict]:
        seen: set[str] = set()
        out: list[dict] = []
        for i, obj in enumerate(objects):
            path = f"objects[{i}]"
            if not isinstance(obj, dict):
                col.error("type", path, "expected an object")
                continue
            obj_id = obj.get("id")
            if not isinstance(obj_id, str) or not obj_id:
                col.error("missing_field", f"{path}.id", "object id is required")
            elif obj_id in seen:
                col.error("duplicate_id", f"{path}.id", f"duplicate object id '{obj_id}'")
            else:
                seen.add(obj_id)
            out.append(self._object(obj, path, col))
        return out

    def _object(self, obj: dict, path: str, col: _Collector) -> dict:
        clean = dict(obj)
        try:
            geometry = GeometryType(obj.get("type", GeometryType.MESH.value))
        except ValueError:
            col.warn(
                "unknown_geometry",
                f"{path}.type",
                f"unknown geometry '{obj.get('type')}', using sphere",
            )
            geometry = GeometryType.SPHERE
        clean["type"] = geometry.value
        self._asset(clean, geometry, path, col)
        if isinstance(obj.get("material"), dict):
            clean["material"] = self._material(obj["material"], f"{path}.material", col)
        for name, bounds in (("position", POSITION_RANGE), ("rotation", None), ("scale", SCALE_RANGE)):
            if name in obj:
                clean[name] = col.triple(obj[name], f"{path}.{name}", bounds)
        if isinstance(obj.get("physics"), dict):
            clean["physics"] = self._physics(obj["physics"], f"{path}.physics", col)
        elif obj.get("physics") is not None:
            col.error("type", f"{path}.physics", "expected an object")
        return clean

    def _asset(self, clean: dict, geometry: GeometryType, path: str, col: _Collector) -> None:
        asset = clean.get("asset_path")
        needs_asset = geometry in FALLBACK_GEOMETRY
        if asset is None and not needs_asset:
            return
        if isinstance(asset, str) and asset and self.assets.exists(asset):
            return
        replacement_geometry = FALLBACK_GEOMETRY.get(geometry, geometry)
        replacement = DEFAULT_ASSETS[geometry]
        clean["type"] = replacement_geometry.value
        clean["asset_path"] = replacement
        col.warn(
            "asset_fallback",
            f"{path}.asset_path",
            f"asset '{asset}' not found, replaced by {replacement}",
        )

    def _material(self, material: dict, path: str, col: _Collector) -> dict:
        clean = dict(material)
        texture = material.get("texture_path")
        if texture is None or (isinstance(texture, str) and self.assets.exists(texture)):
            return clean
        clean["texture_path"] = NEUTRAL_MATERIAL
        clean["preset"] = "neutral"
        col.warn(
            "asset_fallback",
            f"{path}.texture_path",
            f"texture '{texture}' not found, replaced by neutral material",
        )
        return clean

    def _physics(self, physics: dict, path: str, col: _Collector) -> dict:
        clean = dict(physics)
        if "mass" in physics:
            clean["mass"] = col.clamp(physics["mass"], f"{path}.mass", MASS_RANGE)
        if "charge" in physics:
            clean["charge"] = col.clamp(physics["charge"], f"{path}.charge", CHARGE_RANGE)
        if physics.get("voltage") is not None:
            clean["voltage"] = col.clamp(physics["voltage"], f"{path}.voltage", VOLTAGE_RANGE)
        for name in ("restitution", "friction"):
            if name in physics:
                clean[name] = col.clamp(physics[name], f"{path}.{name}", UNIT_RANGE)
        if "is_static" in physics and not isinstance(physics["is_static"], bool):
            col.error("type", f"{path}.is_static", "expected a boolean")
        if "velocity" in physics:
            velocity = col.triple(physics["velocity"], f"{path}.velocity")
            if velocity is not None:
                speed = math.sqrt(sum(v * v for v in velocity))
                if speed > MAX_SPEED:
                    factor = MAX_SPEED / speed
                    velocity = [v * factor for v in velocity]
                    col.warn(
                        "clamped",
                        f"{path}.velocity",
                        f"speed {speed} exceeds propagation limit, clamped to {MAX_SPEED}",
                    )
            clean["velocity"] = velocity
        return clean

    def _parameters(self, params: list, col: _Collector) -> list[dict]:
        out: list[dict] = []
        for i, param in enumerate(params):
            path = f"parameters[{i}]"
            if not isinstance(param, dict):
                col.error("type", path, "expected an object")
                continue
            clean = dict(param)
            if not isinstance(param.get("name"), str) or not param.get("name"):
                col.error("missing_field", f"{path}.name", "parameter name is required")
            try:
                ptype = ParameterType(param.get("type", ParameterType.FLOAT.value))
            except ValueError:
                col.error("type", f"{path}.type", f"unknown parameter type '{param.get('type')}'")
                out.append(clean)
                continue
            if "default" not in param:
                col.error("missing_field", f"{path}.default", "parameter default is required")
                out.append(clean)
                continue
            if ptype is ParameterType.BOOL:
                if not isinstance(param["default"], bool):
                    col.error("type", f"{path}.default", "expected a boolean")
                out.append(clean)
                continue
            out.append(self._numeric_parameter(param, clean, path, col))
        return out

    def _numeric_parameter(self, param: dict, clean: dict, path: str, col: _Collector) -> dict:
        lo = col.number(param["min"], f"{path}.min") if param.get("min") is not None else None
        hi = col.number(param["max"], f"{path}.max") if param.get("max") is not None else None
        if lo is not None and hi is not None and lo > hi:
            col.warn("bounds_swapped", path, f"min {lo} > max {hi}, bounds swapped")
            lo, hi = hi, lo
            clean["min"], clean["max"] = lo, hi
        default = col.number(param["default"], f"{path}.default")
        if default is None:
            return clean
        bounds = (
            lo if lo is not None else -math.inf,
            hi if hi is not None else math.inf,
        )
        if default < bounds[0] or default > bounds[1]:
            clamped = min(max(default, bounds[0]), bounds[1])
            col.warn(
                "clamped", f"{path}.default", f"{default} outside [{lo}, {hi}], clamped to {clamped}"
            )
            default = clamped
        if isinstance(param["default"], int) and default == int(default):
            clean["default"] = int(default)
        else:
            clean["default"] = default
        return clean

    def _environment(self, env: Any, col: _Collector) -> dict | None:
        if not isinstance(env, dict):
            col.error("type", "environment", "expected an object")
            return None
        clean = dict(env)
        if "gravity" in env:
            clean["gravity"] = col.triple(env["gravity"], "environment.gravity", GRAVITY_RANGE)
        if "damping" in env:
            clean["damping"] = col.clamp(env["damping"], "environment.damping", UNIT_RANGE)
        if "time_scale" in env:
            clean["time_scale"] = col.clamp(
                env["time_scale"], "environment.time_scale", TIME_SCALE_RANGE
            )
        return clean

    def _build(self, sanitized: dict, col: _Collector) -> Manifest | None:
        try:
            return Manifest.model_validate(sanitized)
        except ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(p) for p in err.get("loc", ()))
                col.error("schema", loc, err.get("msg", "invalid value"))
            return None

    def _emit(self, col: _Collector) -> None:
        for w in col.warnings:
            self.events.emit("validation.warning", code=w.code, path=w.path, message=w.message)
        for e in col.errors:
            self.events.emit("validation.error", code=e.code, path=e.path, message=e.message)
