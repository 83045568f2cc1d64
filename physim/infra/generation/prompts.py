"""Prompts du backend de génération."""

from __future__ import annotations

from physim.domain.manifest import GeometryType, PhysicsType

_PHYSICS = ", ".join(p.value for p in PhysicsType)
_GEOMETRY = ", ".join(g.value for g in GeometryType)

SYSTEM_PROMPT = f"""You turn descriptions of physics scenarios into simulation manifests.
Answer with a single JSON object and nothing else, with these keys:
- "version": "1.0"
- "physics_type": one of {_PHYSICS}
- "title", "description": short strings
- "objects": list of {{"id", "type" (one of {_GEOMETRY}), "asset_path", "material"
  {{"color", "texture_path", "preset"}}, "position" [x,y,z], "rotation" [x,y,z],
  "scale" [x,y,z], "physics" {{"mass", "velocity" [x,y,z], "charge", "voltage",
  "is_static", "restitution", "friction"}}}}
- "parameters": list of {{"name", "type" (float|int|bool), "default", "min", "max", "unit"}}
- "environment": {{"gravity" [x,y,z], "damping", "time_scale"}}
Use SI units. Prefer builtin:// assets (builtin://meshes/sphere, builtin://meshes/box,
builtin://meshes/cylinder, builtin://meshes/plane)."""

IMAGE_ADDENDUM = """The input is a picture (diagram or photo) of the scenario.
Also add a top-level "confidence" key: a number between 0 and 1 telling how sure you are
that you understood what the picture shows."""


def user_content(text: str | None, hint: str | None) -> str:
    parts = []
    if text:
        parts.append(f"Scenario: {text}")
    if hint:
        parts.append(f"Hint: {hint}")
    return "\n".join(parts) or "Describe the scenario shown in the picture."
