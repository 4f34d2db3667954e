from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
import re


class Route(str, Enum):
    FAST = "fast"
    REFINE = "refine"
    CHAINED = "chained"


# Preset tags: product names first, canonical route names accepted as well.
CHAINED_PRESETS = ("dual", "chained")
SPEED_PRESETS = ("scrappy", "fast")
RIGOR_PRESETS = ("enterprise", "refine")

_MODE_ALIASES = {
    "fast": Route.FAST,
    "refine": Route.REFINE,
    "chained": Route.CHAINED,
    "dual": Route.CHAINED,
}

_CREATE_PATTERNS = (
    r"\bbuild",
    r"\bcreat",
    r"\bscaffold",
    r"\bprototyp",
    r"\bsketch",
)
_REFINE_PATTERNS = (
    r"\brefin",
    r"\bharden",
    r"\bpolish",
    r"\bproduction\b",
    r"\bsecur",
    r"\baudit",
)


@dataclass(frozen=True)
class RouteRequest:
    prompt: str
    mode: Optional[str] = None
    preset: Optional[str] = None


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def normalize_mode(mode: Optional[str]) -> Optional[Route]:
    return _MODE_ALIASES.get(_norm(mode))


def wants_creation(prompt: str) -> bool:
    low = (prompt or "").lower()
    return any(re.search(p, low) for p in _CREATE_PATTERNS)


def wants_refinement(prompt: str) -> bool:
    low = (prompt or "").lower()
    return any(re.search(p, low) for p in _REFINE_PATTERNS)


def decide_route_with_reason(req: RouteRequest) -> Tuple[Route, str]:
    mode = normalize_mode(req.mode)
    preset = _norm(req.preset)

    # 1) Chained by explicit mode or preset wins over everything else.
    if mode is Route.CHAINED or preset in CHAINED_PRESETS:
        return Route.CHAINED, "chained_explicit"

    # 2) / 3) Preset tags.
    if preset in SPEED_PRESETS:
        return Route.FAST, "speed_preset"
    if preset in RIGOR_PRESETS:
        return Route.REFINE, "rigor_preset"

    # Explicit single-model modes sit below presets.
    if mode is Route.FAST:
        return Route.FAST, "mode_fast"
    if mode is Route.REFINE:
        return Route.REFINE, "mode_refine"

    # 4) Keyword scan; creation vocabulary is checked first.
    if wants_creation(req.prompt):
        return Route.FAST, "creation_keywords"
    if wants_refinement(req.prompt):
        return Route.REFINE, "refinement_keywords"

    # 5) Default.
    return Route.FAST, "default_fast"


def decide_route(req: RouteRequest) -> Route:
    route, _ = decide_route_with_reason(req)
    return route


def route(prompt: str, mode: Optional[str] = None, preset: Optional[str] = None) -> Route:
    return decide_route(RouteRequest(prompt=prompt, mode=mode, preset=preset))


def route_with_reason(
    prompt: str, mode: Optional[str] = None, preset: Optional[str] = None
) -> Tuple[Route, str]:
    return decide_route_with_reason(RouteRequest(prompt=prompt, mode=mode, preset=preset))
