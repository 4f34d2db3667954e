import pytest

from gcode.router import Route, normalize_mode, route, route_with_reason

CASES = [
    # prompt, mode, preset, expected route, reason
    ("Create a login form", None, "fast", Route.FAST, "speed_preset"),
    ("Harden this for production", "chained", None, Route.CHAINED, "chained_explicit"),
    ("anything", "dual", None, Route.CHAINED, "chained_explicit"),
    ("Build a todo app", None, "dual", Route.CHAINED, "chained_explicit"),
    ("Build a todo app", "fast", "chained", Route.CHAINED, "chained_explicit"),
    ("Build a todo app", None, "enterprise", Route.REFINE, "rigor_preset"),
    ("Polish the checkout", None, "scrappy", Route.FAST, "speed_preset"),
    ("Create a navbar", "refine", None, Route.REFINE, "mode_refine"),
    ("Audit the auth flow", "fast", None, Route.FAST, "mode_fast"),
    ("Scaffold a dashboard", None, None, Route.FAST, "creation_keywords"),
    ("Please polish the checkout flow", None, None, Route.REFINE, "refinement_keywords"),
    ("Make it production ready and secure", None, None, Route.REFINE, "refinement_keywords"),
    ("Build it, then harden it", None, None, Route.FAST, "creation_keywords"),
    ("Rename the header", None, None, Route.FAST, "default_fast"),
    ("Fix the insecure rebuild script", None, None, Route.FAST, "default_fast"),
]


@pytest.mark.parametrize("prompt,mode,preset,expected,reason", CASES)
def test_route_table(prompt, mode, preset, expected, reason):
    assert route_with_reason(prompt, mode, preset) == (expected, reason)
    assert route(prompt, mode, preset) is expected


def test_case_and_whitespace_insensitive_tags():
    assert route("x", mode=" Chained ") is Route.CHAINED
    assert route("x", preset="ENTERPRISE") is Route.REFINE


def test_unknown_mode_falls_through_to_keywords():
    assert normalize_mode("turbo") is None
    assert route("Harden the API", mode="turbo") is Route.REFINE


def test_same_inputs_same_route():
    seen = {route("Refine the form", None, None) for _ in range(50)}
    assert seen == {Route.REFINE}
