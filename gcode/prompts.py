"""Prompt text for generation, chained refinement, hardening and debugging."""

from typing import Dict, Iterable, Optional

from . import config

OUTPUT_CONTRACT = """\
Output using XML tags and include explanation and tests tags. The tests must be runnable with Vitest or Jest:
<file path="...">FULL FILE CONTENT</file>
<explanation>Short explanation of changes/approach</explanation>
<tests>A runnable Vitest or Jest test suite validating the request</tests>"""

GENERATION_RULES = """\
Rules:
- Do not truncate code.
- Prefer minimal changes for edits; return full file contents.
- Use only standard Tailwind classes (no bg-background/text-foreground).
- If no files are needed, still include <explanation> and <tests>."""


def build_system_prompt(scraped: Optional[str] = None, base_paths: Iterable[str] = ()) -> str:
    parts = [
        "You are a senior full-stack engineer. Generate clean, complete files for a Vite React "
        "project using Tailwind utilities only where applicable.",
        OUTPUT_CONTRACT,
    ]
    paths = sorted(base_paths)
    if paths:
        parts.append("Current files in project:\n" + "\n".join(f"- {p}" for p in paths))
    if scraped:
        parts.append(
            "SCRAPED CONTENT CONTEXT (reference only):\n"
            + scraped[: config.SCRAPED_MAX_CHARS]
        )
    parts.append(GENERATION_RULES)
    return "\n\n".join(parts)


def build_user_prompt(prompt: str, tests_spec: Optional[str] = None) -> str:
    tests_line = (
        f"TESTS SPEC:\nGenerate a Vitest/Jest suite covering: {tests_spec}"
        if tests_spec
        else "Include a meaningful Vitest/Jest suite that validates the behavior."
    )
    return (
        f"USER REQUEST:\n{prompt}\n\n"
        "Please output <file>, <explanation>, and <tests> tags as specified.\n\n"
        f"{tests_line}"
    )


def build_refine_user_prompt(scaffold: str, prompt: str) -> str:
    return (
        "The following is an initial scaffold produced by another model. Refine, harden, and "
        "correct any issues, then output final <file>, <explanation>, and <tests> tags.\n\n"
        f"INITIAL SCAFFOLD:\n{scaffold}\n\n"
        f"ORIGINAL REQUEST:\n{prompt}"
    )


def join_single_message(system: str, user: str) -> str:
    """Single-message backends get the system text inlined ahead of the request."""
    return f"SYSTEM:\n{system}\n\n{user}"


_HARDEN_PRESET_RULES: Dict[str, str] = {
    "enterprise": "Enforce enterprise guardrails: security first, full documentation blocks, tests, feature flags.",
    "scrappy": "Allow minimal scaffolds but ensure critical prod hooks exist; keep changes focused.",
    "a11y": "Ensure accessibility best practices across changes, add notes on WCAG coverage.",
}


def build_harden_system_prompt(preset: Optional[str] = None) -> str:
    rules = _HARDEN_PRESET_RULES.get((preset or "").strip().lower(), "Apply reasonable production hardening.")
    return f"""You are a senior platform engineer performing production hardening on a JavaScript/TypeScript web app.
Audit for production readiness and propose minimal, targeted diffs only.
Add:
- Error-reporting hooks
- Dependency scan stubs (scripts/placeholders)
- Performance budgets (Lighthouse/CI thresholds)
- Feature flag placeholders
- CI workflow YAML (build/test/lint & perf checks)
Output only unified diffs, one per file, wrapped in <diff path="..."> blocks. Do NOT output full files.
{rules}
Rules:
- Keep diffs minimal and precise
- Include new files as diffs from empty
- Do not include prose outside diff blocks"""


def build_harden_user_prompt(files_context: str) -> str:
    return f"Here are the current files:\n{files_context}\n\nReturn diffs only."


DEBUG_SYSTEM_PROMPT = """You are a senior debugging assistant. Given a bug report, explain the root cause simply, then propose exactly 3 fix options. Each fix must include:
- explanation: brief description
- tradeoffs: array of pros and cons (e.g., ['Fast fix', 'May break edge cases'])
- diff: {path: string, delta: string} where delta is a unified diff format

Output JSON only: {explanation: string, fixes: [{explanation, tradeoffs: string[], diff: {path, delta}}]}"""

DEBUG_TRADEOFF_SYSTEM_PROMPT = (
    "You are a senior engineer analyzing bug fixes. Review the initial fixes proposed and provide "
    "detailed tradeoff analysis. For each fix, identify specific pros and cons. Output JSON only with "
    "the same structure: {explanation, fixes: [{explanation, tradeoffs: ['pro1', 'con1', ...], "
    "diff: {path, delta}}]}."
)


def build_debug_user_prompt(stack: str, file: str, preset: Optional[str]) -> str:
    return (
        f"Bug: {stack} in {file or 'unknown file'}. Explain simply, gen 3 fixes as JSON "
        "[{explanation, tradeoffs:['pro','con'], diff:{path,delta}}]. "
        f"Vibe: {preset or 'balanced'}"
    )


def build_debug_tradeoff_prompt(initial: str, error_text: str, preset: Optional[str]) -> str:
    return (
        f"Initial fix analysis:\n{initial}\n\n"
        f"Original error: {error_text or 'Unknown error'}\n\n"
        f"Provide refined tradeoffs for each fix. Vibe: {preset or 'balanced'}"
    )
