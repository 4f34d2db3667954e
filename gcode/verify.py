"""Test-runner capability and test output parsing."""

import json
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

from . import config
from .utils import dbg, dbg_dump

RUNNER_COMMANDS: Dict[str, str] = {
    "vitest": "npx vitest run --reporter=json",
    "jest": "npx jest --json",
    "pytest": "python -m pytest -q",
}


@dataclass
class TestRunOutput:
    __test__ = False

    raw_output: str
    exit_code: int


@dataclass
class TestRunResult:
    __test__ = False

    passed: int = 0
    failed: int = 0
    total: int = 0
    raw_output: str = ""
    source: str = "none"  # "json" | "jest" | "vitest" | "pytest" | "none"

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total if self.total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "total": self.total,
            "pass_rate": self.pass_rate,
            "source": self.source,
        }


class TestRunner(Protocol):
    def run(self, selector: Optional[str] = None) -> TestRunOutput:
        ...


def _int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _json_candidates(raw: str) -> Iterator[Any]:
    """JSON objects that start at the beginning of a line (reporter output)."""
    decoder = json.JSONDecoder()
    for m in re.finditer(r"(?m)^[ \t]*\{", raw):
        start = m.end() - 1
        try:
            obj, _ = decoder.raw_decode(raw, start)
        except json.JSONDecodeError:
            continue
        yield obj


def _stats_from_json(obj: Any) -> Optional[Tuple[int, int, int]]:
    if not isinstance(obj, dict):
        return None
    if "numTotalTests" in obj:
        passed = _int(obj.get("numPassedTests"))
        failed = _int(obj.get("numFailedTests"))
        return passed, failed, _int(obj.get("numTotalTests"))
    stats = obj.get("stats")
    if isinstance(stats, dict) and any(k in stats for k in ("passed", "failed", "testCount")):
        passed = _int(stats.get("passed"))
        failed = _int(stats.get("failed"))
        total = _int(stats.get("testCount")) or passed + failed + _int(stats.get("skipped"))
        return passed, failed, total
    return None


_COUNT_RE = re.compile(r"(\d+)\s+(passed|failed|skipped|todo|pending|errors?|total)\b")
_JEST_LINE_RE = re.compile(r"(?m)^\s*Tests:\s+(.*\btotal)\s*$")
_VITEST_LINE_RE = re.compile(r"(?m)^\s*Tests\s+(.+?)\((\d+)\)\s*$")
_PYTEST_LINE_RE = re.compile(r"(?m)^[=\s]*((?:\d+ \w+(?:, )?)+) in [\d.]+s")


def _counts(text: str) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for num, word in _COUNT_RE.findall(text):
        key = "errors" if word.startswith("error") else word
        out[key] = out.get(key, 0) + int(num)
    return out


def _scan_summary(raw: str) -> Optional[Tuple[int, int, int, str]]:
    matches = _JEST_LINE_RE.findall(raw)
    if matches:
        c = _counts(matches[-1])
        return c.get("passed", 0), c.get("failed", 0), c.get("total", 0), "jest"
    matches = _VITEST_LINE_RE.findall(raw)
    if matches:
        body, total = matches[-1]
        c = _counts(body)
        return c.get("passed", 0), c.get("failed", 0), int(total), "vitest"
    matches = _PYTEST_LINE_RE.findall(raw)
    if matches:
        c = _counts(matches[-1])
        if "passed" in c or "failed" in c or "errors" in c:
            failed = c.get("failed", 0) + c.get("errors", 0)
            passed = c.get("passed", 0)
            return passed, failed, passed + failed + c.get("skipped", 0), "pytest"
    return None


def parse_test_output(raw: str) -> TestRunResult:
    """Pass/fail/total from a runner's output.

    A JSON reporter object wins; otherwise the last Jest, Vitest or pytest
    summary line is used; otherwise everything is zero.
    """
    raw = raw or ""
    stats = None
    for obj in _json_candidates(raw):
        stats = _stats_from_json(obj)
        if stats is not None:
            break
    if stats is not None:
        passed, failed, total = stats
        return TestRunResult(passed=passed, failed=failed, total=total, raw_output=raw, source="json")
    scanned = _scan_summary(raw)
    if scanned is not None:
        passed, failed, total, source = scanned
        return TestRunResult(passed=passed, failed=failed, total=total, raw_output=raw, source=source)
    dbg("verify: no test summary found in runner output")
    return TestRunResult(raw_output=raw)


class CommandTestRunner:
    """Runs the project's test command in its root directory."""

    def __init__(
        self,
        root: Optional[Path] = None,
        command: Optional[str] = None,
        runner: Optional[str] = None,
        timeout_s: Optional[int] = None,
    ):
        self.root = Path(root or config.ROOT).resolve()
        runner = (runner or config.TEST_RUNNER).strip().lower()
        self.command = command or config.TEST_CMD or RUNNER_COMMANDS.get(runner, RUNNER_COMMANDS["vitest"])
        self.timeout_s = int(timeout_s or config.TEST_TIMEOUT)

    def argv(self, selector: Optional[str] = None) -> List[str]:
        args = shlex.split(self.command)
        if selector:
            args.append(selector)
        return args

    def run(self, selector: Optional[str] = None) -> TestRunOutput:
        args = self.argv(selector)
        dbg(f"verify: running {' '.join(args)} in {self.root}")
        try:
            res = subprocess.run(
                args,
                cwd=str(self.root),
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired:
            return TestRunOutput(raw_output="Test run timed out", exit_code=124)
        except FileNotFoundError as e:
            return TestRunOutput(raw_output=f"Test command not found: {e}", exit_code=127)
        output = (res.stdout or "") + ("\n" + res.stderr if res.stderr else "")
        dbg(f"verify: test run exit={res.returncode}")
        dbg_dump("test_output", output)
        return TestRunOutput(raw_output=output, exit_code=res.returncode)


def run_and_parse(runner: TestRunner, selector: Optional[str] = None) -> TestRunResult:
    out = runner.run(selector)
    return parse_test_output(out.raw_output)
