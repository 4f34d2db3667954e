import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from . import config
from .debugger import ErrorCapture
from .errors import GcodeError
from .orchestrator import GenerationRequest
from .pipeline import Workbench
from .recall import LanceRecallStorage, RecallStore, build_embedder
from .verify import CommandTestRunner


def _build_workbench(args) -> Workbench:
    root = Path(args.root or config.ROOT).resolve()
    recall = RecallStore(embedder=build_embedder(), storage=LanceRecallStorage())
    wb = Workbench(root=root, recall=recall, test_runner=CommandTestRunner(root=root))
    wb.load()
    return wb


def _emit(args, payload, text: str) -> None:
    if getattr(args, "json", False):
        print(json.dumps(payload, indent=2))
    else:
        print(text)


def _apply_line(outcome) -> str:
    line = f"applied {outcome.applied_count}, skipped {outcome.skipped_count}"
    if outcome.failed:
        line += f", failed {outcome.failed_count}: " + ", ".join(outcome.failed)
    return line


def cmd_gen(args) -> int:
    wb = _build_workbench(args)
    scraped = Path(args.context_file).read_text(encoding="utf-8") if args.context_file else None
    result = wb.generate(
        GenerationRequest(
            prompt=args.prompt,
            mode=args.mode,
            preset=args.preset,
            scraped=scraped,
            tests_spec=args.tests_spec,
        )
    )
    lines = [f"route: {result.route.value} ({result.reason})"]
    for cand in result.files:
        mark = "changed" if cand.differs_from_base else "unchanged"
        lines.append(f"--- {cand.path} [{cand.produced_by.value}, {mark}]")
        lines.append(result.diffs.get(cand.path, cand.content))
    if result.explanation:
        lines.append("\n" + result.explanation)
    staged = wb.pending
    if staged and args.apply:
        outcome = wb.apply()
        lines.append(_apply_line(outcome))
    else:
        lines.append(f"{len(staged)} change(s) staged")
    _emit(args, result.to_dict(), "\n".join(lines))
    return 0


def cmd_harden(args) -> int:
    wb = _build_workbench(args)
    result = wb.harden(args.preset)
    lines = [f"--- {c.path}\n{c.diff}" for c in result.changes]
    if args.apply and result.changes:
        outcome = wb.apply()
        lines.append(_apply_line(outcome))
    else:
        lines.append(f"{len(result.changes)} change(s) staged")
    _emit(args, {"changes": [c.to_dict() for c in result.changes]}, "\n".join(lines))
    return 0


def cmd_similar(args) -> int:
    recall = RecallStore(embedder=build_embedder(), storage=LanceRecallStorage())
    hits = recall.query(args.query, args.min, args.limit, args.type)
    lines = [
        f"{h.score:.3f}  {h.record.type}  {h.record.content.get('prompt') or ''}" for h in hits
    ] or ["no similar records"]
    _emit(args, [dict(h.record.to_dict(), score=h.score) for h in hits], "\n".join(lines))
    return 0


def cmd_debug(args) -> int:
    wb = _build_workbench(args)
    stack = Path(args.stack_file).read_text(encoding="utf-8") if args.stack_file else sys.stdin.read()
    capture = ErrorCapture(stack=stack, file=args.file or "")
    status = 0
    for msg in wb.debug(capture, mode=args.mode, preset=args.preset):
        if args.json:
            print(json.dumps(msg))
            continue
        kind = msg["type"]
        if kind == "status":
            print(f"[{msg['message']}]", file=sys.stderr)
        elif kind == "explanation":
            print(msg["explanation"])
        elif kind == "fix":
            fix = msg["fix"]
            print(f"\nfix {msg['index'] + 1}: {fix['explanation']}")
            for t in fix["tradeoffs"]:
                print(f"  - {t}")
            print(f"--- {fix['diff']['path']}\n{fix['diff']['delta']}")
        elif kind == "complete":
            print(f"\n{msg['count']} fix(es) proposed")
        elif kind == "error":
            print(f"error: {msg['error']}", file=sys.stderr)
            status = 1
    return status


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="gcode", description="Route, generate, stage and apply model-written code.")
    ap.add_argument("--root", default=None, help="project root (default: GCODE_ROOT or cwd)")
    sub = ap.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("gen", help="generate files for a prompt")
    gen.add_argument("prompt")
    gen.add_argument("--mode", choices=["fast", "refine", "chained", "dual"])
    gen.add_argument("--preset")
    gen.add_argument("--context-file", help="scraped reference content")
    gen.add_argument("--tests-spec")
    gen.add_argument("--apply", action="store_true", help="run tests and apply when the gate passes")
    gen.add_argument("--json", action="store_true")
    gen.set_defaults(func=cmd_gen)

    hard = sub.add_parser("harden", help="production-hardening diffs for the project")
    hard.add_argument("--preset", choices=["enterprise", "scrappy", "a11y"])
    hard.add_argument("--apply", action="store_true")
    hard.add_argument("--json", action="store_true")
    hard.set_defaults(func=cmd_harden)

    sim = sub.add_parser("similar", help="past patterns/corrections similar to a query")
    sim.add_argument("query")
    sim.add_argument("--min", type=float, default=None)
    sim.add_argument("--limit", type=int, default=None)
    sim.add_argument("--type", choices=["pattern", "correction"])
    sim.add_argument("--json", action="store_true")
    sim.set_defaults(func=cmd_similar)

    dbg_cmd = sub.add_parser("debug", help="explain an error and propose fixes")
    dbg_cmd.add_argument("--stack-file", help="file with the stack trace (default: stdin)")
    dbg_cmd.add_argument("--file", help="source file the error points at")
    dbg_cmd.add_argument("--mode", default="chained")
    dbg_cmd.add_argument("--preset")
    dbg_cmd.add_argument("--json", action="store_true")
    dbg_cmd.set_defaults(func=cmd_debug)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (GcodeError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
