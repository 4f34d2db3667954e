import json
import unittest

from fakes import FakeProvider, RecordingRecall
from gcode.budget import CallBudget
from gcode.debugger import (
    DebugFix,
    ErrorCapture,
    debug_error,
    fix_to_staged_change,
    is_complex_error,
    parse_json_response,
    validate_fix,
)
from gcode.errors import ProviderFailure, RateLimited


def _fix(expl, path="src/App.jsx", delta=" a\n-b\n+B"):
    return {"explanation": expl, "tradeoffs": ["Fast fix", "May hide bugs"], "diff": {"path": path, "delta": delta}}


FAST_JSON = json.dumps(
    {
        "explanation": "b is undefined",
        "fixes": [_fix("guard b"), {"explanation": "no tradeoffs", "diff": {"path": "x", "delta": "+y"}}, _fix("default b")],
    }
)
SIMPLE = ErrorCapture(stack="TypeError: b is undefined\n    at App (src/App.jsx:3:5)", file="src/App.jsx")
ASYNC = ErrorCapture(stack="Error: boom\n    at async load (src/api.js:10:2)", file="src/api.js")


def _types(messages):
    return [m["type"] for m in messages]


class TestDebugError(unittest.TestCase):
    def test_message_order_and_invalid_fix_skipped(self):
        recall = RecordingRecall()
        fast = FakeProvider([FAST_JSON])
        msgs = list(debug_error(SIMPLE, fast, FakeProvider([]), preset="scrappy", recall=recall, user_id="u1"))
        self.assertEqual(_types(msgs), ["status", "explanation", "fix", "fix", "complete"])
        self.assertEqual(msgs[1]["explanation"], "b is undefined")
        self.assertEqual([m["index"] for m in msgs if m["type"] == "fix"], [0, 2])
        self.assertEqual(msgs[2]["fix"]["diff"], {"path": "src/App.jsx", "delta": " a\n-b\n+B"})
        self.assertEqual(msgs[-1]["count"], 3)
        self.assertEqual(len(recall.records), 2)
        rtype, content, user_id = recall.records[0]
        self.assertEqual((rtype, user_id), ("correction", "u1"))
        self.assertEqual(content["prompt"], "Fix for error in src/App.jsx")
        self.assertEqual(content["preset"], "scrappy")
        self.assertEqual(content["diff"], " a\n-b\n+B")

    def test_simple_error_skips_refine(self):
        refine = FakeProvider([])
        list(debug_error(SIMPLE, FakeProvider([FAST_JSON]), refine, mode="dual"))
        self.assertEqual(refine.calls, [])

    def test_complex_error_refines_tradeoffs(self):
        refined = json.dumps({"explanation": "async race", "fixes": [_fix("await it")]})
        refine = FakeProvider([refined])
        msgs = list(debug_error(ASYNC, FakeProvider([FAST_JSON]), refine, mode="dual"))
        self.assertEqual(_types(msgs), ["status", "status", "explanation", "fix", "complete"])
        self.assertEqual(msgs[2]["explanation"], "async race")
        _, system, user = refine.calls[0]
        self.assertIn("tradeoff", system)
        self.assertIn("Original error: Error: boom", user)

    def test_refine_failure_keeps_fast_analysis(self):
        refine = FakeProvider([ProviderFailure("HTTP 500")])
        msgs = list(debug_error(ASYNC, FakeProvider([FAST_JSON]), refine, mode="chained"))
        self.assertEqual(msgs[-1], {"type": "complete", "count": 3})
        self.assertEqual(msgs[2]["explanation"], "b is undefined")

    def test_fast_mode_never_refines(self):
        refine = FakeProvider([])
        list(debug_error(ASYNC, FakeProvider([FAST_JSON]), refine, mode="fast"))
        self.assertEqual(refine.calls, [])

    def test_rate_limit_becomes_error_message(self):
        sleeps = []
        fast = FakeProvider([RateLimited("429"), RateLimited("429")])
        msgs = list(debug_error(SIMPLE, fast, retries=1, backoff=0.1, sleep=sleeps.append))
        self.assertEqual(_types(msgs), ["status", "error"])
        self.assertEqual(msgs[-1]["error"], "Rate limit exceeded. Please try again later.")
        self.assertEqual(sleeps, [0.1])

    def test_unparseable_reply_is_error(self):
        msgs = list(debug_error(SIMPLE, FakeProvider(["I think you should restart."])))
        self.assertEqual(msgs[-1], {"type": "error", "error": "Failed to parse fixes from model response"})

    def test_provider_failure_is_error_message(self):
        msgs = list(debug_error(SIMPLE, FakeProvider([ProviderFailure("fast: HTTP 502")])))
        self.assertEqual(msgs[-1], {"type": "error", "error": "fast: HTTP 502"})

    def test_budget_exhausted_is_error_message(self):
        msgs = list(debug_error(SIMPLE, FakeProvider([FAST_JSON]), budget=CallBudget(limit=0)))
        self.assertEqual(_types(msgs), ["status", "error"])


class TestHelpers(unittest.TestCase):
    def test_is_complex_error(self):
        self.assertFalse(is_complex_error(SIMPLE))
        self.assertTrue(is_complex_error(ASYNC))
        self.assertTrue(is_complex_error(ErrorCapture(stack="\n".join(f"at f{i}" for i in range(11)))))
        self.assertTrue(is_complex_error(ErrorCapture(stack="x.then(cb)")))

    def test_parse_json_response_variants(self):
        self.assertEqual(parse_json_response('{"a": 1}'), {"a": 1})
        self.assertEqual(parse_json_response('Here:\n```json\n{"a": {"b": 2}}\n```\nDone.'), {"a": {"b": 2}})
        self.assertIsNone(parse_json_response("no json"))
        self.assertIsNone(parse_json_response("[1, 2]"))

    def test_validate_fix(self):
        self.assertIsNotNone(validate_fix(_fix("ok")))
        self.assertIsNone(validate_fix({"explanation": "x", "tradeoffs": "pro", "diff": {"path": "p", "delta": "d"}}))
        self.assertIsNone(validate_fix({"explanation": "x", "tradeoffs": [], "diff": {"path": "p"}}))
        self.assertIsNone(validate_fix("nope"))

    def test_fix_to_staged_change(self):
        fix = DebugFix(explanation="x", tradeoffs=[], path="src/App.jsx", delta=" a\n-b\n+B")
        change = fix_to_staged_change(fix, {"src/App.jsx": "a\nb\nc"})
        self.assertEqual((change.before, change.after), ("a\nb\nc", "a\nB\nc"))
        self.assertIsNone(fix_to_staged_change(fix, {"src/App.jsx": "zzz"}))

    def test_error_capture_from_dict(self):
        cap = ErrorCapture.from_dict({"stack": "Error: x", "file": "a.js"})
        self.assertEqual((cap.stack, cap.file), ("Error: x", "a.js"))
        with self.assertRaises(ValueError):
            ErrorCapture.from_dict({"message": "no stack"})
