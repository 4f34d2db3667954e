import os


def _first_env(*names: str) -> str:
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return ""


# Fast model: low-latency drafting backend (OpenAI-compatible chat endpoint, xAI by default)
FAST_BASE_URL = os.getenv("GCODE_FAST_BASE_URL", "https://api.x.ai/v1").rstrip("/")
FAST_MODEL = os.getenv("GCODE_FAST_MODEL", "grok-4")
FAST_API_KEY = _first_env("GCODE_FAST_API_KEY", "XAI_API_KEY", "XAI_TOKEN", "GROK_API_KEY")
FAST_TEMP = float(os.getenv("GCODE_FAST_TEMP", "0.7"))
FAST_MAX_TOKENS = int(os.getenv("GCODE_FAST_MAX_TOKENS", "8192"))

# Refine model: slower hardening backend (Anthropic messages API by default)
REFINE_BASE_URL = os.getenv("GCODE_REFINE_BASE_URL", "https://api.anthropic.com/v1").rstrip("/")
REFINE_MODEL = os.getenv("GCODE_REFINE_MODEL", "claude-3-5-sonnet-20241022")
REFINE_API_KEY = _first_env("GCODE_REFINE_API_KEY", "ANTHROPIC_API_KEY")
REFINE_TEMP = float(os.getenv("GCODE_REFINE_TEMP", "0.3"))
REFINE_MAX_TOKENS = int(os.getenv("GCODE_REFINE_MAX_TOKENS", "8192"))
# "anthropic" or "openai" (any OpenAI-compatible /chat/completions endpoint)
REFINE_API_STYLE = os.getenv("GCODE_REFINE_API_STYLE", "anthropic").strip().lower()
ANTHROPIC_VERSION = os.getenv("GCODE_ANTHROPIC_VERSION", "2023-06-01")

# Caller-supplied timeout for every provider call (seconds)
GEN_TIMEOUT = int(os.getenv("GCODE_GEN_TIMEOUT", "300"))
# Rate-limit retry budget at the orchestration boundary
RATE_LIMIT_RETRIES = int(os.getenv("GCODE_RATE_LIMIT_RETRIES", "3"))
RATE_LIMIT_BACKOFF = float(os.getenv("GCODE_RATE_LIMIT_BACKOFF", "1.0"))
# Model-call ceiling for one CallBudget
MAX_MODEL_CALLS = int(os.getenv("GCODE_MAX_MODEL_CALLS", "1000"))

# Prompt / protocol knobs
SCRAPED_MAX_CHARS = int(os.getenv("GCODE_SCRAPED_MAX_CHARS", "8000"))
DEFAULT_FILE_PATH = os.getenv("GCODE_DEFAULT_FILE_PATH", "src/App.jsx")

# Staged apply is allowed only at or above this pass rate of the latest test run
APPLY_MIN_PASS_RATE = float(os.getenv("GCODE_APPLY_MIN_PASS_RATE", "0.8"))

# Semantic recall
RECALL_MIN_SIMILARITY = float(os.getenv("GCODE_RECALL_MIN_SIMILARITY", "0.7"))
RECALL_LIMIT = int(os.getenv("GCODE_RECALL_LIMIT", "3"))
# Only the most recent N records are compared against a query
RECALL_WINDOW = int(os.getenv("GCODE_RECALL_WINDOW", "200"))
EMBEDDING_BACKEND = os.getenv("GCODE_EMBEDDING_BACKEND", "sentence_transformers").strip().lower()
EMBEDDING_MODEL = os.getenv("GCODE_EMBEDDING_MODEL", "all-MiniLM-L6-v2")
EMBEDDING_URL = os.getenv("GCODE_EMBEDDING_URL", "").strip()
EMBEDDING_API_KEY = _first_env("GCODE_EMBEDDING_API_KEY", "OPENAI_API_KEY")
LANCEDB_PATH = os.getenv("GCODE_LANCEDB_PATH", "").strip()
RECALL_TABLE = os.getenv("GCODE_RECALL_TABLE", "recall_records")

# Test runner
TEST_RUNNER = os.getenv("GCODE_TEST_RUNNER", "vitest").strip().lower()
TEST_CMD = os.getenv("GCODE_TEST_CMD", "").strip() or None
TEST_TIMEOUT = int(os.getenv("GCODE_TEST_TIMEOUT", "300"))

# Project root for file IO
ROOT = os.getenv("GCODE_ROOT", "").strip() or os.getcwd()

DEBUG = os.getenv("GCODE_DEBUG", "").lower() in ("1", "true", "yes")
DEBUG_LOG_PATH = os.getenv(
    "GCODE_DEBUG_LOG", os.path.join(os.path.expanduser("~"), ".gcode-debug.log")
)
# GCODE_DEBUG_DUMP_VERBOSE=1: write full model output to the debug log (no truncation).
DEBUG_DUMP_VERBOSE = os.getenv("GCODE_DEBUG_DUMP_VERBOSE", "false").lower() in ("1", "true", "yes")
DEBUG_DUMP_MAX_CHARS = int(os.getenv("GCODE_DEBUG_DUMP_MAX_CHARS", "2000"))

# Project snapshot loading
IGNORE_DIRS = {".git", "node_modules", "__pycache__", "dist", "build", ".next", ".gcode"}
ALLOWED_EXTS = {
    "txt", "md", "mdx",
    "html", "htm", "css", "scss", "sass", "less",
    "js", "jsx", "mjs", "cjs",
    "ts", "tsx", "mts", "cts",
    "vue", "svelte", "astro",
    "json", "jsonc", "yaml", "yml", "toml",
    "py", "sh",
    "graphql", "gql", "sql", "svg",
}
MAX_SNAPSHOT_FILES = int(os.getenv("GCODE_MAX_SNAPSHOT_FILES", "400"))
MAX_FILE_BYTES = int(os.getenv("GCODE_MAX_FILE_BYTES", "200000"))
