"""
Tunable constants shared across the ranking and optimization stages.

Values here are defaults; most can be overridden through the YAML
configuration or environment variables loaded by ``personarank.config``.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

# Ranking
LEADS_BATCH_SIZE = 15
MAX_LLM_RETRY_ATTEMPTS = 3
RETRY_DELAY_BASE_SECONDS = 2.0
DEFAULT_MAX_TOKENS = 8192
RANKING_TEMPERATURE = 0.0

# Score thresholds used by the result mapper
RELEVANCE_SCORE_THRESHOLD = 50
DECISION_MAKER_SCORE_THRESHOLD = 90

# Optimization
OPTIMIZATION_CONCURRENCY_LIMIT = 8
DEFAULT_MAX_ITERATIONS = 5
F1_CONVERGENCE_THRESHOLD = 0.85
NDCG_CONVERGENCE_THRESHOLD = 0.80
COMPOSITE_F1_WEIGHT = 0.6
COMPOSITE_NDCG_WEIGHT = 0.4
GRADIENT_TEMPERATURE = 0.3
EDITOR_TEMPERATURE = 0.2
ERROR_SAMPLE_SIZE = 5
RANK_MISMATCH_TOLERANCE = 2
PROMPT_PREVIEW_CHARS = 2000

# Persistence
MAX_ERROR_MESSAGE_LENGTH = 500

# Providers.  Models whose name starts with the family-A prefix are served
# by the Gemini OpenAI-compatible endpoint; everything else goes to Groq.
DEFAULT_MODEL = "gemini-2.5-flash"
GEMINI_MODEL_PREFIX = "gemini"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
GROQ_API_KEY_ENV = "GROQ_API_KEY"

GROQ_MODELS: List[str] = [
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
    "openai/gpt-oss-120b",
    "meta-llama/llama-4-maverick-17b-128e-instruct",
    "meta-llama/llama-4-scout-17b-16e-instruct",
    "qwen/qwen3-32b",
    "moonshotai/kimi-k2-instruct-0905",
    "groq/compound",
]

GEMINI_MODELS: List[str] = [
    "gemini-2.5-flash",
    "gemini-2.5-pro",
    "gemini-2.0-flash",
    "gemini-2.0-flash-lite",
]

# USD per 1K tokens as (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "llama-3.3-70b-versatile": (0.00059, 0.00079),
    "llama-3.1-8b-instant": (0.00005, 0.00008),
    "openai/gpt-oss-120b": (0.00015, 0.0006),
    "qwen/qwen3-32b": (0.00029, 0.00059),
    "meta-llama/llama-4-scout-17b-16e-instruct": (0.00011, 0.00034),
    "meta-llama/llama-4-maverick-17b-128e-instruct": (0.00011, 0.00034),
    "moonshotai/kimi-k2-instruct-0905": (0.0003, 0.0006),
    "groq/compound": (0.0005, 0.0005),
    "gemini-2.5-flash": (0.00015, 0.0006),
    "gemini-2.5-pro": (0.00125, 0.005),
    "gemini-2.0-flash": (0.0001, 0.0004),
    "gemini-2.0-flash-lite": (0.000075, 0.0003),
}
DEFAULT_PRICING: Tuple[float, float] = (0.001, 0.002)
