"""
Runtime configuration.

Settings are resolved in three layers: the defaults in
:mod:`personarank.constants`, an optional YAML file (the bundled
``personarank/config.yaml`` unless another path is given), and finally
environment variables.  A ``.env`` file in the working directory is
loaded with python-dotenv before the environment is read, so API keys
can live there during local development.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml  # type: ignore
from dotenv import load_dotenv

from . import constants

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")


@dataclass
class Settings:
    model: str = constants.DEFAULT_MODEL
    optimizer_model: str = constants.DEFAULT_MODEL
    gemini_base_url: str = constants.GEMINI_BASE_URL
    groq_base_url: str = constants.GROQ_BASE_URL
    gemini_models: List[str] = field(default_factory=lambda: list(constants.GEMINI_MODELS))
    groq_models: List[str] = field(default_factory=lambda: list(constants.GROQ_MODELS))
    batch_size: int = constants.LEADS_BATCH_SIZE
    max_batch_attempts: int = constants.MAX_LLM_RETRY_ATTEMPTS
    retry_delay_base: float = constants.RETRY_DELAY_BASE_SECONDS
    max_tokens: int = constants.DEFAULT_MAX_TOKENS
    optimization_concurrency: int = constants.OPTIMIZATION_CONCURRENCY_LIMIT
    max_iterations: int = constants.DEFAULT_MAX_ITERATIONS
    f1_threshold: float = constants.F1_CONVERGENCE_THRESHOLD
    ndcg_threshold: float = constants.NDCG_CONVERGENCE_THRESHOLD
    store_path: str = ".personarank/store.json"
    log_level: str = "INFO"
    groq_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None

    def env_keys(self) -> Dict[str, str]:
        """Environment-default API keys by provider family."""
        keys: Dict[str, str] = {}
        if self.groq_api_key:
            keys["groq"] = self.groq_api_key
        if self.gemini_api_key:
            keys["gemini"] = self.gemini_api_key
        return keys


# YAML section -> {yaml key: settings attribute}
_YAML_SECTIONS: Dict[str, Dict[str, str]] = {
    "providers": {
        "gemini_base_url": "gemini_base_url",
        "groq_base_url": "groq_base_url",
        "gemini_models": "gemini_models",
        "groq_models": "groq_models",
    },
    "ranking": {
        "batch_size": "batch_size",
        "max_batch_attempts": "max_batch_attempts",
        "retry_delay_base": "retry_delay_base",
        "max_tokens": "max_tokens",
    },
    "optimization": {
        "concurrency": "optimization_concurrency",
        "max_iterations": "max_iterations",
        "f1_threshold": "f1_threshold",
        "ndcg_threshold": "ndcg_threshold",
    },
}
_YAML_TOP_LEVEL = ("model", "optimizer_model", "store_path", "log_level")

_ENV_OVERRIDES = {
    "PERSONARANK_MODEL": ("model", str),
    "PERSONARANK_OPTIMIZER_MODEL": ("optimizer_model", str),
    "PERSONARANK_BATCH_SIZE": ("batch_size", int),
    "PERSONARANK_LOG_LEVEL": ("log_level", str),
    "PERSONARANK_STORE": ("store_path", str),
}


def _load_yaml(path: Path) -> Dict[str, object]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _apply_yaml(settings: Settings, data: Dict[str, object]) -> None:
    for key in _YAML_TOP_LEVEL:
        if data.get(key) is not None:
            setattr(settings, key, data[key])
    for section, mapping in _YAML_SECTIONS.items():
        values = data.get(section) or {}
        if not isinstance(values, dict):
            logger.warning("Ignoring config section %r: expected a mapping", section)
            continue
        for key, attr in mapping.items():
            if values.get(key) is not None:
                setattr(settings, attr, values[key])


def _apply_env(settings: Settings) -> None:
    for env_name, (attr, cast) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw:
            setattr(settings, attr, cast(raw))
    settings.groq_api_key = os.getenv(constants.GROQ_API_KEY_ENV) or settings.groq_api_key
    settings.gemini_api_key = os.getenv(constants.GEMINI_API_KEY_ENV) or settings.gemini_api_key


def load_settings(config_path: str | Path | None = None, use_dotenv: bool = True) -> Settings:
    """Build :class:`Settings` from defaults, YAML and the environment."""
    if use_dotenv:
        load_dotenv()
    settings = Settings()
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if path.exists():
        _apply_yaml(settings, _load_yaml(path))
    elif config_path:
        raise FileNotFoundError(f"Config file not found: {path}")
    _apply_env(settings)
    return settings
