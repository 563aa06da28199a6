"""
Pipeline configuration.

Every tunable constant of the generation pipeline lives in one immutable
object that is passed into each stage.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from functools import lru_cache
from typing import Optional


ENV_PREFIX = "STUDYGEN_"


@dataclass(frozen=True)
class PipelineConfig:
    # extraction
    min_text_length: int = 100
    binary_sample_size: int = 1000
    binary_nonprintable_ratio: float = 0.10
    heuristic_min_run: int = 20
    drop_short_words: bool = False

    # pages / chunks
    chars_per_page: int = 3000
    chunk_size: int = 2200
    chunk_overlap: int = 300
    keyword_top_k: int = 60
    keyword_min_frequency: int = 2
    max_content_chars: int = 30000
    fallback_sample_size: int = 2000

    # grounding / retries
    retry_trigger: float = 0.6
    reject_floor: float = 0.5
    min_compliance: float = 0.5
    max_attempts: int = 2
    question_weight: float = 0.4
    answer_weight: float = 0.6

    # dedupe
    dedupe_threshold: float = 0.7

    # distractors
    near_duplicate_threshold: float = 0.85
    plausible_min_similarity: float = 0.15
    plausible_max_similarity: float = 0.75
    sweet_spot_similarity: float = 0.35
    strong_support_ratio: float = 0.9
    strong_support_floor: float = 0.2
    distractor_min_words: int = 3
    distractor_max_words: int = 50

    # generation
    temperature: float = 0.2
    top_p: float = 0.9
    max_tokens: int = 2000
    default_count: int = 10
    max_count: int = 50

    accept_flagged_in_mixed: bool = False

    def __post_init__(self):
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if not self.retry_trigger > self.reject_floor:
            raise ValueError("retry_trigger must be greater than reject_floor")
        if not self.near_duplicate_threshold > self.dedupe_threshold:
            raise ValueError("near_duplicate_threshold must be greater than dedupe_threshold")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def with_overrides(self, **changes) -> "PipelineConfig":
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "PipelineConfig":
        """Build a config from STUDYGEN_<FIELD> environment variables."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = f.default
            if isinstance(default, bool):
                overrides[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(default, int):
                overrides[f.name] = int(raw)
            else:
                overrides[f.name] = float(raw)
        return cls(**overrides)


@dataclass(frozen=True)
class ServiceSettings:
    database_url: str
    storage_dir: str
    openai_api_key: Optional[str]
    openai_base_url: Optional[str]
    generation_model: str
    document_reader_enabled: bool
    request_timeout: float

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./studygen.db"),
            storage_dir=os.getenv("STORAGE_DIR", "./storage"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            generation_model=os.getenv("GENERATION_MODEL", "gpt-4o-mini"),
            document_reader_enabled=os.getenv("DOCUMENT_READER_ENABLED", "0").lower() in ("1", "true", "yes"),
            request_timeout=float(os.getenv("GENERATION_TIMEOUT", "60")),
        )


@lru_cache()
def get_config() -> PipelineConfig:
    return PipelineConfig.from_env()


@lru_cache()
def get_settings() -> ServiceSettings:
    return ServiceSettings.from_env()
