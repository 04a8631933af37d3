"""
Pipeline configuration.

Values are read from the environment (and a local .env) once, then passed to
``DecisionPipeline`` at construction. Nothing downstream consults the
environment at run time.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator


class LlmProvider(str, Enum):
    OPENAI = "openai"
    AZURE = "azure"


class BusinessRuleThresholds(BaseModel):
    """Decision-table boundaries.

    The high-value rule is strict (amount > high_value_threshold); the mid band
    is low_value_threshold <= amount <= high_value_threshold.
    """

    model_config = ConfigDict(frozen=True)

    confidence_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    high_value_threshold: float = Field(default=5000.0, gt=0)
    low_value_threshold: float = Field(default=500.0, gt=0)
    auto_approve_confidence: float = Field(default=0.95, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> "BusinessRuleThresholds":
        if self.low_value_threshold > self.high_value_threshold:
            raise ValueError("low_value_threshold must not exceed high_value_threshold")
        return self


class PipelineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    llm_provider: LlmProvider = LlmProvider.OPENAI
    llm_model: str = "gpt-4o"
    llm_timeout_seconds: float = 30.0
    azure_deployment: Optional[str] = None
    azure_api_version: str = "2024-06-01"

    thresholds: BusinessRuleThresholds = Field(default_factory=BusinessRuleThresholds)

    evidence_top_k: int = Field(default=5, ge=1)
    evidence_max_attempts: int = Field(default=2, ge=1)  # one retry
    generation_max_attempts: int = Field(default=3, ge=1)
    generation_backoff_seconds: float = Field(default=0.5, ge=0.0)

    screen_prompt_injection: bool = True
    mask_pii_in_prompts: bool = True

    persist_max_attempts: int = Field(default=5, ge=1)
    persist_backoff_seconds: float = Field(default=1.0, ge=0.0)

    documents_dir: str = "./documents"
    database_url: str = "sqlite:///./claims_audit.db"
    chroma_persist_dir: str = "./chroma_data"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    policy_collection: str = "policy_clauses"

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        load_dotenv()
        thresholds = BusinessRuleThresholds(
            confidence_threshold=float(os.getenv("CONFIDENCE_THRESHOLD", "0.85")),
            high_value_threshold=float(os.getenv("HIGH_VALUE_THRESHOLD", "5000")),
            low_value_threshold=float(os.getenv("LOW_VALUE_THRESHOLD", "500")),
            auto_approve_confidence=float(os.getenv("AUTO_APPROVE_CONFIDENCE", "0.95")),
        )
        return cls(
            llm_provider=LlmProvider(os.getenv("LLM_PROVIDER", "openai").lower()),
            llm_model=os.getenv("LLM_MODEL", "gpt-4o"),
            llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "30")),
            azure_deployment=os.getenv("AZURE_OPENAI_DEPLOYMENT") or None,
            azure_api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-06-01"),
            thresholds=thresholds,
            evidence_top_k=int(os.getenv("EVIDENCE_TOP_K", "5")),
            generation_max_attempts=int(os.getenv("GENERATION_MAX_ATTEMPTS", "3")),
            generation_backoff_seconds=float(os.getenv("GENERATION_BACKOFF_SECONDS", "0.5")),
            screen_prompt_injection=_env_flag("SCREEN_PROMPT_INJECTION", True),
            mask_pii_in_prompts=_env_flag("MASK_PII_IN_PROMPTS", True),
            persist_max_attempts=int(os.getenv("PERSIST_MAX_ATTEMPTS", "5")),
            documents_dir=os.getenv("DOCUMENTS_DIR", "./documents"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./claims_audit.db"),
            chroma_persist_dir=os.getenv("CHROMA_PERSIST_DIR", "./chroma_data"),
            embedding_model=os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"),
            policy_collection=os.getenv("POLICY_COLLECTION", "policy_clauses"),
        )


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
