"""
Configuration management for the mention resolution pipeline
"""
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application Configuration
    app_name: str = Field(default="mention-resolution", alias="APP_NAME")
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")

    # Neo4j Configuration
    neo4j_uri: str = Field(default="bolt://localhost:7687", alias="NEO4J_URI")
    neo4j_user: str = Field(default="neo4j", alias="NEO4J_USER")
    neo4j_password: str = Field(default="password", alias="NEO4J_PASSWORD")
    neo4j_database: str = Field(default="neo4j", alias="NEO4J_DATABASE")

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    review_key_prefix: str = Field(default="review", alias="REVIEW_KEY_PREFIX")

    # Automated reviewer (LLM) Configuration
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    default_llm_model: str = Field(default="claude-sonnet-4-5-20250929", alias="DEFAULT_LLM_MODEL")
    llm_temperature: float = Field(default=0.3, alias="LLM_TEMPERATURE")
    llm_max_tokens: int = Field(default=500, alias="LLM_MAX_TOKENS")
    llm_timeout_seconds: float = Field(default=30.0, alias="LLM_TIMEOUT_SECONDS")
    enable_llm_review: bool = Field(default=True, alias="ENABLE_LLM_REVIEW")

    # Identity matching thresholds (0-100)
    fuzzy_match_threshold: int = Field(default=85, alias="FUZZY_MATCH_THRESHOLD")
    high_confidence_threshold: int = Field(default=95, alias="HIGH_CONFIDENCE_THRESHOLD")

    # Curation thresholds
    duplicate_similarity_threshold: float = Field(default=0.85, alias="DUPLICATE_SIMILARITY_THRESHOLD")
    reviewer_auto_approve_confidence: float = Field(default=0.85, alias="REVIEWER_AUTO_APPROVE_CONFIDENCE")
    min_org_extraction_confidence: float = Field(default=0.75, alias="MIN_ORG_EXTRACTION_CONFIDENCE")

    # Confidence scorer weights
    weight_source_reliability: float = Field(default=0.35, alias="WEIGHT_SOURCE_RELIABILITY")
    weight_extraction_quality: float = Field(default=0.15, alias="WEIGHT_EXTRACTION_QUALITY")
    weight_match_quality: float = Field(default=0.35, alias="WEIGHT_MATCH_QUALITY")
    weight_evidence_strength: float = Field(default=0.15, alias="WEIGHT_EVIDENCE_STRENGTH")

    # Pipeline / work queue
    pipeline_batch_size: int = Field(default=10, alias="PIPELINE_BATCH_SIZE")
    job_queue_name: str = Field(default="ingestion", alias="JOB_QUEUE_NAME")
    job_max_attempts: int = Field(default=3, alias="JOB_MAX_ATTEMPTS")
    job_backoff_base: float = Field(default=2.0, alias="JOB_BACKOFF_BASE")
    job_result_ttl: int = Field(default=86400, alias="JOB_RESULT_TTL")

    # Registry snapshot
    registry_path: Optional[str] = Field(default=None, alias="REGISTRY_PATH")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Export for convenience
settings = get_settings()
