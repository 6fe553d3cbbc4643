"""
Configuration module for the visibility scan backend.
Reads configuration from environment variables and .env file.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    """Configuration class that reads from environment variables."""

    def __init__(self):
        # Provider credentials
        self.OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
        self.ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
        self.GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
        self.PERPLEXITY_API_KEY: Optional[str] = os.getenv("PERPLEXITY_API_KEY")
        self.TAVILY_API_KEY: Optional[str] = os.getenv("TAVILY_API_KEY")
        self.REDIS_URL: Optional[str] = os.getenv("REDIS_URL", "redis://localhost:6379")

        # Models
        self.OPENAI_SEARCH_MODEL: str = os.getenv("OPENAI_SEARCH_MODEL", "o4-mini")
        self.OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")
        self.OPENAI_MINI_MODEL: str = os.getenv("OPENAI_MINI_MODEL", "gpt-4o-mini")
        self.ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
        self.GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.PERPLEXITY_MODEL: str = os.getenv("PERPLEXITY_MODEL", "sonar-pro")
        self.PERPLEXITY_BASE_URL: str = os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai")

        # Dispatch tunables
        self.PROVIDER_TIMEOUT_SECS: float = _float_env("PROVIDER_TIMEOUT_SECS", 60.0)
        self.EMPTY_RETRY_DELAY_SECS: float = _float_env("EMPTY_RETRY_DELAY_SECS", 1.0)
        self.PROBE_PACING_SECONDS: float = _float_env("PROBE_PACING_SECONDS", 0.5)
        self.ANSWER_MAX_TOKENS: int = _int_env("ANSWER_MAX_TOKENS", 2000)
        self.BRAND_MAX_TOKENS: int = _int_env("BRAND_MAX_TOKENS", 800)
        # 0 disables the distributed per-platform limiter
        self.PLATFORM_MAX_REQUESTS_PER_MINUTE: int = _int_env("PLATFORM_MAX_REQUESTS_PER_MINUTE", 0)
        self.SEARCH_MAX_RESULTS: int = _int_env("SEARCH_MAX_RESULTS", 5)

        # "redis" persists cost entries through RedisCostSink; empty keeps them in memory only
        self.COST_SINK: str = os.getenv("COST_SINK", "").strip().lower()


# Global config instance
cfg = Config()
