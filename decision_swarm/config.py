"""Settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _load_env() -> None:
    """Load .env from project root if it exists."""
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)


_load_env()


@dataclass(frozen=True)
class Settings:
    # Provider API keys
    siliconflow_api_key: str = field(
        default_factory=lambda: os.environ.get("SILICONFLOW_API_KEY", "")
    )
    deepseek_api_key: str = field(default_factory=lambda: os.environ.get("DEEPSEEK_API_KEY", ""))
    kimi_api_key: str = field(default_factory=lambda: os.environ.get("KIMI_API_KEY", ""))
    zhipu_api_key: str = field(default_factory=lambda: os.environ.get("ZHIPU_API_KEY", ""))
    aliyun_api_key: str = field(default_factory=lambda: os.environ.get("ALIYUN_API_KEY", ""))
    baidu_api_key: str = field(default_factory=lambda: os.environ.get("BAIDU_API_KEY", ""))
    anthropic_api_key: str = field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", ""))

    # Search keys
    tavily_api_key: str = field(default_factory=lambda: os.environ.get("TAVILY_API_KEY", ""))
    serper_api_key: str = field(default_factory=lambda: os.environ.get("SERPER_API_KEY", ""))
    searxng_url: str = field(default_factory=lambda: os.environ.get("SEARXNG_URL", ""))

    # Provider calls
    provider_timeout: float = field(
        default_factory=lambda: float(os.environ.get("PROVIDER_TIMEOUT", "30"))
    )
    temperature: float = field(default_factory=lambda: float(os.environ.get("TEMPERATURE", "0.7")))
    max_tokens: int = field(default_factory=lambda: int(os.environ.get("MAX_TOKENS", "4096")))

    # Search
    search_results: int = field(default_factory=lambda: int(os.environ.get("SEARCH_RESULTS", "5")))
    context_snippets: int = field(
        default_factory=lambda: int(os.environ.get("CONTEXT_SNIPPETS", "3"))
    )

    # Hard limits (yuan / months)
    max_investment: float = field(
        default_factory=lambda: float(os.environ.get("MAX_INVESTMENT", "130000"))
    )
    roi_months: int = field(default_factory=lambda: int(os.environ.get("ROI_MONTHS", "12")))
    monthly_reserve: float = field(
        default_factory=lambda: float(os.environ.get("MONTHLY_RESERVE", "5000"))
    )

    # Constraint enforcement
    correction_policy: str = field(
        default_factory=lambda: os.environ.get("CORRECTION_POLICY", "correct")
    )
    max_regenerations: int = field(
        default_factory=lambda: int(os.environ.get("MAX_REGENERATIONS", "1"))
    )

    # Multi-topic scheduling
    cycle_policy: str = field(default_factory=lambda: os.environ.get("CYCLE_POLICY", "raise"))

    # Learning
    max_rules: int = field(default_factory=lambda: int(os.environ.get("MAX_RULES", "200")))
    rule_decay_per_month: float = field(
        default_factory=lambda: float(os.environ.get("RULE_DECAY_PER_MONTH", "5"))
    )

    # Storage
    data_dir: str = field(default_factory=lambda: os.environ.get("DATA_DIR", "data/"))
    run_log_dir: str = field(default_factory=lambda: os.environ.get("RUN_LOG_DIR", "runs/"))
    profile_path: str = field(default_factory=lambda: os.environ.get("PROFILE_PATH", ""))

    def provider_keys(self) -> dict[str, str]:
        """Provider name -> API key, only for providers with a key set."""
        keys = {
            "siliconflow": self.siliconflow_api_key,
            "deepseek": self.deepseek_api_key,
            "kimi": self.kimi_api_key,
            "zhipu": self.zhipu_api_key,
            "aliyun": self.aliyun_api_key,
            "baidu": self.baidu_api_key,
            "anthropic": self.anthropic_api_key,
        }
        return {name: key for name, key in keys.items() if key}

    def available_backends(self) -> list[str]:
        """Return list of search backends that have valid configuration."""
        backends = []
        if self.tavily_api_key:
            backends.append("tavily")
        if self.serper_api_key:
            backends.append("serper")
        if self.searxng_url:
            backends.append("searxng")
        return backends

    def validate(self) -> list[str]:
        """Return list of validation errors. Empty list means valid."""
        errors = []
        if not self.provider_keys():
            errors.append(
                "At least one provider key is required "
                "(SILICONFLOW_API_KEY, DEEPSEEK_API_KEY, KIMI_API_KEY, ZHIPU_API_KEY, "
                "ALIYUN_API_KEY, BAIDU_API_KEY or ANTHROPIC_API_KEY)"
            )
        if self.provider_timeout <= 0:
            errors.append("PROVIDER_TIMEOUT must be > 0")
        if self.max_investment <= 0:
            errors.append("MAX_INVESTMENT must be > 0")
        if self.roi_months < 1:
            errors.append("ROI_MONTHS must be >= 1")
        if self.correction_policy not in ("correct", "regenerate"):
            errors.append(
                f"CORRECTION_POLICY must be 'correct' or 'regenerate', "
                f"got '{self.correction_policy}'"
            )
        if self.max_regenerations < 0:
            errors.append("MAX_REGENERATIONS must be >= 0")
        if self.cycle_policy not in ("raise", "force_lowest"):
            errors.append(
                f"CYCLE_POLICY must be 'raise' or 'force_lowest', got '{self.cycle_policy}'"
            )
        if self.max_rules < 1:
            errors.append("MAX_RULES must be >= 1")
        return errors

    def warnings(self) -> list[str]:
        """Return list of non-fatal configuration warnings."""
        warns: list[str] = []
        backends = self.available_backends()
        if len(backends) < 2:
            warns.append(
                f"Only {len(backends)} search backend(s) configured "
                f"({', '.join(backends) or 'none'}). Cross-source verification needs >= 2; "
                "search will be skipped."
            )
        if self.provider_timeout < 10:
            warns.append(
                f"PROVIDER_TIMEOUT={self.provider_timeout}s is aggressive. "
                "Reasoning models often need >= 30s."
            )
        return warns


def get_settings() -> Settings:
    """Create Settings from current environment."""
    return Settings()
