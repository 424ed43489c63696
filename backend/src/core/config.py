"""Central configuration management for the Dash AI router"""

import os
from decimal import Decimal
from typing import Dict, Any, Optional, List
from pathlib import Path
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from ..models.ai_request import ModelDescriptor
from ..models.subscription import (
    ProviderName,
    QuotaBucket,
    QuotaPeriod,
    ServiceType,
    SubscriptionTier,
)


class StorageConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    type: str = Field(default="filesystem", description="Ledger backend: 'redis' or 'filesystem'")
    redis_url: str = "redis://localhost:6379"
    filesystem_path: str = "./ledger_store"
    key_prefix: str = "dash_ai"


class AuthConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AUTH_", extra="ignore")

    api_key_header: str = "X-API-Key"
    user_header: str = "X-User-Id"
    tenant_header: str = "X-Tenant-Id"
    test_api_key: str = "test_api_key_123456"
    test_user: str = "test_user"


class ProviderCredentials(BaseSettings):
    """Vendor API credentials, read from the usual environment variables"""
    model_config = SettingsConfigDict(extra="ignore")

    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    glm_api_key: Optional[str] = None
    glm_base_url: str = "https://open.bigmodel.cn/api/paas/v4"

    def api_key_for(self, provider: ProviderName) -> Optional[str]:
        return {
            ProviderName.ANTHROPIC: self.anthropic_api_key,
            ProviderName.OPENAI: self.openai_api_key,
            ProviderName.GLM: self.glm_api_key,
        }[ProviderName(provider)]


class TelemetryConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TELEMETRY_", extra="ignore")

    enabled: bool = False
    service_name: str = "dash-ai-router"
    otlp_endpoint: str = "http://localhost:4317"


class QuotaRule(BaseModel):
    """Limit for one bucket; -1 means unlimited"""
    limit: int = Field(..., ge=-1)
    period: QuotaPeriod = QuotaPeriod.MONTH

    @property
    def unlimited(self) -> bool:
        return self.limit == -1


class ServiceOverride(BaseModel):
    """Administrative per-service routing override"""
    is_active: bool = True
    provider_override: Optional[ProviderName] = None
    models: Dict[SubscriptionTier, str] = Field(default_factory=dict, description="Tier to model_id")
    max_tokens: Optional[int] = Field(None, gt=0)
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)


def _default_catalog() -> List[ModelDescriptor]:
    return [
        ModelDescriptor(
            provider=ProviderName.ANTHROPIC,
            model_id="claude-3-haiku-20240307",
            display_name="Claude 3 Haiku",
            vision=True,
            max_output_tokens=4096,
            input_price_per_million=Decimal("0.25"),
            output_price_per_million=Decimal("1.25"),
            min_tier=SubscriptionTier.FREE,
            quality_score=0.70,
        ),
        ModelDescriptor(
            provider=ProviderName.ANTHROPIC,
            model_id="claude-3-5-sonnet-20241022",
            display_name="Claude 3.5 Sonnet",
            vision=True,
            max_output_tokens=8192,
            input_price_per_million=Decimal("3.00"),
            output_price_per_million=Decimal("15.00"),
            min_tier=SubscriptionTier.PREMIUM,
            quality_score=0.90,
        ),
        ModelDescriptor(
            provider=ProviderName.ANTHROPIC,
            model_id="claude-sonnet-4-20250514",
            display_name="Claude Sonnet 4",
            vision=True,
            max_output_tokens=8192,
            input_price_per_million=Decimal("3.00"),
            output_price_per_million=Decimal("15.00"),
            min_tier=SubscriptionTier.PRO,
            quality_score=0.95,
        ),
        ModelDescriptor(
            provider=ProviderName.OPENAI,
            model_id="gpt-4o-mini",
            display_name="GPT-4o mini",
            vision=True,
            max_output_tokens=4096,
            input_price_per_million=Decimal("0.15"),
            output_price_per_million=Decimal("0.60"),
            min_tier=SubscriptionTier.FREE,
            quality_score=0.72,
        ),
        ModelDescriptor(
            provider=ProviderName.OPENAI,
            model_id="gpt-4o",
            display_name="GPT-4o",
            vision=True,
            max_output_tokens=4096,
            input_price_per_million=Decimal("2.50"),
            output_price_per_million=Decimal("10.00"),
            min_tier=SubscriptionTier.PREMIUM,
            quality_score=0.88,
        ),
        ModelDescriptor(
            provider=ProviderName.GLM,
            model_id="glm-4-plus",
            display_name="GLM-4 Plus",
            vision=False,
            max_output_tokens=4096,
            input_price_per_million=Decimal("0.01"),
            output_price_per_million=Decimal("0.04"),
            min_tier=SubscriptionTier.PREMIUM,
            quality_score=0.80,
        ),
        ModelDescriptor(
            provider=ProviderName.GLM,
            model_id="glm-4.6",
            display_name="GLM-4.6",
            vision=False,
            max_output_tokens=8192,
            input_price_per_million=Decimal("0.015"),
            output_price_per_million=Decimal("0.06"),
            min_tier=SubscriptionTier.PREMIUM,
            quality_score=0.85,
        ),
    ]


def _tier_rules(ai_requests: int, exams: int, explanations: int, chat_per_day: int) -> Dict[QuotaBucket, QuotaRule]:
    return {
        QuotaBucket.AI_REQUESTS: QuotaRule(limit=ai_requests, period=QuotaPeriod.MONTH),
        QuotaBucket.EXAMS: QuotaRule(limit=exams, period=QuotaPeriod.MONTH),
        QuotaBucket.EXPLANATIONS: QuotaRule(limit=explanations, period=QuotaPeriod.MONTH),
        QuotaBucket.CHAT_MESSAGES: QuotaRule(limit=chat_per_day, period=QuotaPeriod.DAY),
    }


def _default_quotas() -> Dict[SubscriptionTier, Dict[QuotaBucket, QuotaRule]]:
    return {
        SubscriptionTier.FREE: _tier_rules(50, 3, 5, 10),
        SubscriptionTier.STARTER: _tier_rules(500, 10, 20, 50),
        SubscriptionTier.BASIC: _tier_rules(1500, 30, 100, 200),
        SubscriptionTier.PREMIUM: _tier_rules(2500, 100, 500, 1000),
        SubscriptionTier.PRO: _tier_rules(5000, 250, 1000, 2000),
        SubscriptionTier.ENTERPRISE: _tier_rules(-1, -1, -1, -1),
    }


class RouterConfig(BaseModel):
    """Routing data: catalog, quota table, overrides and global switches

    Passed explicitly into the selector, cost calculator and quota accountant.
    """
    default_provider: ProviderName = ProviderName.ANTHROPIC
    enable_automatic_fallback: bool = True
    max_chain_length: int = Field(3, ge=1)

    request_timeout_seconds: float = Field(60.0, gt=0)
    retries_per_candidate: int = Field(1, ge=0)
    max_backoff_seconds: float = Field(30.0, ge=0)
    default_max_tokens: int = Field(4096, gt=0)
    default_temperature: float = 0.7
    redact_pii: bool = True

    reservation_ttl_seconds: int = Field(300, gt=0)
    allow_on_ledger_outage: bool = True
    ledger_write_attempts: int = Field(2, ge=1)
    ledger_retry_delay_seconds: float = Field(0.2, ge=0)
    usage_history_limit: int = Field(100, gt=0)

    circuit_breaker_enabled: bool = True
    circuit_breaker_threshold: int = Field(3, ge=1)
    circuit_breaker_cooldown_seconds: float = Field(60.0, ge=0)

    catalog: List[ModelDescriptor] = Field(default_factory=_default_catalog)
    quotas: Dict[SubscriptionTier, Dict[QuotaBucket, QuotaRule]] = Field(default_factory=_default_quotas)
    service_overrides: Dict[ServiceType, ServiceOverride] = Field(default_factory=dict)

    @field_validator("catalog")
    @classmethod
    def _unique_model_ids(cls, catalog: List[ModelDescriptor]) -> List[ModelDescriptor]:
        seen = set()
        for descriptor in catalog:
            if descriptor.model_id in seen:
                raise ValueError(f"Duplicate model_id in catalog: {descriptor.model_id}")
            seen.add(descriptor.model_id)
        return catalog

    @model_validator(mode="after")
    def _quota_for_every_tier(self) -> "RouterConfig":
        missing = [tier.value for tier in SubscriptionTier if tier not in self.quotas]
        if missing:
            raise ValueError(f"Quota table missing tiers: {', '.join(missing)}")
        return self

    @property
    def request_deadline_seconds(self) -> float:
        """Worst case for one request: every candidate times out on each try and backs off between tries"""
        tries = 1 + self.retries_per_candidate
        per_candidate = (
            tries * self.request_timeout_seconds
            + self.retries_per_candidate * self.max_backoff_seconds
        )
        return self.max_chain_length * per_candidate

    def get_model(self, model_id: str) -> Optional[ModelDescriptor]:
        for descriptor in self.catalog:
            if descriptor.model_id == model_id:
                return descriptor
        return None

    def quota_rule(self, tier: SubscriptionTier, bucket: QuotaBucket) -> QuotaRule:
        """Limit for a tier/bucket; a bucket absent from the table falls back to ai_requests"""
        rules = self.quotas[tier]
        return rules.get(bucket) or rules[QuotaBucket.AI_REQUESTS]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "Dash AI Router"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    # Read directly by logger.py, accepted here so it validates when present
    airouter_log_level: Optional[str] = "INFO"

    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    providers: ProviderCredentials = Field(default_factory=ProviderCredentials)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)

    # Seeded profiles for the static profile provider: user_id -> profile fields
    profiles: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def load_from_yaml(cls, yaml_path: Optional[str] = None) -> "Settings":
        """Load settings from YAML file with environment overrides"""
        if yaml_path and Path(yaml_path).exists():
            with open(yaml_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
                return cls(**config_data)
        return cls()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    yaml_path = os.getenv("CONFIG_PATH", "./config/settings.yaml")
    return Settings.load_from_yaml(yaml_path)
