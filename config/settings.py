"""
Configuration settings for the EdgeFinder engine.
Uses pydantic-settings for validation and environment variable loading.

Structured sections (providers, sports, strategies) are easiest to supply
as a JSON file pointed to by EDGE_CONFIG_FILE; flat values can also come
from the environment, e.g. EDGE_RISK__BANKROLL=25000.
"""

import os
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchMode(str, Enum):
    """Where approved opportunities go."""
    SHADOW = "shadow"  # Simulated placement, log everything
    ALERT = "alert"    # Human acts on alerts
    LIVE = "live"      # Automated placement through the provider


# =============================================================================
# Providers
# =============================================================================

class RateLimitSettings(BaseModel):
    max_requests: int = Field(default=10, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=30.0, ge=0)


class BreakerSettings(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    timeout_seconds: float = Field(default=30.0, ge=0)


class ProviderSettings(BaseModel):
    """Settings for one odds provider connection."""

    kind: str = "odds_api"          # odds_api | static
    normalizer: str = "odds_api"    # odds_api | flat
    enabled: bool = True

    base_url: str = "https://api.the-odds-api.com/v4"
    api_key: str = ""
    regions: list[str] = Field(default_factory=lambda: ["us", "eu", "uk"])
    markets: list[str] = Field(default_factory=lambda: ["h2h", "spreads", "totals"])
    bookmakers: list[str] = Field(default_factory=list)
    odds_format: str = "decimal"
    payload_file: str = ""          # static provider replay file
    request_timeout: float = 15.0

    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)


class SportSettings(BaseModel):
    """Per-sport enablement and polling."""

    enabled: bool = True
    providers: list[str] = Field(default_factory=list)  # Empty = every enabled provider
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    filters: dict[str, Any] = Field(default_factory=dict)


class AggregatorSettings(BaseModel):
    max_parallelism: int = Field(default=4, ge=1)
    fetch_timeout_seconds: float = Field(default=20.0, gt=0)
    event_retention_hours: float = Field(
        default=6.0,
        gt=0,
        description="Forget events no provider has reported for this long past their start",
    )


# =============================================================================
# Strategies
# =============================================================================

class StrategySettings(BaseModel):
    """One configured strategy instance."""

    name: str
    type: str
    enabled: bool = True
    params: dict[str, Any] = Field(default_factory=dict)


def _default_strategies() -> list[StrategySettings]:
    return [
        StrategySettings(
            name="arbitrage",
            type="arbitrage",
            params={"min_profit_pct": "0.01", "max_skew_seconds": 30, "max_quote_age_seconds": 120},
        ),
        StrategySettings(
            name="value",
            type="value",
            enabled=False,  # Needs a probability model wired in
            params={"edge_threshold": "0.02", "max_quote_age_seconds": 120},
        ),
        StrategySettings(
            name="steam",
            type="steam_chase",
            params={"min_move": "0.03", "window_seconds": 300, "min_books": 2},
        ),
    ]


# =============================================================================
# Risk / dispatch / alerts / journal
# =============================================================================

class CorrelationRuleSettings(BaseModel):
    """Markets on the same event that must not be held together."""

    name: str
    markets: list[str]
    same_event: bool = True


class RiskSettings(BaseModel):
    """Bankroll and exposure limits (amounts are in bankroll currency)."""

    bankroll: Decimal = Decimal("10000")
    per_bet_limit: Decimal = Decimal("0.02")        # Fraction of bankroll
    daily_loss_limit: Decimal = Decimal("3000")     # Realized + worst-case pending
    max_event_exposure: Decimal = Decimal("400")
    max_sport_exposure: Decimal = Decimal("1500")
    max_total_exposure: Decimal = Decimal("2500")
    window_hours: float = Field(default=24.0, gt=0)

    allow_downsize: bool = False
    min_stake: Decimal = Decimal("5")
    unit_stake: Decimal = Decimal("100")
    kelly_multiplier: Decimal = Decimal("0.25")     # Quarter Kelly

    correlation_rules: list[CorrelationRuleSettings] = Field(default_factory=lambda: [
        CorrelationRuleSettings(name="same_game_sides", markets=["moneyline", "spread"]),
    ])

    @field_validator("per_bet_limit", "kelly_multiplier")
    @classmethod
    def _fraction(cls, value: Decimal) -> Decimal:
        if not Decimal("0") <= value <= Decimal("1"):
            raise ValueError("must be a fraction between 0 and 1")
        return value


class DispatchSettings(BaseModel):
    mode: DispatchMode = DispatchMode.SHADOW


class AlertSettings(BaseModel):
    discord_webhook_url: str = Field(default="", description="Discord webhook URL")
    min_edge_for_alert: Decimal = Decimal("0")


class JournalSettings(BaseModel):
    directory: str = ""  # Empty = in-memory journal


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="EDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = "INFO"
    json_logs: bool = True

    providers: dict[str, ProviderSettings] = Field(default_factory=lambda: {
        "odds_api": ProviderSettings(),
    })
    sports: dict[str, SportSettings] = Field(default_factory=lambda: {
        "basketball_nba": SportSettings(),
    })
    aggregator: AggregatorSettings = Field(default_factory=AggregatorSettings)
    strategies: list[StrategySettings] = Field(default_factory=_default_strategies)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    journal: JournalSettings = Field(default_factory=JournalSettings)

    # Opportunity keys remembered for de-duplication
    emitted_history_size: int = Field(default=50_000, ge=1)

    def enabled_providers(self) -> dict[str, ProviderSettings]:
        return {name: p for name, p in self.providers.items() if p.enabled}

    def enabled_sports(self) -> dict[str, SportSettings]:
        return {name: s for name, s in self.sports.items() if s.enabled}


def load_settings(config_file: Optional[str] = None) -> Settings:
    """
    Build settings from the environment plus an optional JSON file.

    Values in the file take precedence over environment variables.
    """
    path = config_file or os.getenv("EDGE_CONFIG_FILE", "")
    if path:
        data = orjson.loads(Path(path).read_bytes())
        return Settings(**data)
    return Settings()
