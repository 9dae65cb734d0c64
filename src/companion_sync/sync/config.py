"""Configuration for the companion sync system."""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict


@dataclass(frozen=True)
class AutoHealingConfig:
    """Backoff and circuit settings for one integration."""
    base_backoff_seconds: float = 30.0
    max_backoff_seconds: float = 3600.0
    circuit_failure_threshold: int = 4
    circuit_open_seconds: float = 1200.0

    def validate(self) -> list:
        errors = []
        if self.base_backoff_seconds <= 0:
            errors.append(f"Base backoff must be positive, got {self.base_backoff_seconds}")
        if self.max_backoff_seconds < self.base_backoff_seconds:
            errors.append(f"Max backoff must be >= base backoff, got {self.max_backoff_seconds}")
        if self.circuit_failure_threshold < 1:
            errors.append(f"Circuit threshold must be >= 1, got {self.circuit_failure_threshold}")
        if self.circuit_open_seconds <= 0:
            errors.append(f"Circuit open window must be positive, got {self.circuit_open_seconds}")
        return errors


LMS_AUTO_HEALING = AutoHealingConfig(30.0, 60 * 60.0, 4, 20 * 60.0)
CALENDAR_AUTO_HEALING = AutoHealingConfig(60.0, 6 * 60 * 60.0, 4, 30 * 60.0)


def _default_auto_healing() -> Dict[str, AutoHealingConfig]:
    return {
        "canvas": LMS_AUTO_HEALING,
        "blackboard": LMS_AUTO_HEALING,
        "teams": LMS_AUTO_HEALING,
        "timeedit": CALENDAR_AUTO_HEALING,
        "tp": CALENDAR_AUTO_HEALING,
        "github": CALENDAR_AUTO_HEALING,
    }


def _default_intervals() -> Dict[str, float]:
    return {
        "canvas": 30 * 60.0,
        "blackboard": 30 * 60.0,
        "teams": 30 * 60.0,
        "timeedit": 7 * 24 * 60 * 60.0,
        "tp": 7 * 24 * 60 * 60.0,
        "github": 24 * 60 * 60.0,
    }


@dataclass
class SyncConfig:
    """Configuration settings for the companion sync system."""

    # Storage
    database_path: str = "companion.duckdb"

    # Polling
    sync_intervals_seconds: Dict[str, float] = field(default_factory=_default_intervals)
    auto_healing: Dict[str, AutoHealingConfig] = field(default_factory=_default_auto_healing)
    http_timeout_seconds: float = 20.0

    # Calendar import window
    integration_window_past_days: int = 7
    integration_window_future_days: int = 180

    # Recovery prompts
    recovery_prompt_threshold: int = 3
    recovery_prompt_cooldown_seconds: float = 6 * 60 * 60.0

    # Notification digest
    digest_morning_hour: int = 8
    digest_evening_hour: int = 18
    dispatcher_tick_seconds: float = 60.0

    # Health log
    health_log_retention_days: int = 30

    # Logging
    log_level: str = "INFO"

    def validate(self) -> None:
        """Validate configuration parameters."""
        errors = []

        for name, seconds in self.sync_intervals_seconds.items():
            if seconds <= 0:
                errors.append(f"Sync interval for {name} must be positive, got {seconds}")

        for name, policy in self.auto_healing.items():
            errors.extend(f"{name}: {message}" for message in policy.validate())

        if self.http_timeout_seconds <= 0:
            errors.append(f"HTTP timeout must be positive, got {self.http_timeout_seconds}")

        if self.integration_window_past_days < 0 or self.integration_window_future_days < 0:
            errors.append(
                f"Integration window must be non-negative, got "
                f"{self.integration_window_past_days}/{self.integration_window_future_days}"
            )

        if self.recovery_prompt_threshold < 1:
            errors.append(f"Recovery prompt threshold must be >= 1, got {self.recovery_prompt_threshold}")

        if self.recovery_prompt_cooldown_seconds < 0:
            errors.append(f"Recovery prompt cooldown must be non-negative, got {self.recovery_prompt_cooldown_seconds}")

        if not (0 <= self.digest_morning_hour < self.digest_evening_hour <= 23):
            errors.append(
                f"Digest hours must satisfy 0 <= morning < evening <= 23, "
                f"got {self.digest_morning_hour}/{self.digest_evening_hour}"
            )

        if self.dispatcher_tick_seconds <= 0:
            errors.append(f"Dispatcher tick must be positive, got {self.dispatcher_tick_seconds}")

        if self.health_log_retention_days < 1:
            errors.append(f"Health log retention must be >= 1 day, got {self.health_log_retention_days}")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            errors.append(f"Log level must be one of {valid_log_levels}, got {self.log_level}")

        if errors:
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

    def interval_for(self, integration: str) -> float:
        return self.sync_intervals_seconds.get(integration, 30 * 60.0)

    def auto_healing_for(self, integration: str) -> AutoHealingConfig:
        return self.auto_healing.get(integration, LMS_AUTO_HEALING)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        data = asdict(self)
        data["auto_healing"] = {name: asdict(policy) for name, policy in self.auto_healing.items()}
        return data

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Create configuration from environment variables with validation."""
        try:
            intervals = _default_intervals()
            for name in intervals:
                raw = os.getenv(f"COMPANION_{name.upper()}_SYNC_INTERVAL")
                if raw:
                    intervals[name] = float(raw)

            config = cls(
                database_path=os.getenv("COMPANION_DATABASE_PATH", "companion.duckdb"),
                sync_intervals_seconds=intervals,
                http_timeout_seconds=float(os.getenv("COMPANION_HTTP_TIMEOUT", "20")),
                integration_window_past_days=int(os.getenv("COMPANION_WINDOW_PAST_DAYS", "7")),
                integration_window_future_days=int(os.getenv("COMPANION_WINDOW_FUTURE_DAYS", "180")),
                recovery_prompt_threshold=int(os.getenv("COMPANION_RECOVERY_PROMPT_THRESHOLD", "3")),
                recovery_prompt_cooldown_seconds=float(
                    os.getenv("COMPANION_RECOVERY_PROMPT_COOLDOWN", str(6 * 60 * 60))
                ),
                digest_morning_hour=int(os.getenv("COMPANION_DIGEST_MORNING_HOUR", "8")),
                digest_evening_hour=int(os.getenv("COMPANION_DIGEST_EVENING_HOUR", "18")),
                dispatcher_tick_seconds=float(os.getenv("COMPANION_DISPATCHER_TICK", "60")),
                health_log_retention_days=int(os.getenv("COMPANION_HEALTH_LOG_RETENTION_DAYS", "30")),
                log_level=os.getenv("COMPANION_LOG_LEVEL", "INFO"),
            )

            config.validate()
            return config

        except ValueError as e:
            if "could not convert" in str(e) or "invalid literal" in str(e):
                raise ValueError(f"Invalid environment variable format: {e}")
            raise

    @classmethod
    def from_file(cls, config_path: str) -> "SyncConfig":
        """Load configuration from a .env file."""
        from dotenv import load_dotenv

        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        load_dotenv(config_file)

        return cls.from_env()

    def get_production_overrides(self) -> Dict[str, Any]:
        """Get recommended production configuration overrides."""
        return {
            "log_level": "WARNING",
            "health_log_retention_days": 90,
        }

    def apply_production_settings(self) -> "SyncConfig":
        """Apply production-ready configuration settings."""
        overrides = self.get_production_overrides()

        new_config = SyncConfig(
            database_path=self.database_path,
            sync_intervals_seconds=dict(self.sync_intervals_seconds),
            auto_healing=dict(self.auto_healing),
            http_timeout_seconds=self.http_timeout_seconds,
            integration_window_past_days=self.integration_window_past_days,
            integration_window_future_days=self.integration_window_future_days,
            recovery_prompt_threshold=self.recovery_prompt_threshold,
            recovery_prompt_cooldown_seconds=self.recovery_prompt_cooldown_seconds,
            digest_morning_hour=self.digest_morning_hour,
            digest_evening_hour=self.digest_evening_hour,
            dispatcher_tick_seconds=self.dispatcher_tick_seconds,
            **overrides,
        )
        new_config.validate()

        return new_config
