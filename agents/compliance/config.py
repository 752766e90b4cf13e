"""Configuration management for the compliance automation engine.

Provides engine knobs with sensible defaults and environment-based
overrides.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

DEFAULT_CATALOG_PATH = Path(__file__).parent / "rules" / "default_catalog.yaml"


@dataclass
class AutomationConfig:
    """Configuration for compliance scan runs.

    Supports overrides via environment variables with pattern:
    COMPLIANCE_<SETTING>
    """

    # Per-run caps
    max_tasks_per_run: int = 5
    max_alerts_per_category: int = 3

    # Fleet-wide admin notification thresholds (counted over all issues found)
    critical_notification_threshold: int = 5
    warning_notification_threshold: int = 10

    # Task due-date lead time per severity (days)
    task_lead_days: Dict[str, int] = field(
        default_factory=lambda: {"critical": 3, "warning": 7, "info": 14}
    )

    # Task priority per severity
    task_priority: Dict[str, str] = field(
        default_factory=lambda: {"critical": "urgent", "warning": "high", "info": "medium"}
    )

    # Run time budget (seconds); 0 disables the budget
    time_budget_seconds: float = 120.0

    # Calendar timezone used for day arithmetic
    timezone: str = "UTC"

    # Trigger catalog location
    catalog_path: str = str(DEFAULT_CATALOG_PATH)

    # Read API settings
    read_api_base_url: str = "http://localhost:8000"
    read_api_timeout: int = 10

    # Issues included in the returned result for display
    max_display_issues: int = 200

    @classmethod
    def from_env(cls, prefix: str = "COMPLIANCE") -> "AutomationConfig":
        """Create configuration with environment overrides.

        Args:
            prefix: Environment variable prefix

        Returns:
            Configured instance
        """
        config = cls()

        config.max_tasks_per_run = int(
            os.getenv(f"{prefix}_MAX_TASKS_PER_RUN", config.max_tasks_per_run)
        )
        config.max_alerts_per_category = int(
            os.getenv(f"{prefix}_MAX_ALERTS_PER_CATEGORY", config.max_alerts_per_category)
        )
        config.critical_notification_threshold = int(
            os.getenv(
                f"{prefix}_CRITICAL_NOTIFICATION_THRESHOLD",
                config.critical_notification_threshold,
            )
        )
        config.warning_notification_threshold = int(
            os.getenv(
                f"{prefix}_WARNING_NOTIFICATION_THRESHOLD",
                config.warning_notification_threshold,
            )
        )
        config.time_budget_seconds = float(
            os.getenv(f"{prefix}_TIME_BUDGET_SECONDS", config.time_budget_seconds)
        )
        config.timezone = os.getenv(f"{prefix}_TIMEZONE", config.timezone)
        config.catalog_path = os.getenv(f"{prefix}_CATALOG_PATH", config.catalog_path)
        config.read_api_base_url = os.getenv(
            f"{prefix}_READ_API_URL", config.read_api_base_url
        )
        config.read_api_timeout = int(
            os.getenv(f"{prefix}_READ_API_TIMEOUT", config.read_api_timeout)
        )

        for severity in ("critical", "warning", "info"):
            env_key = f"{prefix}_{severity.upper()}_LEAD_DAYS"
            if env_key in os.environ:
                config.task_lead_days[severity] = int(os.environ[env_key])

        return config

    @property
    def tz(self) -> ZoneInfo:
        """Timezone used to derive calendar dates."""
        return ZoneInfo(self.timezone)

    def get_lead_days(self, severity: str) -> int:
        """Get task due-date lead time for a severity.

        Args:
            severity: Severity name (info, warning, critical)

        Returns:
            Lead time in days

        Raises:
            ValueError: If severity is unknown
        """
        try:
            return self.task_lead_days[severity]
        except KeyError:
            raise ValueError(f"Invalid severity: {severity}") from None

    def get_priority(self, severity: str) -> str:
        return self.task_priority.get(severity, "medium")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration
        """
        return {
            "max_tasks_per_run": self.max_tasks_per_run,
            "max_alerts_per_category": self.max_alerts_per_category,
            "critical_notification_threshold": self.critical_notification_threshold,
            "warning_notification_threshold": self.warning_notification_threshold,
            "task_lead_days": dict(self.task_lead_days),
            "task_priority": dict(self.task_priority),
            "time_budget_seconds": self.time_budget_seconds,
            "timezone": self.timezone,
            "catalog_path": self.catalog_path,
            "read_api_base_url": self.read_api_base_url,
            "read_api_timeout": self.read_api_timeout,
            "max_display_issues": self.max_display_issues,
        }


def default_config(overrides: Optional[Dict[str, Any]] = None) -> AutomationConfig:
    """Environment-derived configuration with optional explicit overrides."""
    config = AutomationConfig.from_env()
    for key, value in (overrides or {}).items():
        if not hasattr(config, key):
            raise ValueError(f"Unknown configuration key: {key}")
        setattr(config, key, value)
    return config
