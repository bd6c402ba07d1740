"""Service settings for the dependency policy engine.

All settings use the DEPENDENCY_POLICY_ prefix and cover:
- Logging (level and renderer)
- Batch evaluation (worker pool size, deadline)
- Rule condition combination mode
- Policy template catalog
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the dependency policy engine.

    Environment variable prefix: DEPENDENCY_POLICY_
    """

    service_name: str = "dependency-policy-engine"

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(
        default="INFO",
        description="Minimum log level for structured logs (DEBUG, INFO, WARNING, ERROR).",
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines. Disable for human-readable console output.",
    )

    # -------------------------------------------------------------------------
    # Batch evaluation
    # -------------------------------------------------------------------------

    max_concurrency: int = Field(
        default=8,
        ge=1,
        description="Maximum number of dependencies evaluated concurrently within one batch.",
    )
    evaluation_deadline_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Deadline for a whole evaluation batch. Dependencies still pending or "
        "in flight when it passes are reported as SKIPPED. None disables the deadline.",
    )
    default_condition_mode: Literal["SEQUENTIAL", "GROUPED"] = Field(
        default="SEQUENTIAL",
        description="How rule conditions combine when a rule does not set conditionMode. "
        "SEQUENTIAL is a left-to-right fold; GROUPED ORs together AND-groups.",
    )
    execute_warning_actions: bool = Field(
        default=False,
        description="Also run configured actions for warnings (rules without BLOCK).",
    )

    # -------------------------------------------------------------------------
    # Policy templates
    # -------------------------------------------------------------------------

    template_dir: Path | None = Field(
        default=None,
        description="Directory of policy template YAML files. Defaults to the bundled catalog.",
    )
    review_interval_days: int = Field(
        default=90,
        ge=1,
        description="Days until the next review of a policy created from a template.",
    )

    model_config = SettingsConfigDict(env_prefix="DEPENDENCY_POLICY_")
