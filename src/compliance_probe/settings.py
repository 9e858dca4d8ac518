# settings.py
# Run configuration. Values come from the environment (a local .env is
# loaded first); CLI flags in run.py override them.
#
#   PROBE_REPORTS_DIR      output directory        (default: reports)
#   PROBE_WORKERS          assertion worker count  (default: 1, sequential)
#   PROBE_COMMAND_TIMEOUT  per-process seconds     (default: unset, no timeout)
#   PROBE_AGENT_MODE       reject funcFile refs    (default: false)

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


class RunSettings(BaseModel):
    """Knobs for one probe run."""

    reports_dir: str = Field(default="reports")
    workers: int = Field(default=1, ge=1)
    command_timeout: float | None = Field(default=None, gt=0)
    agent_mode: bool = Field(default=False)

    @field_validator("command_timeout", mode="before")
    @classmethod
    def _blank_timeout(cls, value):
        if value in ("", "0", 0):
            return None
        return value

    @classmethod
    def from_env(cls) -> "RunSettings":
        values: dict = {}
        if os.getenv("PROBE_REPORTS_DIR"):
            values["reports_dir"] = os.environ["PROBE_REPORTS_DIR"]
        if os.getenv("PROBE_WORKERS"):
            values["workers"] = os.environ["PROBE_WORKERS"]
        if os.getenv("PROBE_COMMAND_TIMEOUT") is not None:
            values["command_timeout"] = os.environ["PROBE_COMMAND_TIMEOUT"]
        if os.getenv("PROBE_AGENT_MODE"):
            values["agent_mode"] = os.environ["PROBE_AGENT_MODE"].strip().lower() in _TRUTHY
        return cls.model_validate(values)
