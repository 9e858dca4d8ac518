# models.py
# Data contracts for the compliance probe.
# No business logic lives here: pure schema, validation and default accessors.
#
# Playbooks are authored in camelCase (preCmds, stdOutRule, ...). Python code
# uses the snake_case field names; both are accepted on input.

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_PASS_SCORE = 1
DEFAULT_FAIL_SCORE = -1
DEFAULT_MIN_PASSING_SCORE = 1

Verdict = Literal[-1, 0, 1]


class _PlaybookModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# ---------------------------------------------------------------------------
# Playbook configuration
# ---------------------------------------------------------------------------


class GatherSpec(_PlaybookModel):
    """Extracts one named value from command output into the assertion context."""

    key: str = Field(..., min_length=1, description="Context key written by this gather.")
    regex: str = Field(default="", description="Capture group 1, else the whole match.")
    func: str = Field(default="", description="Dynamic function body. Wins over regex.")
    func_file: str = Field(default="", description="External function source, inlined by preprocessing.")
    include_std_err: bool = Field(default=False, description="Use stderr when stdout is empty.")
    exclude_from_report: bool = Field(default=False, description="Drop this key from the JSON report.")


class EvaluationRule(_PlaybookModel):
    """A verdict rule evaluated against a command's output."""

    regex: str = Field(default="", description="Match = pass, no match = fail.")
    func: str = Field(default="", description="Dynamic function returning -1, 0 or 1. Wins over regex.")
    func_file: str = Field(default="")
    include_std_err: bool = Field(default=False, description="Use stderr when stdout is empty.")

    @property
    def is_configured(self) -> bool:
        return bool(self.regex or self.func)


class ExitCodeRule(_PlaybookModel):
    """Inclusive [min, max] exit-code band mapped to a verdict. Omitted bound = unbounded."""

    min: int | None = None
    max: int | None = None
    result: Verdict

    def matches(self, exit_code: int) -> bool:
        if self.min is not None and exit_code < self.min:
            return False
        if self.max is not None and exit_code > self.max:
            return False
        return True


class Exec(_PlaybookModel):
    """One executable unit: a literal script or a function that generates one."""

    shell: str = Field(default="", description="bash, sh, zsh, powershell, pwsh or any -c capable binary.")
    script: str = Field(default="")
    func: str = Field(default="", description="Dynamic function producing the script. Wins over script.")
    func_file: str = Field(default="")
    gather: list[GatherSpec] = Field(default_factory=list)
    exclude_from_report: bool = Field(default=False, description="Hide this unit's output from the reports.")


class Command(Exec):
    """A scored main command: an Exec plus its scoring rules."""

    pass_score: int | None = None
    fail_score: int | None = None
    std_out_rule: EvaluationRule | None = None
    std_err_rule: EvaluationRule | None = None
    exit_code_rules: list[ExitCodeRule] = Field(default_factory=list)

    @property
    def resolved_pass_score(self) -> int:
        return DEFAULT_PASS_SCORE if self.pass_score is None else self.pass_score

    @property
    def resolved_fail_score(self) -> int:
        return DEFAULT_FAIL_SCORE if self.fail_score is None else self.fail_score


class Assertion(_PlaybookModel):
    """One named compliance check."""

    code: str = Field(default="", description="Unique across the playbook.")
    title: str = ""
    description: str = ""
    pre_cmds: list[Exec] = Field(default_factory=list)
    cmds: list[Command] = Field(default_factory=list)
    post_cmds: list[Exec] = Field(default_factory=list)
    min_passing_score: int | None = None
    pass_description: str = ""
    fail_description: str = ""

    @property
    def passing_threshold(self) -> int:
        if self.min_passing_score is None:
            return DEFAULT_MIN_PASSING_SCORE
        return self.min_passing_score

    def all_execs(self) -> list[Exec]:
        """Every Exec in run order: pre, main, post."""
        return [*self.pre_cmds, *self.cmds, *self.post_cmds]

    def redacted_keys(self) -> set[str]:
        return {
            spec.key
            for exec_ in self.all_execs()
            for spec in exec_.gather
            if spec.exclude_from_report
        }


class Section(_PlaybookModel):
    title: str = ""
    description: list[str] = Field(default_factory=list)
    assertions: list[Assertion] = Field(default_factory=list)


class PlaybookConfig(_PlaybookModel):
    """A complete playbook. Read-only for the duration of a run."""

    title: str = ""
    sections: list[Section] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


class ExecutionResult(BaseModel):
    """Output of one process run. Produced fresh per run, never mutated."""

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    success: bool = True
    script: str = Field(default="", description="The script text that was actually run.")
    launched: bool = Field(default=True, description="False when the shell could not be started.")
    timed_out: bool = Field(default=False, description="True when the child was killed on timeout.")


class _ReportModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Timestamps(_ReportModel):
    start: str = ""
    end: str = ""


class AssertionReport(_ReportModel):
    """Write-once result record for one assertion."""

    timestamps: Timestamps = Field(default_factory=Timestamps)
    passed: bool
    score: int
    min_score: int
    context: dict[str, Any] = Field(default_factory=dict)


class ReportStats(_ReportModel):
    passed: int = 0
    failed: int = 0


class FinalReport(_ReportModel):
    """Run-level aggregate, keyed by assertion code."""

    timestamps: Timestamps = Field(default_factory=Timestamps)
    username: str = ""
    os: str = ""
    arch: str = ""
    assertions: dict[str, AssertionReport] = Field(default_factory=dict)
    stats: ReportStats = Field(default_factory=ReportStats)
