# rules.py
# Rule evaluation, context gathering and per-command scoring.
#
# Pipeline for one Exec:
#   generate script (func wins over script) → run → gather into context
#
# Pipeline for one scored Command:
#   run_exec → exit-code baseline → stdout rule → stderr rule → points
#
# Nothing here prints. Failures are raised as ProbeError subclasses or, for
# rule evaluation inside scoring, collected on the CommandVerdict so the
# reporter can surface them.

import re
from dataclasses import dataclass, field
from typing import Any, Callable

from compliance_probe.errors import EvaluationError, ExtractionError, LaunchError
from compliance_probe.models import (
    Command,
    EvaluationRule,
    Exec,
    ExecutionResult,
    GatherSpec,
)
from compliance_probe.runner import is_launch_failure, run_script, runner_metadata
from compliance_probe.sandbox import SandboxError, call_function

RULE_INPUTS = ("stdout", "stderr", "context")
GENERATOR_INPUTS = ("context", "env", "os", "arch", "user", "cwd")

Context = dict[str, Any]
ExecFunc = Callable[[Exec, Context], ExecutionResult]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _select_input(result: ExecutionResult, include_std_err: bool) -> str:
    if include_std_err and not result.stdout:
        return result.stderr
    return result.stdout


def _compile_regex(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise EvaluationError(f"invalid regex {pattern!r}: {exc}") from exc


def _describe(value: Any) -> str:
    # repr() of a huge int raises ValueError, and user values can be any size.
    if isinstance(value, (int, float)) and -1000 < value < 1000:
        return repr(value)
    if isinstance(value, str) and len(value) <= 40:
        return repr(value)
    return f"a value of type {type(value).__name__}"


def _coerce_verdict(value: Any) -> int:
    if isinstance(value, bool):
        return 1 if value else -1
    try:
        verdict = int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise EvaluationError(f"rule function returned {_describe(value)}, expected -1, 0 or 1") from exc
    if verdict not in (-1, 0, 1):
        raise EvaluationError(f"rule function returned {_describe(value)}, expected -1, 0 or 1")
    return verdict


def _as_text(value: Any, what: str) -> str:
    if value is None:
        return ""
    try:
        return str(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise EvaluationError(f"{what} returned a value that cannot be rendered as text: {exc}") from exc


# ---------------------------------------------------------------------------
# Rule Evaluator
# ---------------------------------------------------------------------------


def evaluate_rule(rule: EvaluationRule, result: ExecutionResult, context: Context) -> int:
    """
    Return -1 (fail), 0 (no opinion) or 1 (pass).

    A func wins outright over a regex. Raises EvaluationError on a bad
    regex or a function fault; callers must not read that as a 0.
    """
    if rule.func:
        try:
            value = call_function(
                rule.func,
                RULE_INPUTS,
                stdout=result.stdout,
                stderr=result.stderr,
                context=context,
            )
        except SandboxError as exc:
            raise EvaluationError(f"rule function failed: {exc}", result) from exc
        return _coerce_verdict(value)

    if rule.regex:
        pattern = _compile_regex(rule.regex)
        text = _select_input(result, rule.include_std_err)
        return 1 if pattern.search(text) else -1

    return 0


def extract_value(spec: GatherSpec, result: ExecutionResult, context: Context) -> str:
    """Return the value a gather spec pulls out of `result`; "" when nothing matches."""
    if spec.func:
        try:
            value = call_function(
                spec.func,
                RULE_INPUTS,
                stdout=result.stdout,
                stderr=result.stderr,
                context=context,
            )
        except SandboxError as exc:
            raise EvaluationError(f"gather function failed: {exc}", result) from exc
        return _as_text(value, "gather function")

    if spec.regex:
        pattern = _compile_regex(spec.regex)
        match = pattern.search(_select_input(result, spec.include_std_err))
        if match is None:
            return ""
        if pattern.groups >= 1:
            return match.group(1) or ""
        return match.group(0)

    return ""


# ---------------------------------------------------------------------------
# Context Gatherer
# ---------------------------------------------------------------------------


def gather_context(exec_: Exec, result: ExecutionResult, context: Context) -> None:
    """
    Write every gather spec's value into `context`, in declared order.

    The first failure aborts the remaining gathers for this Exec.
    """
    for spec in exec_.gather:
        try:
            context[spec.key] = extract_value(spec, result, context)
        except EvaluationError as exc:
            raise ExtractionError(spec.key, str(exc), result) from exc


# ---------------------------------------------------------------------------
# Exec pipeline
# ---------------------------------------------------------------------------


def generate_script(exec_: Exec, context: Context) -> str:
    """Resolve the script to run. A func wins over a literal script."""
    if not exec_.func:
        return exec_.script

    try:
        value = call_function(exec_.func, GENERATOR_INPUTS, context=context, **runner_metadata())
    except SandboxError as exc:
        raise EvaluationError(f"script function failed: {exc}") from exc
    return _as_text(value, "script function")


def run_exec(exec_: Exec, context: Context, timeout: float | None = None) -> ExecutionResult:
    """
    Run one Exec and gather its outputs into `context`.

    An empty script (literal or generated) is skipped and reported as an
    empty success with no gathers. Raises LaunchError when the process
    could not start or timed out. Its message never quotes child output.
    """
    script = generate_script(exec_, context)
    if not script:
        return ExecutionResult(success=True)

    result = run_script(script, exec_.shell, timeout=timeout)
    if result.timed_out:
        raise LaunchError(f"timed out after {timeout}s", result)
    if is_launch_failure(result):
        # No child ran, so stderr holds only the OS error.
        raise LaunchError(f"process failed to launch: {result.stderr}", result)

    gather_context(exec_, result, context)
    return result


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------


@dataclass
class CommandVerdict:
    """Verdict for one main command plus any rule errors met on the way."""

    verdict: int
    errors: list[str] = field(default_factory=list)


def exit_code_verdict(cmd: Command, exit_code: int) -> int:
    """First matching band wins; otherwise 0 passes and anything else fails."""
    for rule in cmd.exit_code_rules:
        if rule.matches(exit_code):
            return rule.result
    return 1 if exit_code == 0 else -1


def score_command(cmd: Command, result: ExecutionResult, context: Context) -> CommandVerdict:
    """
    Resolve a command's verdict.

    The exit-code baseline always applies first. A configured stdout rule
    overrides it with any non-zero verdict, then a configured stderr rule
    may override again, so stderr has the final say.
    """
    outcome = CommandVerdict(verdict=exit_code_verdict(cmd, result.exit_code))

    for label, rule in (("stdout", cmd.std_out_rule), ("stderr", cmd.std_err_rule)):
        if rule is None or not rule.is_configured:
            continue
        try:
            verdict = evaluate_rule(rule, result, context)
        except EvaluationError as exc:
            outcome.errors.append(f"{label} rule: {exc}")
            continue
        if verdict != 0:
            outcome.verdict = verdict

    return outcome


def points_for(cmd: Command, verdict: int) -> int:
    if verdict == 1:
        return cmd.resolved_pass_score
    if verdict == -1:
        return cmd.resolved_fail_score
    return 0
