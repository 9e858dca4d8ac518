# reporter.py
# Multi-sink reporter. Drives a playbook run.
#
# The Reporter is the kernel. It owns traversal, the per-assertion context,
# scoring and the run-level accumulator. Rule logic lives in rules.py, text
# rendering in sinks.py, terminal output in display.py.
#
# Control flow per assertion:
#   pre-cmds (gather only, errors are warnings)
#   → main cmds (run → score → evidence, errors cost the fail score)
#   → post-cmds (gather only, errors are warnings)
#   → threshold check → AssertionReport + rendered log/markdown
#
# Assertions may run on a thread pool. Each one renders into private sinks
# and the results are merged in declared order, so every artifact matches a
# sequential run byte for byte (timestamps aside).

import functools
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from compliance_probe import display
from compliance_probe.errors import ProbeError
from compliance_probe.models import (
    Assertion,
    AssertionReport,
    Exec,
    FinalReport,
    PlaybookConfig,
    ReportStats,
    Timestamps,
)
from compliance_probe.rules import Context, ExecFunc, points_for, run_exec, score_command
from compliance_probe.runner import current_user, host_arch, host_os
from compliance_probe.sinks import LogSink, NarrativeSink, error_text


def _now() -> datetime:
    return datetime.now().astimezone()


def _rfc3339(moment: datetime) -> str:
    return moment.isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass
class AssertionOutcome:
    """Everything one assertion contributes to the run."""

    code: str
    title: str
    report: AssertionReport
    log: LogSink
    narrative: NarrativeSink
    warnings: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class RunOutcome:
    report: FinalReport
    markdown: str
    log: str


def redacted_context(assertion: Assertion, context: Context) -> dict[str, Any]:
    """Copy of `context` minus every key a gather spec marked as excluded."""
    hidden = assertion.redacted_keys()
    return {key: value for key, value in context.items() if key not in hidden}


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------


class Reporter:
    """
    Runs a validated playbook and renders all three artifacts.

    `exec_func` runs one Exec against a context and returns its result;
    tests swap it for a stub. `workers` > 1 runs assertions concurrently.
    `timeout` applies to every child process (None = wait forever).

    Example:
        outcome = Reporter().run(config)
        outcome.report.stats.passed
    """

    def __init__(
        self,
        exec_func: ExecFunc | None = None,
        workers: int = 1,
        timeout: float | None = None,
    ) -> None:
        if exec_func is None:
            exec_func = functools.partial(run_exec, timeout=timeout)
        self._exec = exec_func
        self._workers = max(1, workers)

    # ------------------------------------------------------------------
    # Side stages
    # ------------------------------------------------------------------

    def _run_side_stage(
        self,
        stage: str,
        execs: Iterable[Exec],
        context: Context,
        log: LogSink,
        warnings: list[tuple[str, str]],
    ) -> None:
        """Pre/post execs: gather into context, never scored."""
        for exec_ in execs:
            try:
                self._exec(exec_, context)
            except ProbeError as exc:
                log.warning(stage, exc, exec_.exclude_from_report)
                warnings.append((stage, error_text(exc, exec_.exclude_from_report)))

    # ------------------------------------------------------------------
    # Assertion
    # ------------------------------------------------------------------

    def run_assertion(self, assertion: Assertion) -> AssertionOutcome:
        """Execute one assertion with a fresh context. Never raises ProbeError."""
        start = _now()
        context: Context = {}
        score = 0
        evidence: list[str] = []
        warnings: list[tuple[str, str]] = []
        log = LogSink()
        narrative = NarrativeSink()

        log.assertion(assertion)

        self._run_side_stage("preCmd", assertion.pre_cmds, context, log, warnings)

        for cmd in assertion.cmds:
            try:
                result = self._exec(cmd, context)
            except ProbeError as exc:
                log.execution(cmd, exc.result, exc)
                log.command_error(exc, cmd.exclude_from_report)
                score += cmd.resolved_fail_score
                continue

            log.execution(cmd, result)
            if not cmd.exclude_from_report:
                evidence.append(result.stdout)

            outcome = score_command(cmd, result, context)
            log.rule_errors(outcome.errors, cmd.exclude_from_report)
            score += points_for(cmd, outcome.verdict)

        self._run_side_stage("postCmd", assertion.post_cmds, context, log, warnings)

        threshold = assertion.passing_threshold
        passed = score >= threshold
        narrative.assertion(assertion, evidence, passed)

        report = AssertionReport(
            timestamps=Timestamps(start=_rfc3339(start), end=_rfc3339(_now())),
            passed=passed,
            score=score,
            min_score=threshold,
            context=redacted_context(assertion, context),
        )
        return AssertionOutcome(
            code=assertion.code,
            title=assertion.title,
            report=report,
            log=log,
            narrative=narrative,
            warnings=warnings,
        )

    def _run_all(self, assertions: list[Assertion]) -> list[AssertionOutcome]:
        if self._workers == 1 or len(assertions) < 2:
            return [self.run_assertion(a) for a in assertions]
        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            # map() yields in submission order.
            return list(pool.map(self.run_assertion, assertions))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, config: PlaybookConfig) -> RunOutcome:
        """Run every section and assertion, merging results in declared order."""
        started = _now()
        log = LogSink()
        narrative = NarrativeSink()
        log.header(started)
        narrative.front_matter(config, started)

        report = FinalReport(
            timestamps=Timestamps(start=_rfc3339(started)),
            username=current_user(),
            os=host_os(),
            arch=host_arch(),
        )
        stats = ReportStats()

        flat = [a for section in config.sections for a in section.assertions]
        outcomes = iter(self._run_all(flat))

        for section in config.sections:
            display.section_start(section.title)
            narrative.section(section)
            log.section(section)

            for _ in section.assertions:
                outcome = next(outcomes)
                for stage, message in outcome.warnings:
                    display.exec_warning(stage, outcome.code, message)

                if outcome.report.passed:
                    stats.passed += 1
                else:
                    stats.failed += 1
                report.assertions[outcome.code] = outcome.report

                log.extend(outcome.log)
                narrative.extend(outcome.narrative)
                display.assertion_result(
                    outcome.title,
                    outcome.report.passed,
                    outcome.report.score,
                    outcome.report.min_score,
                )

            narrative.section_end()

        report.stats = stats
        report.timestamps.end = _rfc3339(_now())
        return RunOutcome(report=report, markdown=narrative.getvalue(), log=log.getvalue())


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


def write_artifacts(outcome: RunOutcome, reports_dir: Path, stamp: str | None = None) -> dict[str, Path]:
    """Write <stamp>.report.{log,md,json} under `reports_dir`; return the paths."""
    stamp = stamp or _now().strftime("%y%m%d-%H%M%S")
    reports_dir.mkdir(parents=True, exist_ok=True)
    base = reports_dir / f"{stamp}.report"
    paths = {
        "log": base.with_name(base.name + ".log"),
        "markdown": base.with_name(base.name + ".md"),
        "json": base.with_name(base.name + ".json"),
    }
    paths["log"].write_text(outcome.log, encoding="utf-8")
    paths["markdown"].write_text(outcome.markdown, encoding="utf-8")
    paths["json"].write_text(outcome.report.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    return paths
