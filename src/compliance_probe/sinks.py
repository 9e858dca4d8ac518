# sinks.py
# Text renderers for the log and narrative artifacts.
#
# Both sinks are append-only string builders. Each assertion renders into its
# own pair of sinks; the reporter concatenates them in declared order, so the
# final text never depends on execution order.
#
# Redaction policy:
#   LogSink       — commands always shown, output and error text of excluded Execs masked
#   NarrativeSink — output of excluded Execs never appended

from datetime import datetime

from compliance_probe.errors import ExtractionError, LaunchError
from compliance_probe.models import Assertion, Exec, ExecutionResult, PlaybookConfig, Section

REDACTED_MARKER = "[REDACTED]"


def error_text(error: Exception, redact: bool) -> str:
    """
    Message for an error raised by an Exec, masked when the Exec is excluded.

    Rule and gather messages can quote what a function saw, so they are
    masked. LaunchError messages are built by the runner and stay readable.
    """
    if not redact or isinstance(error, LaunchError):
        return str(error)
    if isinstance(error, ExtractionError):
        return f"gather error for key {error.key}: {REDACTED_MARKER}"
    return f"{type(error).__name__}: {REDACTED_MARKER}"


class _TextSink:
    def __init__(self) -> None:
        self._parts: list[str] = []

    def write(self, text: str) -> None:
        self._parts.append(text)

    def extend(self, other: "_TextSink") -> None:
        self._parts.extend(other._parts)

    def getvalue(self) -> str:
        return "".join(self._parts)


# ---------------------------------------------------------------------------
# Log sink
# ---------------------------------------------------------------------------


class LogSink(_TextSink):
    """Full-fidelity execution log."""

    def header(self, started: datetime) -> None:
        self.write(f">>>>>>>>>>>> REPORT LOG: {started.strftime('%y%m%d-%H%M%S')} <<<<<<<<<<<<\n\n")

    def section(self, section: Section) -> None:
        self.write(f">>>>>>>>> SECTION: {section.title} <<<<<<<<<\n\n")

    def assertion(self, assertion: Assertion) -> None:
        self.write(f">>>>>>> ASSERTION: {assertion.title} <<<<<<<\n\n")

    def execution(
        self,
        exec_: Exec,
        result: ExecutionResult | None,
        error: Exception | None = None,
    ) -> None:
        redact = exec_.exclude_from_report
        script = result.script if result is not None and result.script else exec_.script

        if not script and exec_.func:
            # The generator failed before producing a script.
            self._block("FUNCTION", exec_.func)
        elif len(script.split("\n")) > 1:
            self._block("SCRIPT", script)
        else:
            self.write(f">>>>> COMMAND: {script} <<<<<\n\n")

        if error is not None:
            self.write(f">>> ERROR: {error_text(error, redact)} <<<\n")

        if result is not None:
            self._stream("STDOUT", result.stdout, redact)
            self._stream("STDERR", result.stderr, redact)
        self.write("\n")

    def _block(self, label: str, text: str) -> None:
        self.write(f">>>>> {label} <<<<<\n\n")
        self.write(f"{text}\n")
        self.write(f"<<<<< END {label}\n")

    def _stream(self, label: str, text: str, redact: bool) -> None:
        if not text:
            return
        body = REDACTED_MARKER if redact else text
        self.write(f">>> {label} <<<\n")
        self.write(body if body.endswith("\n") else f"{body}\n")

    def command_error(self, error: Exception, redact: bool = False) -> None:
        self.write(f">>>>> Error executing command: {error_text(error, redact)} <<<<<\n\n")

    def rule_errors(self, errors: list[str], redact: bool = False) -> None:
        for message in errors:
            if redact:
                # Keep the "stdout rule" / "stderr rule" label only.
                message = f"{message.partition(': ')[0]}: {REDACTED_MARKER}"
            self.write(f">>> EVALUATION ERROR: {message} <<<\n")
        if errors:
            self.write("\n")

    def warning(self, stage: str, error: Exception, redact: bool = False) -> None:
        self.write(f">>> WARNING ({stage}): {error_text(error, redact)} <<<\n\n")


# ---------------------------------------------------------------------------
# Narrative sink
# ---------------------------------------------------------------------------


class NarrativeSink(_TextSink):
    """Markdown document for human readers."""

    def front_matter(self, config: PlaybookConfig, started: datetime) -> None:
        self.write(
            f"---\ntitle: {config.title}\ndate: {started.strftime('%Y-%m-%d')}\n"
            "geometry: margin=2cm\n---\n\n"
        )
        self.write(
            f"# {config.title}\n\nGenerated on: {started.strftime('%Y-%m-%d %H:%M:%S')}\n\n---\n\n"
        )

    def section(self, section: Section) -> None:
        self.write(f"## {section.title}\n\n")
        for line in section.description:
            self.write(f"{line}  \n")
        self.write("\n")

    def section_end(self) -> None:
        self.write("---\n\n")

    def assertion(self, assertion: Assertion, evidence: list[str], passed: bool) -> None:
        self.write(f"### {assertion.title}\n\n")
        self.write(f"{assertion.description}\n\n")
        self.write("**Evidence:**\n\n")
        self.write("```\n")
        self.write("\n".join(evidence) + "\n")
        self.write("```\n\n")

        if passed and assertion.pass_description:
            self.write(f"> ✅ **Pass:** {assertion.pass_description}\n\n")
        elif not passed and assertion.fail_description:
            self.write(f"> ❌ **Fail:** {assertion.fail_description}\n\n")
