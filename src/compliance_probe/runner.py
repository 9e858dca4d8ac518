# runner.py
# Process Runner: executes one script in a child process.
#
# Scripts are materialised as temp files with a policy header, run with a
# fixed environment overlay, and the temp file is removed on every path.
# Launch failures never raise here. They come back as a result with
# launched=False (or timed_out=True) and a sentinel exit code outside the
# range a real process can report: 0-255, or -1 to -64 for a signal on POSIX.

import getpass
import os
import platform
import re
import signal
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from typing import Any

from compliance_probe.models import ExecutionResult

LAUNCH_FAILURE_EXIT_CODE = -1000
TIMEOUT_EXIT_CODE = -1001

ENV_OVERLAY = {
    "TERM": "dumb",
    "NO_COLOR": "1",
    "LANG": "en_US.UTF-8",
}


# ---------------------------------------------------------------------------
# Output sanitizer
# ---------------------------------------------------------------------------

# OSC (ESC ] ... BEL | ESC \), CSI (ESC [ ... final), 8-bit CSI, and the
# remaining two-byte ESC sequences, in that order.
_ANSI_RE = re.compile(
    r"(?:\x1b\][^\x07\x1b]*(?:\x07|\x1b\\))"
    r"|(?:\x1b\[[0-?]*[ -/]*[@-~])"
    r"|(?:\x9b[0-?]*[ -/]*[@-~])"
    r"|(?:\x1b[ -/]*[0-~])"
)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def sanitize_output(text: str | None) -> str:
    """Strip terminal escape sequences and control characters, then trim."""
    if not text:
        return ""
    text = _ANSI_RE.sub("", text)
    text = _CONTROL_RE.sub("", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Host metadata
# ---------------------------------------------------------------------------


def host_os() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "mac"
    return "linux"


def host_arch() -> str:
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "amd64"
    if machine in ("aarch64", "arm64"):
        return "arm64"
    return machine


def current_user() -> str:
    user = os.getenv("USER") or os.getenv("USERNAME")
    if user:
        return user
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


def default_shell() -> str:
    return "powershell" if host_os() == "windows" else "bash"


# ---------------------------------------------------------------------------
# Shell registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ShellSpec:
    """How to materialise and invoke a script for one shell."""

    executable: str
    suffix: str
    header: str
    args: tuple[str, ...] = ()

    def render(self, script: str) -> str:
        return f"{self.header}{script}\n"


SHELLS: dict[str, ShellSpec] = {
    "bash":       ShellSpec("bash", ".sh", "#!/bin/bash\nset -o pipefail\n"),
    "zsh":        ShellSpec("zsh", ".sh", "#!/bin/zsh\nset -o pipefail\n"),
    "sh":         ShellSpec("sh", ".sh", "#!/bin/sh\n"),
    "powershell": ShellSpec("powershell", ".ps1", "", ("-NoProfile", "-ExecutionPolicy", "Bypass", "-File")),
    "pwsh":       ShellSpec("pwsh", ".ps1", "", ("-NoProfile", "-ExecutionPolicy", "Bypass", "-File")),
}


def _child_env() -> dict[str, str]:
    env = dict(os.environ)
    env.update(ENV_OVERLAY)
    return env


def _kill_tree(proc: subprocess.Popen) -> None:
    """Kill the child and everything it spawned (POSIX: whole process group)."""
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
    proc.kill()


def _invoke(argv: list[str], timeout: float | None, script: str) -> ExecutionResult:
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=_child_env(),
            start_new_session=os.name == "posix",
        )
    except OSError as exc:
        return ExecutionResult(
            stdout="",
            stderr=sanitize_output(f"failed to launch {argv[0]!r}: {exc}"),
            exit_code=LAUNCH_FAILURE_EXIT_CODE,
            success=False,
            script=script,
            launched=False,
        )

    with proc:
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_tree(proc)
            stdout, stderr = proc.communicate()
            return ExecutionResult(
                stdout=sanitize_output(stdout),
                stderr=sanitize_output(stderr),
                exit_code=TIMEOUT_EXIT_CODE,
                success=False,
                script=script,
                timed_out=True,
            )

    return ExecutionResult(
        stdout=sanitize_output(stdout),
        stderr=sanitize_output(stderr),
        exit_code=proc.returncode,
        success=proc.returncode == 0,
        script=script,
    )


def run_script(script: str, shell: str = "", timeout: float | None = None) -> ExecutionResult:
    """
    Run `script` under `shell` (platform default when empty).

    `timeout` is None by default: a hung child hangs the caller.
    """
    shell = shell or default_shell()
    spec = SHELLS.get(shell)

    if spec is None:
        # Unknown shell: assume it accepts -c, no temp file needed.
        return _invoke([shell, "-c", script], timeout, script)

    fd, path = tempfile.mkstemp(prefix="cp_", suffix=spec.suffix)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(spec.render(script))
        os.chmod(path, 0o700)
        return _invoke([spec.executable, *spec.args, path], timeout, script)
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


def is_launch_failure(result: ExecutionResult) -> bool:
    """True when the process never started or was killed on timeout."""
    return not result.launched or result.timed_out


def runner_metadata() -> dict[str, Any]:
    """Host facts exposed to script generators."""
    return {
        "env": dict(os.environ),
        "os": host_os(),
        "arch": host_arch(),
        "user": current_user(),
        "cwd": os.getcwd(),
    }
