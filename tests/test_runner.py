import os
import signal
import sys
import tempfile

import pytest

from compliance_probe import runner
from compliance_probe.runner import (
    LAUNCH_FAILURE_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    host_arch,
    host_os,
    is_launch_failure,
    run_script,
    sanitize_output,
)

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="requires a POSIX shell")

# ---------------------------------------------------------------------------
# Output sanitizer
# ---------------------------------------------------------------------------

def test_sanitize_strips_ansi_and_bell():
    raw = "\x1b[31mError:\x1b[0m \u0007Something went wrong\n"
    assert sanitize_output(raw) == "Error: Something went wrong"

def test_sanitize_strips_osc_sequences():
    bel_terminated = "\x1b]0;window title\x07visible"
    st_terminated = "\x1b]8;;http://example.com\x1b\\link\x1b]8;;\x1b\\"
    assert sanitize_output(bel_terminated) == "visible"
    assert sanitize_output(st_terminated) == "link"

def test_sanitize_strips_cursor_and_charset_sequences():
    raw = "\x1b[2K\x1b[1G\x1b(Bprogress 100%\x1b[?25h"
    assert sanitize_output(raw) == "progress 100%"

def test_sanitize_preserves_newlines_tabs_and_carriage_returns():
    raw = "  line one\n\tline two\r\nline three  \n"
    assert sanitize_output(raw) == "line one\n\tline two\r\nline three"

def test_sanitize_drops_other_control_characters():
    assert sanitize_output("a\x00b\x08c\x1fd\x7fe") == "abcde"

def test_sanitize_handles_empty_and_none():
    assert sanitize_output("") == ""
    assert sanitize_output(None) == ""
    assert sanitize_output("   \n\t ") == ""

def test_sanitize_keeps_unicode_text():
    assert sanitize_output("\x1b[1m✓ passé\x1b[0m") == "✓ passé"

# ---------------------------------------------------------------------------
# Host metadata
# ---------------------------------------------------------------------------

def test_host_os_is_normalised():
    assert host_os() in ("linux", "windows", "mac")

def test_host_arch_normalises_common_machines(monkeypatch):
    monkeypatch.setattr(runner.platform, "machine", lambda: "x86_64")
    assert host_arch() == "amd64"
    monkeypatch.setattr(runner.platform, "machine", lambda: "aarch64")
    assert host_arch() == "arm64"
    monkeypatch.setattr(runner.platform, "machine", lambda: "riscv64")
    assert host_arch() == "riscv64"

# ---------------------------------------------------------------------------
# Process execution
# ---------------------------------------------------------------------------

@posix_only
def test_run_script_success():
    result = run_script("ls -lh", "")
    assert result.success is True
    assert result.exit_code == 0
    assert result.script == "ls -lh"

@posix_only
def test_run_script_failure():
    result = run_script("non_existent_command_12345", "bash")
    assert result.success is False
    assert result.exit_code != 0
    assert not is_launch_failure(result)

@posix_only
def test_run_script_signal_killed_child_is_not_a_launch_failure():
    result = run_script("echo hello; kill -HUP $$", "bash")
    assert result.exit_code == -signal.SIGHUP
    assert result.stdout == "hello"
    assert result.launched is True
    assert result.timed_out is False
    assert not is_launch_failure(result)

def test_sentinel_exit_codes_are_outside_real_exit_codes():
    real = set(range(0, 256)) | {-int(s) for s in signal.Signals}
    assert LAUNCH_FAILURE_EXIT_CODE not in real
    assert TIMEOUT_EXIT_CODE not in real

@posix_only
def test_run_script_captures_streams_separately():
    result = run_script("echo out; echo err 1>&2; exit 3", "bash")
    assert result.stdout == "out"
    assert result.stderr == "err"
    assert result.exit_code == 3

@posix_only
def test_run_script_empty_output_is_empty_string():
    result = run_script("true", "bash")
    assert result.stdout == ""
    assert result.stderr == ""

@posix_only
def test_run_script_uses_pipefail():
    result = run_script("false | cat", "bash")
    assert result.exit_code != 0

@posix_only
def test_run_script_applies_environment_overlay():
    result = run_script('echo "$TERM|$NO_COLOR|$LANG"', "bash")
    assert result.stdout == "dumb|1|en_US.UTF-8"

@posix_only
def test_run_script_preserves_inherited_environment(monkeypatch):
    monkeypatch.setenv("PROBE_TEST_MARKER", "kept")
    result = run_script('echo "$PROBE_TEST_MARKER"', "bash")
    assert result.stdout == "kept"

@posix_only
def test_run_script_strips_escape_codes_from_output():
    result = run_script(r"printf '\033[32mgreen\033[0m\n'", "bash")
    assert result.stdout == "green"

@posix_only
def test_run_script_multiline_script():
    script = "A=1\nB=2\necho $((A + B))"
    result = run_script(script, "sh")
    assert result.stdout == "3"

@posix_only
def test_run_script_removes_temp_file(monkeypatch, tmp_path):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    run_script("echo hi", "bash")
    assert [p for p in os.listdir(tmp_path) if p.startswith("cp_")] == []

@posix_only
def test_run_script_removes_temp_file_on_launch_failure(monkeypatch, tmp_path):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    monkeypatch.setitem(
        runner.SHELLS,
        "bash",
        runner.ShellSpec("no_such_bash_binary_12345", ".sh", "#!/bin/bash\n"),
    )
    result = run_script("echo hi", "bash")
    assert result.exit_code == LAUNCH_FAILURE_EXIT_CODE
    assert [p for p in os.listdir(tmp_path) if p.startswith("cp_")] == []

def test_run_script_unknown_shell_is_launch_failure():
    result = run_script("echo hi", "no_such_shell_12345")
    assert result.success is False
    assert result.exit_code == LAUNCH_FAILURE_EXIT_CODE
    assert is_launch_failure(result)
    assert result.launched is False
    assert "no_such_shell_12345" in result.stderr

@posix_only
def test_run_script_timeout_kills_child():
    result = run_script("sleep 5", "bash", timeout=0.5)
    assert result.success is False
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.timed_out is True
    assert is_launch_failure(result)
