# playbook.py
# Playbook I/O and validation. Everything that happens before a run.
#
#   load_playbook       YAML file → PlaybookConfig
#   validate_playbook   code uniqueness, agent-mode funcFile ban
#   inline_func_files   funcFile references → inline func bodies
#   write_playbook      PlaybookConfig → YAML file
#   playbook_json_schema

import json
from pathlib import Path

import yaml
from pydantic import ValidationError

from compliance_probe.errors import ConfigurationError, PlaybookLoadError
from compliance_probe.models import (
    Assertion,
    Command,
    EvaluationRule,
    Exec,
    GatherSpec,
    PlaybookConfig,
)


def load_playbook(path: str | Path) -> PlaybookConfig:
    """Parse a YAML playbook. Raises PlaybookLoadError on any read/parse/schema failure."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PlaybookLoadError(f"failed to read config {path}: {exc}") from exc

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise PlaybookLoadError(f"failed to parse YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise PlaybookLoadError(f"playbook {path} must be a mapping at the top level")

    try:
        return PlaybookConfig.model_validate(data)
    except ValidationError as exc:
        raise PlaybookLoadError(f"playbook {path} is invalid: {exc}") from exc


def write_playbook(config: PlaybookConfig, path: str | Path) -> None:
    data = config.model_dump(mode="json", by_alias=True, exclude_defaults=True)
    Path(path).write_text(
        yaml.safe_dump(data, sort_keys=False, allow_unicode=True),
        encoding="utf-8",
    )


def playbook_json_schema() -> str:
    return json.dumps(PlaybookConfig.model_json_schema(by_alias=True), indent=2)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _func_file_locations(assertion: Assertion) -> list[str]:
    found: list[str] = []

    def check_exec(exec_: Exec, stage: str) -> None:
        if exec_.func_file:
            found.append(stage)
        for spec in exec_.gather:
            if spec.func_file:
                found.append(f"gather ({stage})")

    for exec_ in assertion.pre_cmds:
        check_exec(exec_, "preCmd")
    for cmd in assertion.cmds:
        check_exec(cmd, "cmd")
        if cmd.std_out_rule is not None and cmd.std_out_rule.func_file:
            found.append("stdOutRule")
        if cmd.std_err_rule is not None and cmd.std_err_rule.func_file:
            found.append("stdErrRule")
    for exec_ in assertion.post_cmds:
        check_exec(exec_, "postCmd")
    return found


def validate_playbook(config: PlaybookConfig, agent_mode: bool = False) -> None:
    """
    Enforce run preconditions. Raises ConfigurationError on the first problem.

    Every assertion needs a non-empty code, unique across the playbook. In
    agent mode, dynamic functions must already be inline: any funcFile left
    in the playbook is rejected.
    """
    codes: set[str] = set()

    for section in config.sections:
        for assertion in section.assertions:
            if not assertion.code:
                raise ConfigurationError(
                    f"assertion '{assertion.title}' in section '{section.title}' is missing a 'code'"
                )
            if assertion.code in codes:
                raise ConfigurationError(f"duplicate code found: {assertion.code}")
            codes.add(assertion.code)

            if agent_mode:
                locations = _func_file_locations(assertion)
                if locations:
                    raise ConfigurationError(
                        f"agent error: assertion {assertion.code} contains funcFile in {locations[0]}"
                    )


# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------


def _read_func(base_dir: Path, func_file: str) -> str:
    path = base_dir / func_file
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise PlaybookLoadError(f"failed to read function file {path}: {exc}") from exc


def _inline_gather(spec: GatherSpec, base_dir: Path) -> GatherSpec:
    if not spec.func_file:
        return spec
    return spec.model_copy(update={"func": _read_func(base_dir, spec.func_file), "func_file": ""})


def _inline_rule(rule: EvaluationRule | None, base_dir: Path) -> EvaluationRule | None:
    if rule is None or not rule.func_file:
        return rule
    return rule.model_copy(update={"func": _read_func(base_dir, rule.func_file), "func_file": ""})


def _inline_exec(exec_: Exec, base_dir: Path) -> Exec:
    update: dict = {"gather": [_inline_gather(spec, base_dir) for spec in exec_.gather]}
    if exec_.func_file:
        update["func"] = _read_func(base_dir, exec_.func_file)
        update["func_file"] = ""
    if isinstance(exec_, Command):
        update["std_out_rule"] = _inline_rule(exec_.std_out_rule, base_dir)
        update["std_err_rule"] = _inline_rule(exec_.std_err_rule, base_dir)
    return exec_.model_copy(update=update)


def inline_func_files(config: PlaybookConfig, base_dir: str | Path) -> PlaybookConfig:
    """
    Return a copy of `config` with every funcFile read into its func body.

    Paths resolve against `base_dir` (normally the playbook's directory).
    The result is validated before it is returned.
    """
    base_dir = Path(base_dir)
    sections = []
    for section in config.sections:
        assertions = [
            assertion.model_copy(
                update={
                    "pre_cmds": [_inline_exec(e, base_dir) for e in assertion.pre_cmds],
                    "cmds": [_inline_exec(c, base_dir) for c in assertion.cmds],
                    "post_cmds": [_inline_exec(e, base_dir) for e in assertion.post_cmds],
                }
            )
            for assertion in section.assertions
        ]
        sections.append(section.model_copy(update={"assertions": assertions}))

    baked = config.model_copy(update={"sections": sections})
    validate_playbook(baked)
    return baked
