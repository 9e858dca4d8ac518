import json
import re
import textwrap

import pytest

from compliance_probe.errors import ConfigurationError, PlaybookLoadError
from compliance_probe.models import (
    Assertion,
    Command,
    EvaluationRule,
    Exec,
    GatherSpec,
    PlaybookConfig,
    Section,
)
from compliance_probe.playbook import (
    inline_func_files,
    load_playbook,
    playbook_json_schema,
    validate_playbook,
    write_playbook,
)

PLAYBOOK_YAML = textwrap.dedent(
    """\
    title: Linux Baseline
    sections:
      - title: Accounts
        description:
          - Local account hygiene.
        assertions:
          - code: ACC_01
            title: Root login disabled
            description: sshd must refuse root logins.
            minPassingScore: 2
            preCmds:
              - script: sshd -T 2>/dev/null | head -50
                gather:
                  - key: permitRoot
                    regex: "permitrootlogin (\\\\w+)"
                    includeStdErr: true
            cmds:
              - script: grep -i '^PermitRootLogin' /etc/ssh/sshd_config
                passScore: 2
                failScore: 0
                excludeFromReport: true
                stdOutRule:
                  regex: "(?i)no"
                exitCodeRules:
                  - min: 1
                    max: 1
                    result: -1
            postCmds:
              - shell: sh
                script: "true"
            passDescription: Root login is disabled.
            failDescription: Root login is allowed.
    """
)


def _config(*assertions):
    return PlaybookConfig(title="T", sections=[Section(title="S1", assertions=list(assertions))])

# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def test_load_playbook_camel_case_fields(tmp_path):
    path = tmp_path / "playbook.yaml"
    path.write_text(PLAYBOOK_YAML, encoding="utf-8")

    config = load_playbook(path)
    assertion = config.sections[0].assertions[0]
    cmd = assertion.cmds[0]

    assert config.title == "Linux Baseline"
    assert assertion.passing_threshold == 2
    assert assertion.pre_cmds[0].gather[0].key == "permitRoot"
    assert assertion.pre_cmds[0].gather[0].regex == r"permitrootlogin (\w+)"
    assert assertion.pre_cmds[0].gather[0].include_std_err is True
    assert cmd.resolved_pass_score == 2
    assert cmd.resolved_fail_score == 0
    assert cmd.exclude_from_report is True
    assert cmd.std_out_rule.regex == "(?i)no"
    assert cmd.std_err_rule is None
    assert cmd.exit_code_rules[0].matches(1)
    assert assertion.post_cmds[0].shell == "sh"
    assert assertion.pass_description == "Root login is disabled."

def test_optional_scores_default_when_absent():
    assertion = Assertion(code="A", cmds=[Command(script="x")])
    assert assertion.passing_threshold == 1
    assert assertion.cmds[0].resolved_pass_score == 1
    assert assertion.cmds[0].resolved_fail_score == -1

def test_load_playbook_missing_file(tmp_path):
    with pytest.raises(PlaybookLoadError, match="failed to read config"):
        load_playbook(tmp_path / "missing.yaml")

def test_load_playbook_bad_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("title: [unclosed", encoding="utf-8")
    with pytest.raises(PlaybookLoadError, match="failed to parse YAML"):
        load_playbook(path)

def test_load_playbook_schema_violation(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("title: T\nsections:\n  - assertions:\n      - cmds:\n          - exitCodeRules:\n              - result: 5\n", encoding="utf-8")
    with pytest.raises(PlaybookLoadError, match="is invalid"):
        load_playbook(path)

def test_load_playbook_error_is_configuration_error(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_playbook(path)

def test_write_then_load_preserves_camel_case(tmp_path):
    source = tmp_path / "in.yaml"
    source.write_text(PLAYBOOK_YAML, encoding="utf-8")
    config = load_playbook(source)

    out = tmp_path / "out.yaml"
    write_playbook(config, out)
    text = out.read_text(encoding="utf-8")
    assert "minPassingScore: 2" in text
    assert "excludeFromReport: true" in text
    assert "funcFile" not in text
    assert load_playbook(out) == config

def test_json_schema_uses_playbook_keys():
    schema = json.loads(playbook_json_schema())
    assert schema["title"] == "PlaybookConfig"
    defs = schema["$defs"]
    assert "preCmds" in defs["Assertion"]["properties"]
    assert "stdOutRule" in defs["Command"]["properties"]
    assert "includeStdErr" in defs["GatherSpec"]["properties"]

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def test_validator_duplicate_codes():
    config = _config(Assertion(code="DUP_01", title="A1"), Assertion(code="DUP_01", title="A2"))
    with pytest.raises(ConfigurationError, match="duplicate code found: DUP_01"):
        validate_playbook(config)

def test_validator_duplicate_codes_across_sections():
    config = PlaybookConfig(
        title="T",
        sections=[
            Section(title="S1", assertions=[Assertion(code="X")]),
            Section(title="S2", assertions=[Assertion(code="X")]),
        ],
    )
    with pytest.raises(ConfigurationError, match="duplicate code found: X"):
        validate_playbook(config)

def test_validator_empty_code():
    config = _config(Assertion(code="", title="Nameless"))
    with pytest.raises(ConfigurationError, match="assertion 'Nameless' in section 'S1' is missing a 'code'"):
        validate_playbook(config)

def test_validator_accepts_unique_codes():
    validate_playbook(_config(Assertion(code="A"), Assertion(code="B")))

@pytest.mark.parametrize(
    "assertion, location",
    [
        (Assertion(code="P", pre_cmds=[Exec(func_file="gen.py")]), "preCmd"),
        (Assertion(code="P", cmds=[Command(func_file="gen.py")]), "cmd"),
        (Assertion(code="P", cmds=[Command(std_out_rule=EvaluationRule(func_file="r.py"))]), "stdOutRule"),
        (Assertion(code="P", cmds=[Command(std_err_rule=EvaluationRule(func_file="r.py"))]), "stdErrRule"),
        (Assertion(code="P", cmds=[Command(gather=[GatherSpec(key="k", func_file="g.py")])]), "gather (cmd)"),
        (Assertion(code="P", post_cmds=[Exec(func_file="gen.py")]), "postCmd"),
    ],
)
def test_agent_mode_rejects_func_files(assertion, location):
    config = _config(assertion)
    validate_playbook(config)
    with pytest.raises(ConfigurationError, match=re.escape(f"agent error: assertion P contains funcFile in {location}")):
        validate_playbook(config, agent_mode=True)

def test_agent_mode_accepts_inline_functions():
    config = _config(Assertion(code="P", cmds=[Command(func="'echo hi'", std_out_rule=EvaluationRule(func="1"))]))
    validate_playbook(config, agent_mode=True)

# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------

def test_inline_func_files_reads_sources(tmp_path):
    (tmp_path / "gen.py").write_text("lambda os: 'uname -a'\n", encoding="utf-8")
    (tmp_path / "rule.py").write_text("def check(stdout, stderr, context):\n    return 1\n", encoding="utf-8")
    (tmp_path / "gather.py").write_text("stdout.split()[0]", encoding="utf-8")

    config = _config(
        Assertion(
            code="F",
            pre_cmds=[Exec(func_file="gen.py")],
            cmds=[
                Command(
                    script="uname",
                    std_out_rule=EvaluationRule(func_file="rule.py"),
                    gather=[GatherSpec(key="kernel", func_file="gather.py")],
                )
            ],
        )
    )
    baked = inline_func_files(config, tmp_path)
    assertion = baked.sections[0].assertions[0]

    assert assertion.pre_cmds[0].func == "lambda os: 'uname -a'"
    assert assertion.pre_cmds[0].func_file == ""
    assert assertion.cmds[0].std_out_rule.func.startswith("def check")
    assert assertion.cmds[0].gather[0].func == "stdout.split()[0]"
    assert isinstance(assertion.cmds[0], Command)
    validate_playbook(baked, agent_mode=True)

    # The input config is untouched.
    assert config.sections[0].assertions[0].pre_cmds[0].func_file == "gen.py"

def test_inline_func_files_missing_source(tmp_path):
    config = _config(Assertion(code="F", cmds=[Command(func_file="nope.py")]))
    with pytest.raises(PlaybookLoadError, match="failed to read function file"):
        inline_func_files(config, tmp_path)

def test_inline_func_files_validates_result(tmp_path):
    config = _config(Assertion(code="D"), Assertion(code="D"))
    with pytest.raises(ConfigurationError, match="duplicate code"):
        inline_func_files(config, tmp_path)
