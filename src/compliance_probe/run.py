# run.py
# Entry point. Argument parsing and wiring only. No logic lives here.
#
#   compliance-probe playbook.yaml
#   compliance-probe playbook.yaml --workers 4 --timeout 60
#   compliance-probe --schema
#   compliance-probe playbook.src.yaml --preprocess playbook.yaml

import argparse
import sys
from datetime import datetime
from pathlib import Path

from compliance_probe import display
from compliance_probe.errors import ConfigurationError
from compliance_probe.playbook import (
    inline_func_files,
    load_playbook,
    playbook_json_schema,
    validate_playbook,
    write_playbook,
)
from compliance_probe.reporter import Reporter, write_artifacts
from compliance_probe.settings import RunSettings


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="compliance-probe",
        description="Run a compliance playbook and write log, markdown and JSON reports.",
    )
    parser.add_argument("playbook", nargs="?", default="playbook.yaml", help="Playbook YAML (default: playbook.yaml).")
    parser.add_argument("--schema", action="store_true", help="Print the playbook JSON schema and exit.")
    parser.add_argument("--preprocess", metavar="OUT", help="Inline funcFile references and write the baked playbook to OUT.")
    parser.add_argument("--agent", action="store_true", default=None, help="Agent mode: reject funcFile references.")
    parser.add_argument("--workers", type=int, help="Run up to N assertions concurrently.")
    parser.add_argument("--timeout", type=float, help="Kill any command running longer than this many seconds.")
    parser.add_argument("--reports-dir", help="Directory for report artifacts.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)

    if args.schema:
        display.schema(playbook_json_schema())
        return 0

    overrides = {
        "reports_dir": args.reports_dir,
        "workers": args.workers,
        "command_timeout": args.timeout,
        "agent_mode": args.agent,
    }
    settings = RunSettings.model_validate(
        {
            **RunSettings.from_env().model_dump(),
            **{k: v for k, v in overrides.items() if v is not None},
        }
    )

    try:
        config = load_playbook(args.playbook)

        if args.preprocess:
            baked = inline_func_files(config, Path(args.playbook).parent)
            write_playbook(baked, args.preprocess)
            display.preprocess_complete(args.preprocess)
            return 0

        validate_playbook(config, agent_mode=settings.agent_mode)
    except ConfigurationError as exc:
        display.halt(str(exc))
        return 1

    stamp = datetime.now().strftime("%y%m%d-%H%M%S")
    display.banner(config.title, args.playbook, stamp)

    reporter = Reporter(workers=settings.workers, timeout=settings.command_timeout)
    outcome = reporter.run(config)
    paths = write_artifacts(outcome, Path(settings.reports_dir), stamp)

    display.generation_complete(outcome.report.stats, {k: str(p) for k, p in paths.items()})
    return 0


if __name__ == "__main__":
    sys.exit(main())
