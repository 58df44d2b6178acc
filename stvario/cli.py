# Copyright (c) 2024 stvario developers
#
# This file is part of the stvario project.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
#
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""CLI configuration for stvario"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

import argcomplete
import yaml  # type: ignore

from stvario.workflows import Report, VariogramStudy
from stvario.workflows.schemas import COMPLETE_CONFIG


def get_report_config(outputs: str) -> dict[str, Any]:
    """
    Configuration of a report run, with the output level of the study that wrote the outputs folder
    :param outputs: Outputs folder of a previous run
    :return: Report configuration
    """
    report_config: dict[str, Any] = {"outputs": {"path": outputs}}
    used_config = Path(outputs) / "used_config.yaml"
    if used_config.exists():
        with open(used_config, encoding="utf-8") as f:
            study_config = yaml.safe_load(f) or {}
        level = study_config.get("outputs", {}).get("level")
        if level is not None:
            report_config["outputs"]["level"] = level
    return report_config


def get_parser() -> argparse.ArgumentParser:
    """
    Parser of the command line
    """

    parser = argparse.ArgumentParser(prog="stvario", description="CLI tool to run spatiotemporal variogram studies")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level",
    )
    subparsers = parser.add_subparsers(
        dest="command",
        help="Available workflows as subcommand (see stvario [workflow] -h"
        " for more information on the specific workflow)",
    )

    # Subcommand: run
    run_parser = subparsers.add_parser(
        "run",
        help="Run a variogram study",
        description="Simulate data, sample the empirical variogram and fit the model families using a YAML "
        "configuration file.",
        epilog="Example: stvario run --config config.yaml",
    )
    run_group = run_parser.add_mutually_exclusive_group(required=True)
    run_group.add_argument("--config", help="Path to YAML configuration file")
    run_group.add_argument("--display_template_config", action="store_true", help="Show configuration template")

    # Subcommand: report
    report_parser = subparsers.add_parser(
        "report",
        help="Reproduce the report of a variogram study",
        description="Render the tables and plots of a previous run from its saved empirical variogram and models.",
        epilog="Example: stvario report --outputs outputs",
    )
    report_parser.add_argument("--outputs", required=True, help="Outputs folder of a previous run")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """
    Main function for the CLI
    """

    parser = get_parser()
    argcomplete.autocomplete(parser)

    if argv is None:
        argv = sys.argv[1:]
    args = parser.parse_args(args=argv if argv else ["--help"])

    # Instance logger
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s - %(levelname)s - %(message)s")
    logger = logging.getLogger(__name__)

    if args.command == "run":
        if args.display_template_config:
            yaml_string = yaml.dump(COMPLETE_CONFIG, sort_keys=False, allow_unicode=True)
            logging.info("\n" + yaml_string)
        elif args.config:
            logger.info("Running variogram study")
            workflow = VariogramStudy(args.config)
            workflow.run()
            logger.info("Report written to %s", workflow.outputs_folder / "report.html")

    elif args.command == "report":
        logger.info("Running report")
        report = Report(get_report_config(args.outputs))
        report.run()
        logger.info("Report written to %s", report.outputs_folder / "report.html")

    else:
        raise ValueError(f"{args.command} doesn't exist, valid command are 'run', 'report'")

    logger.info("End of execution")


if __name__ == "__main__":
    main()
