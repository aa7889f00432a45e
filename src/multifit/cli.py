"""`multifit` command group for inspecting fitter and evaluator policies."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import click

from multifit.config import (
    DEFAULT_EVALUATOR_POLICY,
    DEFAULT_FITTER_POLICY,
    EvaluatorConfig,
    FitterConfig,
    load_policy,
    merge_defaults,
)
from multifit.errors import InvalidParameterError

EXIT_OK = 0
EXIT_INPUT_ERROR = 1


class MultifitCliError(click.ClickException):
    """Click exception with explicit exit-code control."""

    def __init__(self, message: str, *, exit_code: int = EXIT_INPUT_ERROR) -> None:
        super().__init__(message)
        self.exit_code = int(exit_code)


def dump_json_output(payload: dict[str, Any], out_path: Path | None) -> None:
    """Write JSON payload to file or stdout."""
    text = json.dumps(payload, sort_keys=True, indent=2)
    if out_path is None:
        click.echo(text)
        return
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(text + "\n", encoding="utf-8")


def _resolve_output_path(output_arg: str | None) -> Path | None:
    if output_arg is None:
        return None
    value = str(output_arg).strip()
    if value in {"", "-"}:
        return None
    return Path(value)


@click.group("multifit")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Multi-exposure model fitting utilities."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


@cli.command("defaults")
@click.option("--out", "output_arg", default=None, help="Output file, '-' for stdout.")
def defaults_command(output_arg: str | None) -> None:
    """Print the default policy."""
    payload = merge_defaults(DEFAULT_FITTER_POLICY, DEFAULT_EVALUATOR_POLICY)
    dump_json_output(payload, _resolve_output_path(output_arg))


@cli.command("config")
@click.option(
    "--policy",
    "policy_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Policy JSON file merged over the defaults.",
)
@click.option("--out", "output_arg", default=None, help="Output file, '-' for stdout.")
def config_command(policy_path: Path | None, output_arg: str | None) -> None:
    """Validate a policy and print the effective fitter and evaluator options."""
    policy: dict[str, Any] | None = None
    if policy_path is not None:
        try:
            policy = load_policy(policy_path)
        except FileNotFoundError as exc:
            raise MultifitCliError(str(exc)) from exc
        except json.JSONDecodeError as exc:
            raise MultifitCliError(f"Malformed JSON in policy: {exc}") from exc
        except InvalidParameterError as exc:
            raise MultifitCliError(exc.message) from exc

    try:
        fitter = FitterConfig.from_policy(policy)
        evaluator = EvaluatorConfig.from_policy(policy)
    except InvalidParameterError as exc:
        raise MultifitCliError(exc.message) from exc

    payload = {"fitter": fitter.to_policy(), "evaluator": evaluator.to_policy()}
    dump_json_output(payload, _resolve_output_path(output_arg))


def main(argv: list[str] | None = None) -> int:
    try:
        cli.main(args=argv, prog_name="multifit", standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        return exc.exit_code
    except click.exceptions.Abort:
        return EXIT_INPUT_ERROR
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
