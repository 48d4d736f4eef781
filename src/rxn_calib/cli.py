"""CLI entry point."""

from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Iterable, Optional, Sequence

import numpy as np

from rxn_calib.bisection import find_interesting_range, find_valid_range
from rxn_calib.errors import CalibrationError, ConfigError
from rxn_calib.hydra_utils import (
    DEFAULT_CONFIG_NAME,
    DEFAULT_CONFIG_PATH,
    compose_config,
    format_config,
    resolve_config,
    seed_everything,
)
from rxn_calib.logging_utils import configure_logging, log_exception, reporting_errors
from rxn_calib.session import CalibrationSession, build_session

_SUBCOMMANDS: Sequence[str] = (
    "help",
    "cfg",
    "evaluate",
    "likelihood",
    "limits",
)

logger = logging.getLogger("rxn_calib.cli")


def _compose(args: argparse.Namespace) -> Any:
    return compose_config(
        config_path=args.config_path,
        config_name=args.config_name,
        overrides=args.overrides,
    )


def _open_session(args: argparse.Namespace) -> tuple[dict[str, Any], CalibrationSession]:
    cfg = _compose(args)
    seed_everything(cfg)
    resolved = resolve_config(cfg)
    if resolved.get("common", {}).get("verbose"):
        configure_logging(verbose=True)
    return resolved, build_session(resolved)


def _parameter_values(
    session: CalibrationSession,
    params: Optional[Sequence[float]],
) -> np.ndarray:
    if params is None:
        return session.parameters.values
    values = np.asarray(params, dtype=float)
    if values.size != len(session.parameters):
        raise ConfigError(
            f"--params has {values.size} values; {len(session.parameters)} parameters "
            "are configured."
        )
    return values


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))


def _cfg_handler(args: argparse.Namespace) -> None:
    print(format_config(_compose(args)), end="")


def _evaluate_handler(args: argparse.Namespace) -> None:
    _, session = _open_session(args)
    with session:
        values = _parameter_values(session, args.params)
        measurements, ok = session.manager.generate_test_measurements(values)
        _print_json(
            {
                "parameters": values.tolist(),
                "ok": bool(ok),
                "experiments": session.manager.experiment_names(),
                "measurements": measurements.tolist(),
            }
        )


def _likelihood_handler(args: argparse.Namespace) -> None:
    _, session = _open_session(args)
    with session:
        manager = session.manager
        if not manager.initialize_true_data(session.true_parameters):
            raise CalibrationError(
                "Evaluation at the true parameters failed; no data to compare against."
            )
        manager.generate_expt_data()
        values = _parameter_values(session, args.params)
        measurements, ok = manager.generate_test_measurements(values)
        payload: dict[str, Any] = {
            "parameters": values.tolist(),
            "ok": bool(ok),
            "likelihood": manager.compute_likelihood(measurements) if ok else None,
        }
        if session.parameters.prior_stats_initialized:
            payload["prior"] = session.parameters.compute_prior(values)
        _print_json(payload)


def _limits_handler(args: argparse.Namespace) -> None:
    resolved, session = _open_session(args)
    bisection = resolved.get("bisection", {})
    search = find_interesting_range if bisection.get("interesting") else find_valid_range
    with session:
        index = int(bisection.get("parameter", 0))
        if not 0 <= index < len(session.parameters):
            raise ConfigError(f"bisection.parameter {index} is out of range.")
        pvals = session.parameters.values
        kmin, kmax = search(
            session.manager,
            float(bisection.get("kmin", 0.0)),
            float(bisection.get("kmax", 1.0)),
            float(bisection.get("ktyp", 0.5)),
            float(bisection.get("tol", 1.0e-3)),
            pvals,
            index,
        )
        _print_json(
            {
                "parameter": session.parameters.names[index],
                "kmin": kmin,
                "kmax": kmax,
            }
        )


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config-path",
        default=DEFAULT_CONFIG_PATH,
        help="Path to the Hydra config directory.",
    )
    parser.add_argument(
        "--config-name",
        default=DEFAULT_CONFIG_NAME,
        help="Hydra config name (without extension).",
    )


def _add_overrides_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "overrides",
        nargs=argparse.REMAINDER,
        help="Hydra overrides (ex: farm.mode=process common.seed=123).",
    )


def _register_help_subcommand(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    parser: argparse.ArgumentParser,
) -> None:
    def _handler(_args: argparse.Namespace) -> None:
        parser.print_help()

    help_parser = subparsers.add_parser(
        "help",
        help="Show top-level help.",
        description="Show top-level help.",
    )
    help_parser.set_defaults(handler=_handler)


def _register_cfg_subcommand(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    cfg_parser = subparsers.add_parser(
        "cfg",
        help="Compose and print Hydra config.",
        description="Compose and print Hydra config.",
    )
    _add_config_arguments(cfg_parser)
    _add_overrides_argument(cfg_parser)
    cfg_parser.set_defaults(handler=_cfg_handler)


def _register_evaluate_subcommand(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    evaluate_parser = subparsers.add_parser(
        "evaluate",
        help="Run every experiment once and print the measurements.",
        description="Run every experiment once and print the measurements as JSON.",
    )
    _add_config_arguments(evaluate_parser)
    evaluate_parser.add_argument(
        "--params",
        type=float,
        nargs="+",
        default=None,
        help="Parameter values (default: configured defaults).",
    )
    _add_overrides_argument(evaluate_parser)
    evaluate_parser.set_defaults(handler=_evaluate_handler)


def _register_likelihood_subcommand(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    likelihood_parser = subparsers.add_parser(
        "likelihood",
        help="Score parameter values against (synthetic) experimental data.",
        description=(
            "Initialize true data, draw perturbed data, evaluate the given "
            "parameters and print the likelihood and prior energies."
        ),
    )
    _add_config_arguments(likelihood_parser)
    likelihood_parser.add_argument(
        "--params",
        type=float,
        nargs="+",
        default=None,
        help="Parameter values (default: configured defaults).",
    )
    _add_overrides_argument(likelihood_parser)
    likelihood_parser.set_defaults(handler=_likelihood_handler)


def _register_limits_subcommand(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    limits_parser = subparsers.add_parser(
        "limits",
        help="Bisect the valid (or interesting) range of one parameter.",
        description=(
            "Bisect the valid range of bisection.parameter; set "
            "bisection.interesting=true to stop kmax at the onset of a steep change."
        ),
    )
    _add_config_arguments(limits_parser)
    _add_overrides_argument(limits_parser)
    limits_parser.set_defaults(handler=_limits_handler)


def _build_parser(subcommands: Iterable[str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rxn-calib",
        description="rxn_calib command line interface.",
    )
    parser.add_argument(
        "--traceback",
        action="store_true",
        help="Show full traceback on errors.",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    for name in subcommands:
        if name == "help":
            _register_help_subcommand(subparsers, parser)
            continue
        if name == "cfg":
            _register_cfg_subcommand(subparsers)
            continue
        if name == "evaluate":
            _register_evaluate_subcommand(subparsers)
            continue
        if name == "likelihood":
            _register_likelihood_subcommand(subparsers)
            continue
        if name == "limits":
            _register_limits_subcommand(subparsers)
            continue
        raise ValueError(f"Unknown subcommand: {name!r}.")
    return parser


def _cli_main(
    *,
    cli_logger: logging.Logger,
    argv: Optional[Sequence[str]] = None,
) -> None:
    parser = _build_parser(_SUBCOMMANDS)
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        raise SystemExit(2)
    try:
        args.handler(args)
    except CalibrationError as exc:
        log_exception(cli_logger, exc, show_traceback=args.traceback)
        raise SystemExit(1) from None


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point with standard logging/error handling."""
    configure_logging()
    with reporting_errors(logger):
        _cli_main(cli_logger=logger, argv=argv)


if __name__ == "__main__":
    main()
