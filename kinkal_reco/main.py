#!/usr/bin/env python3
r"""
Toy kinematic Kalman fit runner.

Generates a synthetic particle crossing a set of drift wires, optionally in a
field with a linear axial gradient, and fits it with :class:`KinematicFit`
following the configured meta-iteration schedule.

Typical usage:

.. code-block:: bash

   kinkal-fit --hits 40 --seed 7
   kinkal-fit --config fit.json --gradient 0.9 -v
   kinkal-fit --gradient 0.95 --save-plots plots/

Without a config file a three-step schedule is used: a first pass with
frozen null ambiguities, then two passes that resolve left/right
ambiguities and refresh field corrections.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from kinkal_reco.bfield import GradBField, UniformBField
from kinkal_reco.config import FitConfig, MetaIterConfig, WireHitUpdater, load_config
from kinkal_reco.fit import KinematicFit
from kinkal_reco.helix import PARAM_NAMES
from kinkal_reco.toy import generate_event


def build_parser() -> argparse.ArgumentParser:
    """Command-line interface of the toy fit runner."""
    p = argparse.ArgumentParser(description="Fit a toy particle with the kinematic Kalman fit.")
    p.add_argument("--config", type=str, default=None,
                   help="Path to a JSON fit configuration (default: built-in schedule).")
    p.add_argument("-n", "--hits", type=int, default=40,
                   help="Number of wire hits (default: 40).")
    p.add_argument("--momentum", type=float, default=100.0,
                   help="Particle momentum in MeV/c (default: 100).")
    p.add_argument("--bnom", type=float, default=1.0,
                   help="Nominal axial field in Tesla (default: 1.0).")
    p.add_argument("--gradient", type=float, default=None, metavar="B1",
                   help="Field at the end of a linear gradient region starting at z=0 (default: uniform).")
    p.add_argument("--zgrad", type=float, default=1000.0,
                   help="Length of the gradient region in mm (default: 1000).")
    p.add_argument("--seed", type=int, default=None,
                   help="Random seed (default: None).")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Show the fitted trajectory and hit pulls (default: False).")
    p.add_argument("--save-plots", type=str, default=None, metavar="DIR",
                   help="Directory to write fit.png and pulls.png into.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Force the non-interactive ``'Agg'`` backend when figures are not shown.

    Must be called **before** :mod:`kinkal_reco.plotting` is imported.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with ``%H:%M:%S`` timestamps.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def default_config(bfield_correction: bool) -> FitConfig:
    updater = WireHitUpdater(mindoca=0.5, maxdoca=5.0)
    schedule = (
        MetaIterConfig(update_bfield_correction=bfield_correction),
        MetaIterConfig(update_bfield_correction=bfield_correction, hit_updaters=(updater,)),
        MetaIterConfig(update_bfield_correction=bfield_correction, hit_updaters=(updater,)),
    )
    return FitConfig(bfield_correction=bfield_correction, schedule=schedule)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Generate a toy event, fit it and log the iteration summaries and results."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    rng = np.random.default_rng(args.seed)
    if args.gradient is None:
        bfield = UniformBField(args.bnom)
    else:
        bfield = GradBField(args.bnom, args.gradient, 0.0, args.zgrad)
        logging.info("Gradient field %.3g T -> %.3g T over z in [0, %.6g] mm",
                     args.bnom, args.gradient, args.zgrad)

    if args.config:
        cfg_path = Path(args.config)
        logging.info("Reading config from %s", cfg_path)
        config = load_config(cfg_path)
    else:
        config = default_config(args.gradient is not None)

    event = generate_event(nhits=args.hits, rng=rng, bfield=bfield,
                           momentum=args.momentum, bnom=args.bnom)
    kfit = KinematicFit(event.seed, event.hits, bfield, config)
    status = kfit.fit()
    logging.info("Final: chi2/ndof = %.4g / %d, %d active hits",
                 status.chisq, status.ndof, status.nactive)

    truth = event.truth.front.params.parameters
    result = kfit.traj.front.params
    errors = result.diagonal()
    for name, fitval, err, trueval in zip(PARAM_NAMES, result.parameters, errors, truth):
        logging.info("%-8s fit=%12.6g +- %-10.4g true=%12.6g pull=%7.3f",
                     name, fitval, err, trueval, (fitval - trueval) / err if err > 0 else float("nan"))
    logging.info("Fit trajectory has %d pieces", len(kfit.traj))
    residuals = kfit.residuals_frame()
    if args.verbose:
        logging.debug("Residuals:\n%s", residuals.to_string())

    if args.plot or args.save_plots:
        apply_plotting_guard(args.plot)
        from kinkal_reco.plotting import plot_fit, plot_pulls
        outdir = Path(args.save_plots) if args.save_plots else None
        if outdir is not None:
            outdir.mkdir(parents=True, exist_ok=True)
        plot_fit(event.truth, kfit.traj, event.hits, show=args.plot,
                 path=outdir / "fit.png" if outdir else None)
        plot_pulls(residuals, show=args.plot,
                   path=outdir / "pulls.png" if outdir else None)


if __name__ == "__main__":
    main()
