import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt


def _show_and_close(fig, *, do_show: bool = True, path: Optional[Path] = None) -> None:
    r"""
    Save and/or show a Matplotlib figure, then always close it.

    Parameters
    ----------
    fig : matplotlib.figure.Figure
        Figure object to display and close.
    do_show : bool, optional
        If ``True`` (default) call ``plt.show()`` before closing.
    path : Path, optional
        If given, the figure is written there first.
    """
    fig.tight_layout()
    if path is not None:
        fig.savefig(path)
        logging.info("Saved figure to %s", path)
    if do_show:
        plt.show()
    plt.close(fig)


def sample_trajectory(traj, npoints: int = 500) -> pd.DataFrame:
    r"""
    Positions along a trajectory at evenly spaced times.

    Parameters
    ----------
    traj : PiecewiseTrajectory or Helix
        Any trajectory with a finite ``range`` and a ``position(t)`` method.
    npoints : int, optional
        Number of samples over the full range.

    Returns
    -------
    pandas.DataFrame
        Columns ``t, x, y, z, r`` with :math:`r=\sqrt{x^2+y^2}`.
    """
    times = np.linspace(traj.range.low, traj.range.high, npoints)
    pos = np.array([traj.position(t) for t in times])
    return pd.DataFrame({
        "t": times,
        "x": pos[:, 0],
        "y": pos[:, 1],
        "z": pos[:, 2],
        "r": np.hypot(pos[:, 0], pos[:, 1]),
    })


def plot_fit(truth, fit, hits: Sequence = (), *, show: bool = True, path: Optional[Path] = None) -> None:
    r"""
    Fitted trajectory against the truth in the :math:`xy` and :math:`(z, t)` views.

    Wire positions (the reference point of each hit's wire line) are overlaid
    in the transverse view; segment boundaries of the fit are marked in the
    :math:`(z, t)` view.
    """
    tdf = sample_trajectory(truth)
    fdf = sample_trajectory(fit)

    fig, (ax_xy, ax_zt) = plt.subplots(1, 2, figsize=(11, 5))
    ax_xy.plot(tdf["x"], tdf["y"], "--", label="truth")
    ax_xy.plot(fdf["x"], fdf["y"], "-", lw=0.8, label="fit")
    if hits:
        wires = np.array([hit.wire.pos0 for hit in hits])
        ax_xy.scatter(wires[:, 0], wires[:, 1], s=8, c="k", alpha=0.6, label="wires")
    ax_xy.set_xlabel("x [mm]")
    ax_xy.set_ylabel("y [mm]")
    ax_xy.set_aspect("equal", adjustable="datalim")
    ax_xy.legend()

    ax_zt.plot(tdf["t"], tdf["z"], "--", label="truth")
    ax_zt.plot(fdf["t"], fdf["z"], "-", lw=0.8, label="fit")
    for piece in list(fit)[1:]:
        ax_zt.axvline(piece.range.low, color="grey", lw=0.5, alpha=0.5)
    ax_zt.set_xlabel("t [ns]")
    ax_zt.set_ylabel("z [mm]")
    ax_zt.legend()
    _show_and_close(fig, do_show=show, path=path)


def plot_pulls(residuals: pd.DataFrame, *, bins: int = 20, show: bool = True,
               path: Optional[Path] = None) -> None:
    """Histogram of the active hit pulls from :meth:`KinematicFit.residuals_frame`."""
    if residuals.empty or "pull" not in residuals.columns:
        logging.info("No hit residuals to plot.")
        return
    pulls = residuals.loc[residuals["active"], "pull"].dropna()
    fig, ax = plt.subplots(figsize=(5, 4))
    ax.hist(pulls, bins=bins, range=(-5.0, 5.0), histtype="step")
    ax.set_xlabel("pull")
    ax.set_ylabel("hits")
    ax.set_title(f"mean={pulls.mean():.3f}  rms={pulls.std():.3f}")
    _show_and_close(fig, do_show=show, path=path)
