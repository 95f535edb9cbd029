from __future__ import annotations
import numpy as np
from numba import njit


__all__ = [
    "invert_spd",
    "scalar_weight",
    "similarity",
]


@njit(cache=True)
def _robust_cholesky(S: np.ndarray) -> np.ndarray:
    r"""
    Robust Cholesky factorization with small diagonal *jitter* and SPD fallback.

    Attempts ``np.linalg.cholesky(S)``; on failure, retries with
    :math:`S+\varepsilon I_n` where :math:`\varepsilon` is escalated
    geometrically. If all retries fail, an eigenvalue floor is applied:

    .. math::
        S_\text{fix} = V\;\mathrm{diag}(\max(w,\; w_\max\,10^{-15}))\;V^\top,

    where :math:`V` and :math:`w` are eigenvectors/values of :math:`S`.

    Parameters
    ----------
    S : ndarray, shape (n, n)
        Symmetric covariance or weight matrix (not necessarily strictly SPD).

    Returns
    -------
    L : ndarray, shape (n, n)
        Lower-triangular factor with :math:`S_\text{spd}=L L^\top`.
    """
    try:
        return np.linalg.cholesky(S)
    except Exception:
        pass

    n = S.shape[0]
    I = np.eye(n)
    eps = 1e-12
    for _ in range(8):
        try:
            return np.linalg.cholesky(S + eps * I)
        except Exception:
            eps *= 10.0
    # last resort: eigen floor
    w, V = np.linalg.eigh(S)
    w = np.maximum(w, np.max(w) * 1e-15)
    S_fix = (V * w) @ V.T
    return np.linalg.cholesky(S_fix)


@njit(cache=True)
def _invert_spd(S: np.ndarray) -> np.ndarray:
    L = _robust_cholesky(S)
    n = S.shape[0]
    # L^{-1} by a triangular solve against the identity, then S^{-1} = L^{-T} L^{-1}
    Linv = np.linalg.solve(L, np.eye(n))
    out = Linv.T @ Linv
    # symmetrize against round-off
    return 0.5 * (out + out.T)


def invert_spd(S: np.ndarray) -> np.ndarray:
    r"""
    Invert a symmetric positive (semi-)definite matrix via robust Cholesky.

    Used to move a Gaussian state between parameter space
    :math:`(\mathbf{p}, \mathbf{C})` and weight space
    :math:`(\mathbf{w}, \mathbf{W}) = (\mathbf{C}^{-1}\mathbf{p}, \mathbf{C}^{-1})`.

    Parameters
    ----------
    S : array_like, shape (n, n)
        Covariance or weight matrix.

    Returns
    -------
    ndarray, shape (n, n)
        :math:`S^{-1}`, symmetrized.

    Notes
    -----
    Near-singular inputs are regularized by the jitter/eigen-floor fallback
    of :func:`_robust_cholesky` instead of raising.
    """
    S = np.ascontiguousarray(S, dtype=np.float64)
    return _invert_spd(S)


@njit(cache=True)
def _scalar_weight(dRdP: np.ndarray, resid: float, var: float, pref: np.ndarray):
    wmat = np.outer(dRdP, dRdP) / var
    wvec = wmat @ pref + dRdP * (resid / var)
    return wvec, wmat


def scalar_weight(dRdP: np.ndarray, resid: float, var: float, pref: np.ndarray):
    r"""
    Express a scalar residual as weight-space information about the parameters.

    With :math:`\mathbf{D}` the derivative of the *prediction* with respect to
    the parameters (so the residual ``measurement - prediction`` varies as
    :math:`r(\mathbf{p}) \approx r - \mathbf{D}^\top(\mathbf{p}-\mathbf{p}_\text{ref})`),

    .. math::

        \mathbf{W} = \frac{\mathbf{D}\mathbf{D}^\top}{V}, \qquad
        \mathbf{w} = \mathbf{W}\,\mathbf{p}_\text{ref} + \frac{\mathbf{D}\,r}{V}.

    Parameters
    ----------
    dRdP : ndarray, shape (n,)
        Residual derivative vector.
    resid : float
        Residual value at the reference parameters.
    var : float
        Residual variance :math:`V`.
    pref : ndarray, shape (n,)
        Reference parameters the residual was linearized around.

    Returns
    -------
    wvec : ndarray, shape (n,)
    wmat : ndarray, shape (n, n)
    """
    return _scalar_weight(np.ascontiguousarray(dRdP, dtype=np.float64), float(resid), float(var),
                          np.ascontiguousarray(pref, dtype=np.float64))


def similarity(J: np.ndarray, C: np.ndarray) -> np.ndarray:
    r"""
    Similarity transform :math:`J C J^\top` (a quadratic form when ``J`` is 1-D).
    """
    J = np.asarray(J, dtype=np.float64)
    if J.ndim == 1:
        return float(J @ C @ J)
    return J @ C @ J.T
