"""
Generalized regression calibration of design weights.

Calibrated weights are w_i = d_i × F(x_i'λ), with λ solved so that the
weighted totals of the auxiliary variables match known control totals:

    Σ_i d_i × F(x_i'λ) × x_i = T

Calibration functions F (Deville & Särndal 1992):
- linear:  F(u) = 1 + u                       (GREG; weights may go negative)
- raking:  F(u) = exp(u)                      (multiplicative; always positive)
- logit:   F(u) bounded in (L, U)             (truncated ratio of weights)
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np
from scipy.optimize import root

from ..core.exceptions import CalibrationError, InvalidConfigError

logger = logging.getLogger(__name__)

DEFAULT_LOGIT_BOUNDS = (0.5, 2.0)


def _linear(u: np.ndarray, bounds: tuple[float, float]) -> tuple[np.ndarray, np.ndarray]:
    return 1.0 + u, np.ones_like(u)


def _raking(u: np.ndarray, bounds: tuple[float, float]) -> tuple[np.ndarray, np.ndarray]:
    g = np.exp(u)
    return g, g


def _logit(u: np.ndarray, bounds: tuple[float, float]) -> tuple[np.ndarray, np.ndarray]:
    lower, upper = bounds
    a = (upper - lower) / ((1.0 - lower) * (upper - 1.0))
    e = np.exp(np.clip(a * u, -700, 700))
    denom = (upper - 1.0) + (1.0 - lower) * e
    g = (lower * (upper - 1.0) + upper * (1.0 - lower) * e) / denom
    dg = a * (upper - lower) * (upper - 1.0) * (1.0 - lower) * e / denom**2
    return g, dg


CALIBRATION_FUNCTIONS: dict[str, Callable] = {
    "linear": _linear,
    "raking": _raking,
    "logit": _logit,
}


def calibrate_weights(
    weights: np.ndarray,
    aux: np.ndarray,
    totals: np.ndarray,
    calfun: str = "linear",
    bounds: tuple[float, float] | None = None,
    max_iter: int = 100,
    tol: float = 1e-7,
) -> np.ndarray:
    """
    Calibrate design weights to control totals.

    Parameters
    ----------
    weights : np.ndarray
        Design weights d, shape (n,).
    aux : np.ndarray
        Auxiliary variables X, shape (n, p).
    totals : np.ndarray
        Control totals T, shape (p,).
    calfun : str, default 'linear'
        One of 'linear', 'raking', 'logit'.
    bounds : tuple[float, float], optional
        (L, U) bounds on the weight ratio for 'logit'. Must satisfy
        L < 1 < U. Defaults to (0.5, 2.0).
    max_iter : int
        Maximum function evaluations for the root finder.
    tol : float
        Relative tolerance on the calibrated totals.

    Returns
    -------
    np.ndarray
        Calibrated weights, shape (n,).

    Raises
    ------
    CalibrationError
        If the solver does not converge or the totals are not met.
    """
    if calfun not in CALIBRATION_FUNCTIONS:
        raise InvalidConfigError("calfun", calfun, list(CALIBRATION_FUNCTIONS))
    bounds = bounds or DEFAULT_LOGIT_BOUNDS
    if calfun == "logit" and not bounds[0] < 1.0 < bounds[1]:
        raise InvalidConfigError("bounds", bounds, ["(L, U) with L < 1 < U"])

    d = np.asarray(weights, dtype=float)
    x = np.asarray(aux, dtype=float)
    if x.ndim == 1:
        x = x[:, None]
    t = np.asarray(totals, dtype=float)
    func = CALIBRATION_FUNCTIONS[calfun]

    def equations(lam: np.ndarray) -> np.ndarray:
        g, _ = func(x @ lam, bounds)
        return x.T @ (d * g) - t

    def jacobian(lam: np.ndarray) -> np.ndarray:
        _, dg = func(x @ lam, bounds)
        return x.T @ (x * (d * dg)[:, None])

    solution = root(
        equations,
        np.zeros(x.shape[1]),
        jac=jacobian,
        method="hybr",
        options={"maxfev": max_iter * (x.shape[1] + 1)},
    )

    if not solution.success:
        raise CalibrationError(
            f"Calibration ({calfun}) failed to converge: {solution.message}"
        )

    g, _ = func(x @ solution.x, bounds)
    calibrated = d * g

    achieved = x.T @ calibrated
    scale = np.maximum(np.abs(t), 1.0)
    error = np.abs(achieved - t) / scale
    if np.any(error > tol * 100):
        worst = int(np.argmax(error))
        raise CalibrationError(
            f"Calibration ({calfun}) did not meet control total {worst}: "
            f"target={t[worst]:.4f}, achieved={achieved[worst]:.4f}"
        )

    logger.debug(
        "Calibrated %d weights (%s): g range [%.4f, %.4f]",
        len(d),
        calfun,
        float(g.min()) if len(g) else float("nan"),
        float(g.max()) if len(g) else float("nan"),
    )
    return calibrated
