"""Outlier rejection based on the expected number of large discrepancies.

A critical multiplier kappa is chosen so that, for N Gaussian residuals, one
exceedance is expected; a looser multiplier k_005 is chosen so that the
probability of any exceedance is 5%. Exceedances of kappa are flagged, except
for up to L' of the smallest ones that don't exceed k_005.

Two variants are provided: the one-dimensional test checks the four residual
channels one by one, the four-dimensional test checks the sum of the squared
relative discrepancies (chi-squared with four degrees of freedom).
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.optimize import brentq
from scipy.special import erf, erfc

from galrot.catalog import Object
from galrot.exceptions import OutlierError
from galrot.inner import CHANNELS
from galrot.utils import setup_logger

logger = setup_logger(__name__)

KAPPA_XTOL = 1e-15
KAPPA_MAX_ITERS = 1000

# Root brackets of the critical multipliers
KAPPA_INTERVAL = (2.0, 5.0)
KAPPA_4D_INTERVAL = (9.0, 18.0)
K_005_4D_INTERVAL = (15.0, 25.0)


# ---------------------------------------------------------------------------
# Critical multipliers
# ---------------------------------------------------------------------------


def _tail_1d(kappa: float, n: int, alpha: float, raise_to_n: bool) -> float:
    if raise_to_n:
        return 1.0 - erf(kappa / np.sqrt(2.0)) ** n - alpha
    return erfc(kappa / np.sqrt(2.0)) * n - alpha


def _tail_4d(z: float, n: int, alpha: float, raise_to_n: bool) -> float:
    prob = 1.0 - np.exp(-z / 2.0) * (z / 2.0 + 1.0)
    if raise_to_n:
        return 1.0 - prob**n - alpha
    return (1.0 - prob) * n - alpha


def _solve(f, interval: tuple, n: int, alpha: float, raise_to_n: bool, label: str) -> float:
    try:
        return float(
            brentq(
                f,
                *interval,
                args=(n, alpha, raise_to_n),
                xtol=KAPPA_XTOL,
                maxiter=KAPPA_MAX_ITERS,
            )
        )
    except (ValueError, RuntimeError) as exc:
        raise OutlierError(
            f"Couldn't find {label} for N = {n} on [{interval[0]}, {interval[1]}]"
        ) from exc


def solve_kappa(n: int) -> tuple:
    """Critical multipliers (kappa, k_005) of the one-dimensional test.

    kappa solves ``erfc(kappa / sqrt(2)) * N = 1`` and k_005 solves
    ``1 - erf(k / sqrt(2))^N = 0.05``, both on [2, 5].

    Raises:
        OutlierError: If N is too small for a root on [2, 5] (N < 22).
    """
    kappa = _solve(_tail_1d, KAPPA_INTERVAL, n, 1.0, False, "kappa")
    k_005 = _solve(_tail_1d, KAPPA_INTERVAL, n, 0.05, True, "k_005")
    return kappa, k_005


def solve_kappa_4d(n: int) -> tuple:
    """Critical values (kappa, k_005) of the four-dimensional test."""
    kappa = _solve(_tail_4d, KAPPA_4D_INTERVAL, n, 1.0, False, "kappa (4D)")
    k_005 = _solve(_tail_4d, K_005_4D_INTERVAL, n, 0.05, True, "k_005 (4D)")
    return kappa, k_005


# ---------------------------------------------------------------------------
# Rejection
# ---------------------------------------------------------------------------


@dataclass
class OutlierReport:
    """Objects flagged by one outlier pass.

    ``flagged`` holds ``(channel, index, discrepancy)``; the channel is
    ``"4d"`` for the four-dimensional test.
    """

    kappa: float
    k_005: float
    n_checked: int
    flagged: list = field(default_factory=list)

    @property
    def indices(self) -> list:
        return sorted({i for _, i, _ in self.flagged})

    def to_dataframe(self) -> "pd.DataFrame":
        import pandas as pd

        return pd.DataFrame(self.flagged, columns=["channel", "index", "discrepancy"])


def _select(exceedances: list, l_stroke: int, k_005: float) -> list:
    """Drop up to L' of the smallest exceedances that don't exceed k_005."""
    exceedances = sorted(exceedances, key=lambda item: item[1])
    kept = exceedances[l_stroke:]
    kept[:0] = [item for item in exceedances[:l_stroke] if item[1] > k_005]
    return kept


def find_outliers(
    objects: list[Object],
    triples: dict,
    l_stroke: int = 1,
    kappa: Optional[float] = None,
    k_005: Optional[float] = None,
) -> OutlierReport:
    """Flag the objects with improbably large discrepancies, channel by channel.

    Channels are checked in order; an object flagged by one channel is not
    checked by the following ones.

    Args:
        objects: The catalog; ``outlier`` flags are set in place.
        triples: Residual triples per catalog index (from the last fit).
        l_stroke: Number of the smallest exceedances that may be kept.
        kappa, k_005: Critical multipliers; solved from N when omitted.

    Returns:
        OutlierReport with the newly flagged objects.
    """
    n = sum(not obj.outlier for obj in objects)
    if kappa is None or k_005 is None:
        solved_kappa, solved_k_005 = solve_kappa(n)
        kappa = solved_kappa if kappa is None else kappa
        k_005 = solved_k_005 if k_005 is None else k_005

    report = OutlierReport(kappa=kappa, k_005=k_005, n_checked=n)
    for channel in CHANNELS:
        exceedances = []
        for i, obj in enumerate(objects):
            if obj.outlier:
                continue
            discrepancy = triples[i][channel].relative_discrepancy
            if discrepancy > kappa:
                exceedances.append((i, discrepancy))

        for i, discrepancy in _select(exceedances, l_stroke, k_005):
            objects[i].outlier = True
            report.flagged.append((channel, i, discrepancy))

    logger.info(
        "Outlier pass: N = %d, kappa = %.6f, k_005 = %.6f, %d flagged",
        n, kappa, k_005, len(report.flagged),
    )
    for channel, i, discrepancy in report.flagged:
        logger.info("  %s: #%d %s (%.4f)", channel, i + 1, objects[i].name, discrepancy)
    return report


def find_outliers_4d(
    objects: list[Object],
    triples: dict,
    l_stroke: int = 1,
    kappa: Optional[float] = None,
    k_005: Optional[float] = None,
) -> OutlierReport:
    """Flag the objects by the sum of their squared relative discrepancies."""
    n = sum(not obj.outlier for obj in objects)
    if kappa is None or k_005 is None:
        solved_kappa, solved_k_005 = solve_kappa_4d(n)
        kappa = solved_kappa if kappa is None else kappa
        k_005 = solved_k_005 if k_005 is None else k_005

    exceedances = []
    for i, obj in enumerate(objects):
        if obj.outlier:
            continue
        summed = sum(
            (t.observed - t.model) ** 2 / t.error**2 for t in triples[i].values()
        )
        if summed > kappa:
            exceedances.append((i, summed))

    report = OutlierReport(kappa=kappa, k_005=k_005, n_checked=n)
    for i, summed in _select(exceedances, l_stroke, k_005):
        objects[i].outlier = True
        report.flagged.append(("4d", i, summed))

    logger.info(
        "Outlier pass (4D): N = %d, kappa = %.6f, k_005 = %.6f, %d flagged",
        n, kappa, k_005, len(report.flagged),
    )
    return report
