"""Rotation curve of the fitted model."""

from dataclasses import dataclass, field

import numpy as np

from galrot.params import Params

R_START = 0.0
R_END = 15.0
N_INTERVALS = 1000


@dataclass
class RotationCurve:
    """Azimuthal velocity sampled on a regular grid of Galactocentric distances."""

    r: np.ndarray = field(repr=False)
    theta: np.ndarray = field(repr=False)

    @classmethod
    def from_params(
        cls,
        params: Params,
        start: float = R_START,
        end: float = R_END,
        n_intervals: int = N_INTERVALS,
    ) -> "RotationCurve":
        r = np.linspace(start, end, n_intervals + 1)
        return cls(r=r, theta=params.rotation_velocity(r))

    def to_dataframe(self) -> "pd.DataFrame":
        import pandas as pd

        return pd.DataFrame({"R": self.r, "theta": self.theta})
