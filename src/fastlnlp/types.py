# fastlnlp/types.py
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Iterator, NamedTuple, Optional, Sequence, Tuple, Union
import numpy as np

from .errors import ConfigurationError

E_PLUS_1 = ("e+1", "E+1", "e + 1", "E + 1")

NeighborCount = Union[int, str]


@dataclass(frozen=True, eq=False)
class Series:
    """
    Canonical scalar time series.

    Row order is the ordering used everywhere else (not the order of the time
    values). Missing observations are NaN. Both arrays are copied and made
    read-only, so a Series can be shared by any number of runs.
    """
    values: np.ndarray
    time: np.ndarray

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64, copy=True)
        if values.ndim != 1:
            raise ConfigurationError("values must have shape (n_samples,).")
        try:
            time = np.array(self.time, dtype=np.float64, copy=True)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"time must be numeric: {e}") from None
        if time.shape != values.shape:
            raise ConfigurationError(
                f"time has shape {time.shape} but values has shape {values.shape}."
            )
        values.flags.writeable = False
        time.flags.writeable = False
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "time", time)

    @classmethod
    def from_values(cls, values, time=None) -> "Series":
        values = np.asarray(values, dtype=np.float64)
        if time is None:
            time = np.arange(values.shape[0], dtype=np.float64)
        return cls(values, time)

    def __len__(self) -> int:
        return self.values.shape[0]


@dataclass(frozen=True)
class Range:
    """Inclusive (start, end) over 0-based row indices."""
    start: int
    end: int

    def __post_init__(self):
        for name in ("start", "end"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, (int, np.integer)):
                raise ConfigurationError(f"Range {name} must be an integer, got {v!r}.")
            object.__setattr__(self, name, int(v))
        if self.start < 0:
            raise ConfigurationError(f"Range start must be >= 0, got {self.start}.")
        if self.start > self.end:
            raise ConfigurationError(f"Range start ({self.start}) is after end ({self.end}).")


def coerce_ranges(ranges, num_rows: int) -> Tuple[Range, ...]:
    """
    Normalize range input to a tuple of Range objects inside [0, num_rows).

    Accepts a Range, a (start, end) pair, a sequence of either, or an
    array of shape (n_ranges, 2). None means the whole series.
    """
    if ranges is None:
        if num_rows <= 0:
            raise ConfigurationError("Cannot build a default range over an empty series.")
        return (Range(0, num_rows - 1),)
    if isinstance(ranges, Range):
        ranges = [ranges]
    elif isinstance(ranges, np.ndarray):
        if ranges.ndim == 1:
            ranges = ranges[None]
        if ranges.ndim != 2 or ranges.shape[1] != 2:
            raise ConfigurationError("Range arrays must have shape (n_ranges, 2).")
        ranges = [tuple(r) for r in ranges.tolist()]
    elif (isinstance(ranges, (tuple, list)) and len(ranges) == 2
          and all(isinstance(v, (int, np.integer)) for v in ranges)):
        ranges = [tuple(ranges)]

    out = []
    for r in ranges:
        if not isinstance(r, Range):
            try:
                start, end = r
            except (TypeError, ValueError):
                raise ConfigurationError(f"Malformed range: {r!r}") from None
            r = Range(start, end)
        if r.end >= num_rows:
            raise ConfigurationError(
                f"Range {r.start}..{r.end} exceeds the series (last row is {num_rows - 1})."
            )
        out.append(r)
    if not out:
        raise ConfigurationError("At least one range is required.")
    return tuple(out)


def range_mask(ranges: Sequence[Range], num_rows: int) -> np.ndarray:
    mask = np.zeros(num_rows, dtype=bool)
    for r in ranges:
        mask[r.start:r.end + 1] = True
    return mask


@dataclass(frozen=True)
class ParameterSet:
    """
    One resolved combination of embedding and forecast parameters.

    Parameters:
        E (int): Embedding dimension.
        tau (int): Lag between embedding coordinates.
        tp (int): Prediction horizon. Target row is query row + tp.
        nn (int or str): Number of neighbors. "e+1" pegs it to E + 1,
            any value < 1 uses every admissible candidate.
        theta (float): S-map localisation. Ignored by simplex.
    """
    E: int
    tau: int = 1
    tp: int = 1
    nn: NeighborCount = "e+1"
    theta: float = 0.0

    def validate(self) -> "ParameterSet":
        for name in ("E", "tau", "tp"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, (int, np.integer)):
                raise ConfigurationError(f"{name} must be an integer, got {v!r}.")
        if self.E < 1:
            raise ConfigurationError(f"E must be >= 1, got {self.E}.")
        if self.tau < 1:
            raise ConfigurationError(f"tau must be >= 1, got {self.tau}.")
        if isinstance(self.nn, str):
            if self.nn not in E_PLUS_1:
                raise ConfigurationError(f"Unknown neighbor sentinel: {self.nn!r}")
        elif isinstance(self.nn, bool) or not isinstance(self.nn, (int, np.integer, float)):
            raise ConfigurationError(f"nn must be an integer or 'e+1', got {self.nn!r}.")
        elif not np.isfinite(self.nn) or self.nn != int(self.nn):
            raise ConfigurationError(f"nn must be a whole number, got {self.nn!r}.")
        if not np.isfinite(self.theta) or self.theta < 0:
            raise ConfigurationError(f"theta must be a finite value >= 0, got {self.theta!r}.")
        return self

    @property
    def num_neighbors(self) -> Optional[int]:
        """Resolved neighbor count, None meaning all admissible candidates."""
        if isinstance(self.nn, str):
            return self.E + 1
        k = int(self.nn)
        return k if k >= 1 else None

    @property
    def span(self) -> int:
        # rows spanned by one embedding vector
        return (self.E - 1) * self.tau + 1

    def as_dict(self) -> dict:
        d = asdict(self)
        d["nn"] = self.num_neighbors if self.num_neighbors is not None else 0
        return d


class NeighborRecord(NamedTuple):
    index: int
    distance: float


class PredictionRecord(NamedTuple):
    query_index: int
    time: float
    observed: float
    predicted: float
    pred_variance: float
    coefficients: Optional[np.ndarray] = None


@dataclass(frozen=True)
class SkillStats:
    """Forecast skill. Statistics that cannot be computed are None."""
    num_pred: int
    rho: Optional[float] = None
    mae: Optional[float] = None
    rmse: Optional[float] = None
    perc: Optional[float] = None
    p_val: Optional[float] = None

    def as_dict(self, prefix: str = "") -> dict:
        return {prefix + k: v for k, v in asdict(self).items()}


@dataclass(frozen=True, eq=False)
class ModelOutput:
    """Raw predictions aligned by query row."""
    query_index: np.ndarray
    time: np.ndarray
    observed: np.ndarray
    predicted: np.ndarray
    pred_variance: np.ndarray
    coefficients: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return self.query_index.shape[0]

    def __iter__(self) -> Iterator[PredictionRecord]:
        return self.records()

    def records(self) -> Iterator[PredictionRecord]:
        for i in range(len(self)):
            yield PredictionRecord(
                int(self.query_index[i]),
                float(self.time[i]),
                float(self.observed[i]),
                float(self.predicted[i]),
                float(self.pred_variance[i]),
                None if self.coefficients is None else self.coefficients[i],
            )


@dataclass(frozen=True)
class RunResult:
    params: ParameterSet
    stats: SkillStats
    const_stats: SkillStats
    model_output: Optional[ModelOutput] = field(default=None, repr=False)

    @property
    def smap_coefficients(self) -> Optional[np.ndarray]:
        if self.model_output is None:
            return None
        return self.model_output.coefficients

    def as_dict(self) -> dict:
        d = self.params.as_dict()
        d.update(self.stats.as_dict())
        d.update(self.const_stats.as_dict(prefix="const_"))
        return d
