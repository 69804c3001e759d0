# fastlnlp/stats.py
import logging
import math
import warnings
from typing import Optional, Tuple

import numpy as np
import torch
from scipy.stats import norm

from .errors import UndefinedStatisticWarning
from .types import SkillStats
from .utils.metrics import get_metric, batch_perc_correct_sign, fisher_z

logger = logging.getLogger(__name__)

MIN_PRED_FOR_P_VALUE = 4


def _as_tensor(x):
    return torch.as_tensor(np.asarray(x, dtype=np.float64))


def _defined(v) -> Optional[float]:
    v = float(v)
    return v if math.isfinite(v) else None


def _p_value(rho: Optional[float], n: int) -> Optional[float]:
    """One-sided p-value that rho > 0 via Fisher's z-transformation."""
    if rho is None or n < MIN_PRED_FOR_P_VALUE:
        return None
    z = fisher_z(torch.tensor(rho, dtype=torch.float64), n)
    return float(norm.sf(z.item()))


def _reduce(A: torch.Tensor, B: torch.Tensor, prev: torch.Tensor, labels, silent: bool):
    # A: [S, C] predictions for C predictors, B: [S] observations, prev: [S]
    n, C = A.shape
    if n == 0:
        return [SkillStats(num_pred=0) for _ in range(C)]

    Bc = B[:, None].expand_as(A)
    values = {name: get_metric(name)(A, Bc) for name in ("rho", "mae", "rmse")}

    has_prev = torch.isfinite(prev)
    if bool(has_prev.any()):
        perc = batch_perc_correct_sign(A[has_prev], Bc[has_prev], prev[has_prev][:, None])
    else:
        perc = torch.full((C,), float("nan"), dtype=A.dtype)

    out = []
    for c in range(C):
        rho = _defined(values["rho"][c]) if n >= 2 else None
        if rho is None and not silent:
            warnings.warn(
                f"rho is undefined for the {labels[c]} ({n} prediction(s), "
                "observed or predicted values have zero variance).",
                UndefinedStatisticWarning,
                stacklevel=3,
            )
        out.append(SkillStats(
            num_pred=int(n),
            rho=rho,
            mae=_defined(values["mae"][c]),
            rmse=_defined(values["rmse"][c]),
            perc=_defined(perc[c]),
            p_val=_p_value(rho, n),
        ))
    return out


def skill_stats(observed, predicted, previous=None, *, silent=False) -> SkillStats:
    """
    Skill of one predictor over the pairs where both observed and predicted
    are present.

    Parameters:
        observed (array-like): Observed target values, NaN where missing.
        predicted (array-like): Forecasts, NaN where no forecast was made.
        previous (array-like or None): Last observed value each forecast was
            made from. Used for the percent-correct-sign statistic; when None
            that statistic is undefined.
        silent (bool): Suppress UndefinedStatisticWarning.

    Returns:
        SkillStats
    """
    obs = _as_tensor(observed)
    pred = _as_tensor(predicted)
    prev = _as_tensor(previous) if previous is not None else torch.full_like(obs, float("nan"))

    mask = torch.isfinite(obs) & torch.isfinite(pred)
    return _reduce(pred[mask][:, None], obs[mask], prev[mask], ("model",), silent)[0]


def forecast_stats(observed, predicted, previous, *, silent=False) -> Tuple[SkillStats, SkillStats]:
    """
    Skill of the forecasts and of the constant predictor (prediction equals
    ``previous``), both over the query set where observed and predicted are present.

    Returns:
        tuple[SkillStats, SkillStats]: (stats, const_stats)
    """
    obs = _as_tensor(observed)
    pred = _as_tensor(predicted)
    prev = _as_tensor(previous)

    mask = torch.isfinite(obs) & torch.isfinite(pred)
    A = torch.stack([pred[mask], prev[mask]], dim=1)
    stats, const_stats = _reduce(A, obs[mask], prev[mask], ("model", "constant predictor"), silent)
    logger.debug("forecast stats: %s | constant predictor: %s", stats, const_stats)
    return stats, const_stats
