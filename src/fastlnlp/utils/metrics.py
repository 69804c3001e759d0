# fastlnlp/utils/metrics.py
from __future__ import annotations
from typing import Callable, Dict
import torch

# Predictions A and observations B have shape [S, ...] and reduce over S.
Metric = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


def batch_corr(A: torch.Tensor, B: torch.Tensor) -> torch.Tensor:
    # Pearson r across the sample axis; NaN where either side has zero variance
    muA = A.mean(dim=0, keepdim=True)
    muB = B.mean(dim=0, keepdim=True)
    num = ((A - muA) * (B - muB)).sum(dim=0)
    den = torch.sqrt(((A - muA).pow(2)).sum(dim=0) * ((B - muB).pow(2)).sum(dim=0))
    r = num / den
    r = torch.where(den > 0, r, torch.full_like(r, float("nan")))
    return r.clamp(-1.0, 1.0)


def batch_mse(A: torch.Tensor, B: torch.Tensor) -> torch.Tensor:
    return (A - B).pow(2).mean(dim=0)


def batch_mae(A: torch.Tensor, B: torch.Tensor) -> torch.Tensor:
    """
    Mean Absolute Error (MAE) across samples.
    A, B: [S, ...]  ->  returns [...]
    """
    return (A - B).abs().mean(dim=0)


def batch_rmse(A: torch.Tensor, B: torch.Tensor) -> torch.Tensor:
    return torch.sqrt(batch_mse(A, B))


def batch_perc_correct_sign(A: torch.Tensor, B: torch.Tensor, prev: torch.Tensor) -> torch.Tensor:
    """
    Fraction of samples where the predicted change and the observed change,
    both measured from ``prev``, have the same sign.

    A, B: [S, ...]; prev broadcastable to A.
    """
    hit = torch.sign(A - prev) == torch.sign(B - prev)
    return hit.to(A.dtype).mean(dim=0)


def fisher_z(rho: torch.Tensor, n: int) -> torch.Tensor:
    """z = atanh(rho) * sqrt(n - 3); infinite for |rho| == 1."""
    return torch.atanh(rho) * torch.sqrt(torch.tensor(float(n - 3), dtype=rho.dtype, device=rho.device))


# ---- registry ----
_METRICS: Dict[str, Metric] = {
    "rho":  batch_corr,
    "mae":  batch_mae,
    "rmse": batch_rmse,
    "mse":  batch_mse,
}


def get_metric(name: str) -> Metric:
    if name not in _METRICS:
        raise ValueError(f"Unknown metric: {name}. Available: {list(_METRICS)}")
    return _METRICS[name]
