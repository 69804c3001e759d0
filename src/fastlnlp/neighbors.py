# fastlnlp/neighbors.py
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
import math

import numpy as np
import torch

from .errors import ConfigurationError
from .types import NeighborRecord

_NORMS = {
    "l1": 1.0, "l1 norm": 1.0, "manhattan": 1.0,
    "l2": 2.0, "l2 norm": 2.0, "euclidean": 2.0,
    "p": None, "p norm": None, "lp": None,
}


def _resolve_norm(norm, p=0.5) -> float:
    """
    Map a norm name to the exponent handed to ``torch.cdist``.

    "L1"/"L2" (or the "L1 norm"/"L2 norm" spellings) fix the exponent,
    "P"/"Lp"/"P norm" use ``p``.
    """
    key = str(norm).strip().lower()
    if key not in _NORMS:
        raise ConfigurationError(f"Unknown norm: {norm!r}. Available: 'L1', 'L2', 'P'.")
    exponent = _NORMS[key]
    if exponent is None:
        if isinstance(p, bool) or not isinstance(p, (int, float, np.integer, np.floating)):
            raise ConfigurationError(f"P must be a positive number, got {p!r}.")
        if not (math.isfinite(p) and p > 0):
            raise ConfigurationError(f"P must be a positive finite number, got {p!r}.")
        exponent = float(p)
    return exponent


class CandidateIndex:
    """
    Library rows a query may draw neighbors from.

    ``rows`` must already be restricted to library rows with a valid
    embedding and a usable target. For a given query the admissible subset
    further drops the query row itself and, when ``exclusion_radius`` is set,
    every row whose time lies within the radius of the query time. Both
    filters are applied independently.
    """

    def __init__(self, rows, time, exclusion_radius=None, device="cpu"):
        self.rows = torch.as_tensor(np.asarray(rows, dtype=np.int64), device=device)
        self.time = torch.tensor(np.asarray(time, dtype=np.float64), device=device)
        self.lib_time = self.time[self.rows]
        self.exclusion_radius = exclusion_radius

    def __len__(self):
        return self.rows.shape[0]

    def admissible(self, query_rows: torch.Tensor) -> torch.Tensor:
        """Boolean mask of shape (n_queries, n_candidates)."""
        query_rows = query_rows.to(self.rows.device)
        mask = self.rows[None, :] != query_rows[:, None]
        if self.exclusion_radius is not None:
            gap = (self.lib_time[None, :] - self.time[query_rows][:, None]).abs()
            mask &= gap > self.exclusion_radius
        return mask


@dataclass
class NeighborBatch:
    distances: torch.Tensor   # (B, K) ascending, inf where no neighbor
    positions: torch.Tensor   # (B, K) positions into the candidate arrays
    rows: torch.Tensor        # (B, K) series rows of the neighbors
    valid: torch.Tensor       # (B, K)

    def records(self, i) -> List[NeighborRecord]:
        keep = self.valid[i]
        return [NeighborRecord(int(r), float(d))
                for r, d in zip(self.rows[i][keep].tolist(), self.distances[i][keep].tolist())]


class NeighborSearch:
    """
    k-nearest admissible neighbors under an Lp distance.

    Parameters:
        candidates (CandidateIndex): Candidate rows and exclusion rules.
        lib_emb (torch.Tensor): Embedding vectors of the candidates, (L, E).
        p (float): Distance exponent (1 = L1, 2 = L2).
        epsilon (float or None): Candidates farther than epsilon are rejected.
        k (int or None): Neighbors per query. None keeps every admissible candidate.
    """

    def __init__(self, candidates: CandidateIndex, lib_emb: torch.Tensor, p=2.0,
                 epsilon: Optional[float] = None, k: Optional[int] = None):
        self.candidates = candidates
        self.lib_emb = lib_emb
        self.p = float(p)
        self.epsilon = epsilon
        num = len(candidates)
        self.k = num if k is None else min(int(k), num)

    def distances(self, query_emb: torch.Tensor) -> torch.Tensor:
        # exact differences; the mm shortcut does not give 0 for coincident points
        return torch.cdist(query_emb[None], self.lib_emb[None], p=self.p,
                           compute_mode="donot_use_mm_for_euclid_dist")[0]

    def query(self, query_rows: torch.Tensor, query_emb: torch.Tensor) -> NeighborBatch:
        dist = self.distances(query_emb)
        mask = self.candidates.admissible(query_rows)
        if self.epsilon is not None:
            mask &= dist <= self.epsilon
        dist = dist.masked_fill(~mask, float("inf"))

        # stable sort keeps ties in candidate (= row) order
        near_dist, order = torch.sort(dist, dim=1, stable=True)
        near_dist = near_dist[:, :self.k]
        order = order[:, :self.k]

        return NeighborBatch(
            distances=near_dist,
            positions=order,
            rows=self.candidates.rows[order],
            valid=torch.isfinite(near_dist),
        )


def simplex_weights(near_dist: torch.Tensor, valid: torch.Tensor) -> torch.Tensor:
    """
    Exponential distance weights relative to the nearest neighbor, normalized
    to sum to one. When the nearest distance is 0 the weight is shared equally
    among the zero-distance neighbors.
    """
    d0 = near_dist[:, :1]
    w = torch.exp(-near_dist / d0)
    w = torch.where(valid, w, torch.zeros_like(w))

    at_zero = (valid & (near_dist == 0)).to(w.dtype)
    w = torch.where(d0 == 0, at_zero, w)

    sumw = w.sum(dim=1, keepdim=True)
    return torch.where(sumw > 0, w / sumw, torch.zeros_like(w))


def smap_weights(near_dist: torch.Tensor, valid: torch.Tensor, theta: float) -> torch.Tensor:
    """exp(-theta * d / mean(d)); uniform when every neighbor is at distance 0."""
    n_valid = valid.sum(dim=1, keepdim=True).clamp_min(1)
    d = torch.where(valid, near_dist, torch.zeros_like(near_dist))
    dbar = d.sum(dim=1, keepdim=True) / n_valid
    scaled = torch.where(dbar > 0, d / dbar, torch.zeros_like(d))
    w = torch.exp(-theta * scaled)
    return torch.where(valid, w, torch.zeros_like(w))
