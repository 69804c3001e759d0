# lnlp.py
import gc
import logging
import warnings
from typing import List

import numpy as np
import torch

from .errors import ConfigurationError, InfeasibleParameterError, ParameterSkippedWarning
from .neighbors import CandidateIndex, NeighborSearch, _resolve_norm, simplex_weights, smap_weights
from .stats import forecast_stats
from .types import ModelOutput, ParameterSet, RunResult, Series, coerce_ranges, range_mask
from .utils.utils import embed_series, target_rows

logger = logging.getLogger(__name__)

METHODS = ("simplex", "smap")


def _resolve_dtype(x):
    if isinstance(x, torch.dtype):
        return x
    if x is None:
        return None
    key = str(x).strip().lower()
    key = {
        "float": "float32", "double": "float64", "half": "float16",
        "bf16": "bfloat16", "f16": "float16", "f32": "float32", "f64": "float64",
        "fp16": "float16", "fp32": "float32", "fp64": "float64",
    }.get(key, key)
    dt = getattr(torch, key, None)
    if isinstance(dt, torch.dtype):
        return dt
    raise ConfigurationError(f"Unknown dtype: {x!r}")


def _as_series(time_series, time=None):
    if isinstance(time_series, Series):
        if time is not None:
            return Series(time_series.values, time)
        return time_series
    return Series.from_values(time_series, time)


def _check_exclusions(exclusion_radius, epsilon):
    for name, v in (("exclusion_radius", exclusion_radius), ("epsilon", epsilon)):
        if v is None:
            continue
        if isinstance(v, bool) or not isinstance(v, (int, float, np.integer, np.floating)) \
                or not np.isfinite(v) or v < 0:
            raise ConfigurationError(f"{name} must be None or a finite number >= 0, got {v!r}.")


class LNLP:

    def __init__(self, device="cpu", dtype="float64", compute_dtype=None):
        """
        Create an LNLP (local nonlinear prediction) engine.

        The engine keeps no state between calls besides the device and dtype
        settings, so one instance can serve any number of series and parameter sets.

        Parameters:
            device (str): The computation device ('cpu' or 'cuda') to use for all calculations.
            dtype (torch.dtype or str): Numeric dtype for internal tensors
                ('float64' | 'float32' | ... or torch.dtype). Default: float64.
            compute_dtype (torch.dtype or str or None): math-ops dtype. If None, uses dtype.
        """
        self.device = device
        self.dtype = _resolve_dtype(dtype) or torch.float64
        self.compute_dtype = _resolve_dtype(compute_dtype) or self.dtype

        if not (self.dtype.is_floating_point and self.compute_dtype.is_floating_point):
            raise ConfigurationError("dtype and compute_dtype must be floating dtypes.")

    def simplex(
            self,
            time_series,
            lib=None,
            pred=None,
            E=1,
            tau=1,
            tp=1,
            nn="e+1",
            params=None,
            **kwargs
    ):
        """
        Simplex projection forecasts of a single time series.

        Either pass ``params`` (a ParameterSet or an ordered list of them), or
        E / tau / tp / nn describing one parameter set. Remaining keyword
        arguments are forwarded to :meth:`run`.

        Returns
        -------
        list[RunResult]
        """
        if params is None:
            params = ParameterSet(E=E, tau=tau, tp=tp, nn=nn)
        return self.run(time_series, params, lib=lib, pred=pred, method="simplex", **kwargs)

    def s_map(
            self,
            time_series,
            lib=None,
            pred=None,
            E=1,
            tau=1,
            tp=1,
            nn=0,
            theta=0.0,
            params=None,
            **kwargs
    ):
        """
        S-map forecasts of a single time series.

        Same calling convention as :meth:`simplex`, with ``theta`` and an
        ``nn`` default of 0 (every admissible library point).

        Returns
        -------
        list[RunResult]
        """
        if params is None:
            params = ParameterSet(E=E, tau=tau, tp=tp, nn=nn, theta=theta)
        return self.run(time_series, params, lib=lib, pred=pred, method="smap", **kwargs)

    def run(
            self,
            time_series,
            params,
            lib=None,
            pred=None,
            method="simplex",
            norm="L2",
            p=0.5,
            exclusion_radius=None,
            epsilon=None,
            stats_only=True,
            save_smap_coefficients=False,
            silent=False,
            time=None,
            batch_size=2048,
    ) -> List[RunResult]:
        """
        Evaluate each parameter set independently over the same series.

        Parameters
        ----------
        time_series : Series or array-like
            Series to forecast. Arrays are 1-D values with NaN for missing data.
        params : ParameterSet or Iterable[ParameterSet]
            Parameter sets, evaluated in the given order.
        lib, pred : Range, (start, end), list of them, or None
            Inclusive 0-based row ranges for the library and the prediction set.
            None means the whole series. When they overlap, leave-one-out
            cross-validation applies.
        method : {"simplex", "smap"}
        norm : {"L1", "L2", "P"}
            Distance; "P" uses the exponent ``p``.
        exclusion_radius : float or None
            Neighbors whose time is within this radius of the query time are excluded.
        epsilon : float or None
            Neighbors farther away than epsilon are excluded.
        stats_only : bool
            If False, attach a ModelOutput with the raw predictions.
        save_smap_coefficients : bool
            Keep the local S-map coefficients (forces raw output).
        silent : bool
            Suppress warnings about skipped parameter sets and undefined statistics.
        time : array-like or None
            Time values when ``time_series`` is a plain array.
        batch_size : int or None
            Number of queries processed together.

        Returns
        -------
        list[RunResult]
            One entry per parameter set that could be evaluated, in input order.

        Raises
        ------
        ConfigurationError
            For invalid options shared by all parameter sets.
        InfeasibleParameterError
            If no parameter set could be evaluated.
        """
        series = _as_series(time_series, time)
        self._check_options(method, norm, p, exclusion_radius, epsilon, save_smap_coefficients, batch_size)
        coerce_ranges(lib, len(series))
        coerce_ranges(pred, len(series))

        if isinstance(params, ParameterSet):
            params = [params]

        results = []
        for ps in params:
            try:
                results.append(self.evaluate(
                    series, ps, lib=lib, pred=pred, method=method, norm=norm, p=p,
                    exclusion_radius=exclusion_radius, epsilon=epsilon,
                    stats_only=stats_only, save_smap_coefficients=save_smap_coefficients,
                    silent=silent, batch_size=batch_size,
                ))
            except (ConfigurationError, InfeasibleParameterError) as e:
                logger.debug("skipping %s: %s", ps, e)
                if not silent:
                    warnings.warn(f"Skipping {ps}: {e}", ParameterSkippedWarning, stacklevel=2)

        self._soft_clear()
        if not results:
            raise InfeasibleParameterError("No valid parameter combinations to run, stopping.")
        return results

    @torch.inference_mode()
    def evaluate(
            self,
            time_series,
            params,
            lib=None,
            pred=None,
            method="simplex",
            norm="L2",
            p=0.5,
            exclusion_radius=None,
            epsilon=None,
            stats_only=True,
            save_smap_coefficients=False,
            silent=False,
            batch_size=2048,
    ) -> RunResult:
        """
        Forecast every valid query row of the prediction set for one parameter set.

        Same options as :meth:`run`, but raises instead of skipping.

        Raises
        ------
        ConfigurationError
            Invalid parameter set or options.
        InfeasibleParameterError
            No valid query row, no admissible library row, or no query with
            an admissible neighbor.
        """
        series = _as_series(time_series)
        self._check_options(method, norm, p, exclusion_radius, epsilon, save_smap_coefficients, batch_size)
        params = params.validate()
        exponent = _resolve_norm(norm, p)
        n = len(series)
        lib_ranges = coerce_ranges(lib, n)
        pred_ranges = coerce_ranges(pred, n)

        # ---------- 1) embedding / targets ----------
        emb, valid = embed_series(series.values, params.E, params.tau)
        rows = np.arange(n)
        target, inside = target_rows(n, rows, params.tp)
        target_val = np.full(n, np.nan)
        target_val[inside] = series.values[target[inside]]

        lib_mask = range_mask(lib_ranges, n) & valid & inside & np.isfinite(target_val)
        pred_mask = range_mask(pred_ranges, n) & valid

        # ---------- 2) preconditions ----------
        if not pred_mask.any():
            raise InfeasibleParameterError(
                f"No valid query rows in the prediction set for E={params.E}, tau={params.tau} "
                f"(each embedding vector spans {params.span} rows)."
            )
        if not lib_mask.any():
            raise InfeasibleParameterError(
                f"No valid library rows for E={params.E}, tau={params.tau}, tp={params.tp}."
            )

        lib_rows = np.flatnonzero(lib_mask)
        smpl_rows = np.flatnonzero(pred_mask)
        logger.debug("%s: %s, %d library rows, %d queries", method, params, lib_rows.size, smpl_rows.size)

        # ---------- 3) tensors ----------
        X_lib = torch.as_tensor(emb[lib_rows], device=self.device).to(self.compute_dtype)
        Y_lib = torch.as_tensor(target_val[lib_rows], device=self.device).to(self.compute_dtype)
        X_smpl = torch.as_tensor(emb[smpl_rows], device=self.device).to(self.compute_dtype)
        smpl_idx = torch.as_tensor(smpl_rows, device=self.device)

        candidates = CandidateIndex(lib_rows, series.time, exclusion_radius, device=self.device)
        search = NeighborSearch(candidates, X_lib, p=exponent, epsilon=epsilon, k=params.num_neighbors)

        # ---------- 4) method call ----------
        keep_coef = save_smap_coefficients and method == "smap"
        if method == "simplex":
            A, V = self.__simplex_prediction(search, smpl_idx, X_smpl, Y_lib, batch_size)
            C = None
        else:
            A, V, C = self.__smap_prediction(search, smpl_idx, X_smpl, X_lib, Y_lib,
                                             params.theta, batch_size, keep_coef)

        predicted = A.to("cpu", torch.float64).numpy()
        pred_var = V.to("cpu", torch.float64).numpy()

        # ---------- 5) stats ----------
        observed = target_val[smpl_rows]
        previous = series.values[smpl_rows]
        if not np.isfinite(predicted).any():
            raise InfeasibleParameterError(
                f"No query in the prediction set had an admissible neighbor for {params}."
            )
        # forecasts past the end of the series leave num_pred == 0 and every statistic None
        stats, const_stats = forecast_stats(observed, predicted, previous, silent=silent)

        model_output = None
        if not stats_only or keep_coef:
            time_out = np.full(smpl_rows.size, np.nan)
            t_inside = inside[smpl_rows]
            time_out[t_inside] = series.time[target[smpl_rows][t_inside]]
            model_output = ModelOutput(
                query_index=smpl_rows,
                time=time_out,
                observed=observed,
                predicted=predicted,
                pred_variance=pred_var,
                coefficients=None if C is None else C.to("cpu", torch.float64).numpy(),
            )

        return RunResult(params=params, stats=stats, const_stats=const_stats, model_output=model_output)

    def neighbors(self, time_series, params, lib=None, query_rows=None, norm="L2", p=0.5,
                  exclusion_radius=None, epsilon=None):
        """
        Nearest admissible neighbors of the given query rows.

        Returns
        -------
        dict[int, list[NeighborRecord]]
            Neighbors per valid query row, nearest first. Query rows with an
            invalid embedding are left out.
        """
        series = _as_series(time_series)
        _check_exclusions(exclusion_radius, epsilon)
        params = params.validate()
        exponent = _resolve_norm(norm, p)
        n = len(series)

        emb, valid = embed_series(series.values, params.E, params.tau)
        target, inside = target_rows(n, np.arange(n), params.tp)
        usable = np.zeros(n, dtype=bool)
        usable[inside] = np.isfinite(series.values[target[inside]])
        lib_rows = np.flatnonzero(range_mask(coerce_ranges(lib, n), n) & valid & usable)

        if query_rows is None:
            query_rows = np.arange(n)
        query_rows = np.asarray(query_rows, dtype=np.int64)
        query_rows = query_rows[valid[query_rows]]
        if query_rows.size == 0 or lib_rows.size == 0:
            return {int(q): [] for q in query_rows}

        candidates = CandidateIndex(lib_rows, series.time, exclusion_radius, device=self.device)
        X_lib = torch.as_tensor(emb[lib_rows], device=self.device).to(self.compute_dtype)
        search = NeighborSearch(candidates, X_lib, p=exponent, epsilon=epsilon, k=params.num_neighbors)
        with torch.inference_mode():
            batch = search.query(
                torch.as_tensor(query_rows, device=self.device),
                torch.as_tensor(emb[query_rows], device=self.device).to(self.compute_dtype),
            )
        return {int(q): batch.records(i) for i, q in enumerate(query_rows)}

    def _check_options(self, method, norm, p, exclusion_radius, epsilon, save_smap_coefficients, batch_size):
        if method not in METHODS:
            raise ConfigurationError("Invalid method. Supported methods are 'simplex' and 'smap'.")
        if save_smap_coefficients and method != "smap":
            raise ConfigurationError("save_smap_coefficients requires method='smap'.")
        if batch_size is not None and batch_size <= 0:
            raise ConfigurationError("batch_size must be positive or None.")
        _resolve_norm(norm, p)
        _check_exclusions(exclusion_radius, epsilon)

    def __batches(self, num, batch_size):
        if (batch_size is None) or (batch_size >= num):
            batch_size = num
        for s0 in range(0, num, batch_size):
            yield s0, min(num, s0 + batch_size)

    def __query(self, search, smpl_idx, X_smpl):
        try:
            return search.query(smpl_idx, X_smpl)
        except RuntimeError as e:
            if self._is_oom(e):
                self._hard_clear()
            raise

    def __simplex_prediction(self, search, smpl_idx, X_smpl, Y_lib, batch_size):
        subsample_size = X_smpl.shape[0]
        A = torch.empty(subsample_size, device=self.device, dtype=self.dtype)
        V = torch.empty(subsample_size, device=self.device, dtype=self.dtype)

        for s0, s1 in self.__batches(subsample_size, batch_size):
            nbrs = self.__query(search, smpl_idx[s0:s1], X_smpl[s0:s1])

            weights = simplex_weights(nbrs.distances, nbrs.valid)
            y = torch.where(nbrs.valid, Y_lib[nbrs.positions], torch.zeros_like(weights))

            A_blk = (weights * y).sum(dim=1)
            V_blk = (weights * (y - A_blk[:, None]).pow(2)).sum(dim=1)

            # queries with no admissible neighbor get no prediction
            has_nbrs = nbrs.valid.any(dim=1)
            nan = torch.full_like(A_blk, float("nan"))
            A[s0:s1] = torch.where(has_nbrs, A_blk, nan).to(self.dtype)
            V[s0:s1] = torch.where(has_nbrs, V_blk, nan).to(self.dtype)

            del nbrs, weights, y, A_blk, V_blk

        return A, V

    def __smap_prediction(self, search, smpl_idx, X_smpl, X_lib, Y_lib, theta, batch_size, keep_coef):
        subsample_size, E = X_smpl.shape
        A = torch.empty(subsample_size, device=self.device, dtype=self.dtype)
        V = torch.empty(subsample_size, device=self.device, dtype=self.dtype)
        C = torch.empty((subsample_size, E + 1), device=self.device, dtype=self.dtype) if keep_coef else None

        for s0, s1 in self.__batches(subsample_size, batch_size):
            nbrs = self.__query(search, smpl_idx[s0:s1], X_smpl[s0:s1])
            B, K = nbrs.positions.shape

            try:
                weights = smap_weights(nbrs.distances, nbrs.valid, theta)
                W = weights.unsqueeze(2)                                      # (B, K, 1)

                X = X_lib[nbrs.positions] * nbrs.valid.unsqueeze(2)           # (B, K, E)
                Y = torch.where(nbrs.valid, Y_lib[nbrs.positions], torch.zeros_like(weights))

                X_intercept = torch.cat(
                    [torch.ones((B, K, 1), device=self.device, dtype=self.compute_dtype), X], dim=2)

                X_intercept_weighted = X_intercept * W
                Y_weighted = (Y * weights).unsqueeze(2)

                # SVD-based pseudo-inverse: minimum-norm solution when the local
                # design is rank deficient
                beta = torch.bmm(torch.linalg.pinv(X_intercept_weighted), Y_weighted)  # (B, E+1, 1)

                X_ = torch.cat(
                    [torch.ones((B, 1), device=self.device, dtype=self.compute_dtype), X_smpl[s0:s1]], dim=1)
                A_blk = (X_ * beta[:, :, 0]).sum(dim=1)

                w_norm = weights / weights.sum(dim=1, keepdim=True).clamp_min(torch.finfo(weights.dtype).tiny)
                V_blk = (w_norm * (Y - A_blk[:, None]).pow(2)).sum(dim=1)
            except RuntimeError as e:
                if self._is_oom(e):
                    self._hard_clear()
                raise

            has_nbrs = nbrs.valid.any(dim=1)
            nan = torch.full_like(A_blk, float("nan"))
            A[s0:s1] = torch.where(has_nbrs, A_blk, nan).to(self.dtype)
            V[s0:s1] = torch.where(has_nbrs, V_blk, nan).to(self.dtype)
            if keep_coef:
                C[s0:s1] = torch.where(has_nbrs[:, None], beta[:, :, 0], torch.full_like(beta[:, :, 0], float("nan"))).to(self.dtype)

            del nbrs, weights, W, X, Y, X_intercept, X_intercept_weighted, Y_weighted, beta, X_, A_blk, V_blk

        return A, V, C

    def _is_oom(self, e: Exception) -> bool:
        msg = str(e).lower()
        return any(s in msg for s in (
            "cuda out of memory", "out of memory", "failed to allocate",
            "can't allocate memory", "cublas status alloc failed", "mps allocation failed"
        ))

    def _soft_clear(self):
        gc.collect()
        if str(self.device).startswith("cuda") and torch.cuda.is_available():
            torch.cuda.empty_cache()

    def _hard_clear(self):
        gc.collect()
        if str(self.device).startswith("cuda") and torch.cuda.is_available():
            torch.cuda.synchronize(self.device)
            torch.cuda.empty_cache()
            torch.cuda.ipc_collect()
