# lnlp_utils.py
import numpy as np
import matplotlib.pyplot as plt
from matplotlib import cm

from .types import RunResult

PARAMS = ("E", "tau", "tp", "nn", "theta")
STATS = ("rho", "mae", "rmse", "perc", "p_val")


class Visualizer:
    def __init__(self):
        """
        Initializes the Visualizer class.
        """
        pass

    def plot_skill_profile(self, results, param="E", stat="rho", show_const=True, ax=None):
        """
        Plots a skill statistic against one parameter over a list of run results,
        e.g. rho against E for simplex runs or against theta for S-map runs.

        Results that share every other parameter are drawn as one line.

        Parameters:
            results (list[RunResult]): Output of LNLP.run / LNLP.simplex / LNLP.s_map.
            param (str): One of "E", "tau", "tp", "nn", "theta".
            stat (str): One of "rho", "mae", "rmse", "perc", "p_val".
            show_const (bool): Also draw the constant-predictor baseline.
            ax (matplotlib.axes.Axes or None): Axes to draw on.
        """
        if param not in PARAMS:
            raise ValueError(f"Unknown parameter: {param}. Available: {list(PARAMS)}")
        if stat not in STATS:
            raise ValueError(f"Unknown statistic: {stat}. Available: {list(STATS)}")

        others = [k for k in PARAMS if k != param]
        groups = {}
        for r in results:
            # group on the parameters as given; "e+1" is left unresolved
            key = tuple(getattr(r.params, k) for k in others)
            groups.setdefault(key, []).append(r.as_dict())

        if ax is None:
            fig, ax = plt.subplots(figsize=(10, 6))

        n_groups = len(groups)
        for g, (key, grp) in enumerate(sorted(groups.items(), key=lambda kv: str(kv[0]))):
            grp = sorted(grp, key=lambda row: row[param])
            x = np.array([row[param] for row in grp], dtype=float)
            y = np.array([np.nan if row[stat] is None else row[stat] for row in grp], dtype=float)
            color = cm.viridis(0.1 + 0.8 * (g / max(n_groups - 1, 1)))
            label = ", ".join(f"{k}={v}" for k, v in zip(others, key)) if n_groups > 1 else stat
            ax.plot(x, y, marker="o", color=color, label=label)

            if show_const:
                yc = np.array([np.nan if row["const_" + stat] is None else row["const_" + stat]
                               for row in grp], dtype=float)
                ax.plot(x, yc, linestyle="--", color=color, alpha=0.6,
                        label=f"constant ({label})" if n_groups > 1 else f"constant {stat}")

        ax.set_xlabel(param)
        ax.set_ylabel(stat)
        ax.set_title(f"{stat} vs {param}")
        ax.grid(True)
        ax.legend()

        return ax

    def plot_forecast(self, result: RunResult, show_variance=True, ax=None):
        """
        Plots observed and predicted values of one run, with a band of one
        standard deviation from the prediction variance.

        Parameters:
            result (RunResult): A run computed with ``stats_only=False``.
            show_variance (bool): Draw the +/- 1 sd band.
            ax (matplotlib.axes.Axes or None): Axes to draw on.
        """
        out = result.model_output
        if out is None:
            raise ValueError("The result has no model output; run with stats_only=False.")

        if ax is None:
            fig, ax = plt.subplots(figsize=(10, 6))

        x = np.where(np.isfinite(out.time), out.time, np.nan)
        ax.plot(x, out.observed, color="black", label="observed")
        ax.plot(x, out.predicted, color="red", linestyle="--", label="predicted")
        if show_variance:
            sd = np.sqrt(out.pred_variance)
            ax.fill_between(x, out.predicted - sd, out.predicted + sd, color="red", alpha=0.2, lw=0)

        rho = result.stats.rho
        ax.set_xlabel("time")
        ax.set_ylabel("value")
        ax.set_title(f"{result.params}  rho={'NA' if rho is None else format(rho, '.3f')}")
        ax.grid(True)
        ax.legend()

        return ax
