import sys
from pathlib import Path

import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")

ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from fastlnlp import LNLP  # noqa: E402


@pytest.fixture
def model():
    return LNLP(device="cpu", dtype="float64")


@pytest.fixture
def logistic():
    """Deterministic logistic map, r = 3.8."""
    x = np.empty(200)
    x[0] = 0.4
    for t in range(199):
        x[t + 1] = 3.8 * x[t] * (1.0 - x[t])
    return x


@pytest.fixture
def ar2():
    """Noise-free x[t+1] = 0.5 x[t] + 0.3 x[t-1]."""
    x = np.empty(40)
    x[0], x[1] = 1.0, -1.0
    for t in range(1, 39):
        x[t + 1] = 0.5 * x[t] + 0.3 * x[t - 1]
    return x
