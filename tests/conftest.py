import os

# Must be set before scratchnet is imported: the backend reads them once.
os.environ.setdefault("SCRATCHNET_USE_GPU", "0")
os.environ.setdefault("SCRATCHNET_DEFAULT_FLOAT", "float64")
os.environ.setdefault("SCRATCHNET_VERBOSE", "0")
os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pytest


@pytest.fixture(autouse=True)
def seeded():
    np.random.seed(0)
    yield
