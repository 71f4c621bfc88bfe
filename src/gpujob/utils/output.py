"""Result dump: flat float values as whitespace-separated text."""

from pathlib import Path

import numpy as np


def save_array(path, values) -> Path:
    path = Path(path)
    np.asarray(values, dtype=np.float32).ravel().tofile(str(path), sep=" ")
    return path


def load_array(path) -> np.ndarray:
    return np.fromfile(str(path), dtype=np.float32, sep=" ")
