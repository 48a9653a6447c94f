"""Shared utilities: logging setup, project paths, and finite differences."""

import logging
from pathlib import Path
from typing import Callable

import numpy as np

# Step of the central differences used for derivatives of the cost functions
DIFF_STEP = float(np.cbrt(np.finfo(np.float64).eps))


def setup_logger(
    name: str,
    level: int = logging.INFO,
    log_file: "str | Path | bool | None" = None,
    clear_logs: bool = False,
) -> logging.Logger:
    """Create a consistently-formatted logger.

    Args:
        name: Logger name (typically __name__ of calling module).
        level: Logging level (default INFO).
        log_file: If a path (str/Path), write logs to that file.
                  If True, auto-generate ``logs/{name}.log`` under project root.
                  If None/False, console only.
        clear_logs: If True, truncate the log file on each setup (mode='w').
                    If False, append (mode='a').  Ignored when *log_file* is falsy.

    Returns:
        Configured logger with console handler and optional file handler.
    """
    logger = logging.getLogger(name)

    # Clear existing handlers (safe for Jupyter re-runs)
    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler (always present)
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    # File handler (optional)
    if log_file:
        if log_file is True:
            log_dir = get_project_root() / "logs"
            log_dir.mkdir(exist_ok=True)
            log_path = log_dir / f"{name.replace('.', '_')}.log"
        else:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

        file_mode = "w" if clear_logs else "a"
        fh = logging.FileHandler(log_path, mode=file_mode, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger


def get_project_root() -> Path:
    """Return the absolute path to the project root directory.

    Walks up from this file until it finds pyproject.toml.
    """
    current = Path(__file__).resolve().parent
    while current != current.parent:
        if (current / "pyproject.toml").exists():
            return current
        current = current.parent
    raise FileNotFoundError("Could not find project root (no pyproject.toml found)")


def get_db_path() -> Path:
    """Return the path to the default SQLite results database."""
    return get_project_root() / "data" / "processed" / "galrot.db"


# ---------------------------------------------------------------------------
# Finite differences
# ---------------------------------------------------------------------------


def central_diff(f: Callable[[float], float], x: float, h: float) -> float:
    """Central-difference derivative of a scalar function."""
    return (f(x + h) - f(x - h)) / (2.0 * h)


def central_diff_gradient(
    f: Callable[[np.ndarray], float],
    x: np.ndarray,
    h: float = DIFF_STEP,
) -> np.ndarray:
    """Central-difference gradient of a function of a vector.

    Each component costs two evaluations of *f*; the evaluations are made in
    component order so the result is reproducible.
    """
    x = np.asarray(x, dtype=np.float64)
    grad = np.empty_like(x)
    for i in range(x.size):
        step = np.zeros_like(x)
        step[i] = h
        grad[i] = (f(x + step) - f(x - step)) / (2.0 * h)
    return grad
