"""Global configuration for fuzzy-tree.

This module provides a package-wide configuration surface for the random
number generator that drives every stochastic step (attraction-point
sampling, wind phase offsets, particle spawning), plus logging helpers and
environment parsing. Code importing `rng` always sees the currently
configured generator, so a single `seed()` call makes a whole run
reproducible.
"""

from __future__ import annotations

import contextlib
import logging
import os
from dataclasses import dataclass
from typing import Any, ContextManager, Iterator, Optional

import numpy as np
from scipy.spatial.distance import cdist as _scipy_cdist

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
_LOGGER = logging.getLogger("fuzzy_tree.config")
_PACKAGE_LOGGER = logging.getLogger("fuzzy_tree")


def _parse_log_level(val: str | int | None, default: int = logging.WARNING) -> int:
    """Parse a logging level string or int into a `logging` level constant.

    Args:
        val: The desired level (e.g., "DEBUG", 10). May be None.
        default: Fallback level if `val` cannot be parsed.

    Returns:
        An integer logging level (e.g., logging.DEBUG).
    """
    if val is None:
        return default
    if isinstance(val, int):
        return val
    lvl = getattr(logging, str(val).upper(), None)
    if isinstance(lvl, int):
        return lvl
    return default


def set_log_level(level: str | int = "WARNING") -> None:
    """Set the package logger level programmatically.

    Args:
        level: A standard logging level name or integer.
    """
    _PACKAGE_LOGGER.setLevel(_parse_log_level(level))


# Default level can be overridden by env.
set_log_level(os.getenv("FUZZY_TREE_LOGLEVEL", "WARNING"))


# -----------------------------------------------------------------------------
# Env helpers
# -----------------------------------------------------------------------------
def bool_env(varname: str, default: bool) -> bool:
    """Read an environment variable and interpret it as a boolean.

    True values: 'y', 'yes', 't', 'true', 'on', '1'.
    False values: 'n', 'no', 'f', 'false', 'off', '0'.

    Args:
        varname: The name of the environment variable.
        default: The default value if the variable is unset.

    Returns:
        A boolean value parsed from the environment.
    """
    val = os.getenv(varname, str(default))
    val = val.lower()
    if val in ("y", "yes", "t", "true", "on", "1"):
        return True
    if val in ("n", "no", "f", "false", "off", "0"):
        return False
    raise ValueError(f"invalid truth value {val!r} for environment {varname!r}")


def int_env(varname: str, default: int) -> int:
    """Read an environment variable and interpret it as an integer.

    Args:
        varname: The name of the environment variable.
        default: The default value if the variable is unset.

    Returns:
        The integer value parsed from the environment.
    """
    return int(os.getenv(varname, str(default)))


# -----------------------------------------------------------------------------
# Random state
# -----------------------------------------------------------------------------
@dataclass
class RandomState:
    """Descriptor for the active random state."""

    seed: int
    rng: np.random.Generator

    @classmethod
    def create(cls, seed: int) -> RandomState:
        """Build a PCG64-backed random state for `seed`."""
        _LOGGER.debug("Creating NumPy PCG64 generator with seed=%d", seed)
        return cls(seed=seed, rng=np.random.Generator(np.random.PCG64(seed)))


class Config:
    """Global configuration for fuzzy-tree.

    Provides deterministic seeding and a dynamic proxy so code importing
    `rng` always sees the current generator.
    """

    def __init__(self) -> None:
        """Initialize config using environment defaults."""
        self._seed_default = int_env("FUZZY_TREE_SEED", 1234)
        self._state = RandomState.create(self._seed_default)
        _LOGGER.info("Config initialized: seed=%d", self._seed_default)

    def configure(self, *, seed: Optional[int] = None) -> Config:
        """Reconfigure the active random state.

        Args:
            seed: Optional seed (defaults to the environment default).

        Returns:
            The `Config` instance (for chaining).
        """
        seed_value = self._seed_default if seed is None else int(seed)
        _LOGGER.info("Reconfiguring: seed=%d", seed_value)
        self._state = RandomState.create(seed_value)
        return self

    @contextlib.contextmanager
    def use(self, *, seed: Optional[int] = None) -> Iterator[None]:
        """Temporarily switch the random state within a context manager.

        Args:
            seed: Optional seed for the temporary generator.

        Yields:
            None. Restores the previous generator on exit.
        """
        prev = self._state
        try:
            self.configure(seed=seed)
            yield
        finally:
            self._state = prev
            _LOGGER.info("Restored previous random state (seed=%d)", prev.seed)

    def seed(self, s: int = 1234) -> None:
        """Reseed the generator deterministically.

        Args:
            s: The seed value.
        """
        _LOGGER.info("Reseeding RNG to %d", s)
        self._state = RandomState.create(int(s))

    @property
    def current_seed(self) -> int:
        """Return the seed of the active generator."""
        return self._state.seed

    @property
    def rng(self) -> np.random.Generator:
        """Return the active RNG object."""
        return self._state.rng


class _RNGProxy:
    """Proxy for `rng` that forwards attribute access to the current generator."""

    def __init__(self, _cfg: Config) -> None:
        self._cfg = _cfg

    def __getattr__(self, name: str) -> Any:  # noqa: D401
        return getattr(self._cfg.rng, name)


# Singleton & forwards
config = Config()
rng = _RNGProxy(config)


def cdist(*args: Any, **kwargs: Any) -> Any:
    """Compute pairwise Euclidean distances (SciPy)."""
    return _scipy_cdist(*args, **kwargs)


def norm(v: Any, axis: int = -1, keepdims: bool = False) -> Any:
    """Compute the L2 norm along `axis`."""
    return np.linalg.norm(v, axis=axis, keepdims=keepdims)


def configure(*, seed: Optional[int] = None) -> Config:
    """Reconfigure the active random state (module-level)."""
    return config.configure(seed=seed)


def use(*, seed: Optional[int] = None) -> ContextManager[None]:
    """Temporarily switch the random state within a context manager (module-level)."""
    return config.use(seed=seed)


def seed(s: int = 1234) -> None:
    """Reseed the generator deterministically (module-level)."""
    config.seed(s)


def current_seed() -> int:
    """Return the seed of the active generator (module-level)."""
    return config.current_seed
