"""Curvature history storage for the L-BFGS direction update.

The two-loop recursion in :mod:`gradprob_jax.direction` never owns the
(delta_x, delta_gradient) pairs it consumes. The minimizer that drives it owns
the storage and hands out *views* into it through two calls:

    acquire_write_slot(delta_x_dot_delta_gradient) -> WriteSlot | None
    acquire_read_slot(age) -> ReadSlot | None

This keeps the recursion independent of how the storage is laid out.
:class:`CurvatureHistory` is the default layout: a circular buffer of the last
k pairs, allocated once and overwritten in place, so the oldest pair is
evicted when a new one is written to a full buffer. Write slots are staged
and only committed to the ring once the caller has filled them, so a write
that fails halfway leaves the stored pairs untouched.

Pairs whose curvature ``s^T y`` is not strictly positive are rejected, both
when the slot is requested and when it is committed.
"""

import logging
from collections.abc import Iterator
from typing import NamedTuple, Optional, Protocol, runtime_checkable

import numpy as np

from gradprob_jax.exceptions import PreconditionError
from gradprob_jax.types import HistoryCell, HistoryColumn

logger = logging.getLogger(__name__)


class WriteSlot(NamedTuple):
    """Writable views into the storage of the next curvature pair.

    Attributes:
        delta_x: Destination for s = step_size * previous_direction.
        delta_gradient: Destination for y = gradient - previous_gradient.
        delta_x_dot_delta_gradient: 0-d cell for s^T y.
        approximate_eigenvalue_scale: 0-d cell for the initial inverse
            Hessian scaling s^T y / y^T y.
    """

    delta_x: HistoryColumn
    delta_gradient: HistoryColumn
    delta_x_dot_delta_gradient: HistoryCell
    approximate_eigenvalue_scale: HistoryCell


class ReadSlot(NamedTuple):
    """Read-only views of one stored curvature pair."""

    delta_x: HistoryColumn
    delta_gradient: HistoryColumn
    delta_x_dot_delta_gradient: float


@runtime_checkable
class CurvatureHistoryAccess(Protocol):
    """Storage strategy consumed by :func:`lbfgs_next_direction`."""

    def acquire_write_slot(
        self, delta_x_dot_delta_gradient: float
    ) -> Optional[WriteSlot]:
        """Reserve storage for a new pair, or return None to skip it."""
        ...

    def acquire_read_slot(self, age: int) -> Optional[ReadSlot]:
        """Return the pair written ``age`` updates ago (0 = newest), or None."""
        ...


class CurvatureHistory:
    """Fixed-capacity circular buffer of L-BFGS curvature pairs.

    Attributes:
        delta_x_history: Stored steps s_i, one per row.
        delta_gradient_history: Stored gradient differences y_i, one per row.
        delta_x_dot_delta_gradient: Stored s_i^T y_i.
        count: Number of committed pairs (0 to memory size). A slot handed
            out by :meth:`acquire_write_slot` is committed on the next call
            to the history (including ``len``).
        next_idx: Next write position in the circular buffer.
        secant_tolerance: Pairs with s^T y at or below this are rejected.

    Not safe for concurrent use; it belongs to a single minimizer loop.
    """

    def __init__(
        self,
        num_parameters: int,
        memory: int,
        secant_tolerance: float = 1e-14,
        dtype: np.dtype = np.float64,
    ):
        if num_parameters < 1:
            raise PreconditionError(
                f"num_parameters must be positive, got {num_parameters}."
            )
        if memory < 1:
            raise PreconditionError(f"memory must be positive, got {memory}.")
        if secant_tolerance < 0.0:
            raise PreconditionError(
                f"secant_tolerance must be non-negative, got {secant_tolerance}."
            )

        self.delta_x_history = np.zeros((memory, num_parameters), dtype=dtype)
        self.delta_gradient_history = np.zeros((memory, num_parameters), dtype=dtype)
        self.delta_x_dot_delta_gradient = np.zeros((memory,), dtype=dtype)
        self._approximate_eigenvalue_scale = np.ones((), dtype=dtype)
        self.secant_tolerance = secant_tolerance
        self.count = 0
        self.next_idx = 0

        # Staging area handed out by acquire_write_slot
        self._pending_delta_x = np.zeros((num_parameters,), dtype=dtype)
        self._pending_delta_gradient = np.zeros((num_parameters,), dtype=dtype)
        self._pending_dot = np.full((), np.nan, dtype=dtype)
        self._pending = False

    @property
    def memory(self) -> int:
        return self.delta_x_history.shape[0]

    @property
    def num_parameters(self) -> int:
        return self.delta_x_history.shape[1]

    @property
    def approximate_eigenvalue_scale(self) -> float:
        return float(self._approximate_eigenvalue_scale)

    def __len__(self) -> int:
        self._commit()
        return self.count

    def _accepts(self, delta_x_dot_delta_gradient: float) -> bool:
        return bool(np.isfinite(delta_x_dot_delta_gradient)) and (
            delta_x_dot_delta_gradient > self.secant_tolerance
        )

    def _commit(self) -> None:
        """Move a filled write slot into the ring buffer.

        A slot whose curvature cell was never written (or was written with a
        rejected value) is dropped, leaving the buffer as it was.
        """
        if not self._pending:
            return
        self._pending = False
        if not self._accepts(float(self._pending_dot)):
            logger.debug("Discarding unfilled L-BFGS write slot.")
            return

        idx = self.next_idx
        self.delta_x_history[idx] = self._pending_delta_x
        self.delta_gradient_history[idx] = self._pending_delta_gradient
        self.delta_x_dot_delta_gradient[idx] = self._pending_dot
        self.next_idx = (idx + 1) % self.memory
        self.count = min(self.count + 1, self.memory)

    def acquire_write_slot(
        self, delta_x_dot_delta_gradient: float
    ) -> Optional[WriteSlot]:
        """Reserve the next slot for a pair with the given curvature.

        Returns None when the curvature is non-finite or not above
        ``secant_tolerance``. Otherwise returns views the caller must fill;
        the pair enters the buffer (evicting the oldest one if it is full)
        on the next access to the history, and only if the curvature cell
        holds an acceptable value by then.
        """
        self._commit()
        if not self._accepts(delta_x_dot_delta_gradient):
            logger.debug(
                "Skipping L-BFGS update, delta_x . delta_gradient = %g "
                "is not above the secant tolerance %g.",
                delta_x_dot_delta_gradient,
                self.secant_tolerance,
            )
            return None

        self._pending_dot[...] = np.nan
        self._pending = True
        return WriteSlot(
            delta_x=self._pending_delta_x,
            delta_gradient=self._pending_delta_gradient,
            delta_x_dot_delta_gradient=self._pending_dot,
            approximate_eigenvalue_scale=self._approximate_eigenvalue_scale,
        )

    def acquire_read_slot(self, age: int) -> Optional[ReadSlot]:
        """Views of the pair written ``age`` updates ago, None past the oldest."""
        self._commit()
        if age < 0 or age >= self.count:
            return None
        return self._read(age)

    def _read(self, age: int) -> ReadSlot:
        idx = (self.next_idx - 1 - age) % self.memory
        delta_x = self.delta_x_history[idx]
        delta_gradient = self.delta_gradient_history[idx]
        delta_x.flags.writeable = False
        delta_gradient.flags.writeable = False
        return ReadSlot(
            delta_x=delta_x,
            delta_gradient=delta_gradient,
            delta_x_dot_delta_gradient=float(self.delta_x_dot_delta_gradient[idx]),
        )

    def pairs(self) -> Iterator[ReadSlot]:
        """Iterate over the stored pairs from oldest to newest."""
        self._commit()
        for age in reversed(range(self.count)):
            yield self._read(age)

    def reset(self) -> None:
        """Forget every stored pair and restore the identity scaling."""
        self._pending = False
        self.count = 0
        self.next_idx = 0
        self._approximate_eigenvalue_scale[...] = 1.0
