"""Levenberg-Marquardt solver for general non-linear least-squares problems."""

from __future__ import annotations

import sys
from typing import Callable, Optional

import numpy as np

Residuals = Callable[[np.ndarray], np.ndarray]
Jacobian = Callable[[np.ndarray], np.ndarray]


def _as_vector(values) -> np.ndarray:
    return np.asarray(values, dtype=float).ravel()


class LevMarq:
    """Minimises ||f(z)||^2 with a damped Gauss-Newton iteration.

    ``f`` maps a parameter vector to a residual vector. A Jacobian function
    may be supplied; without one it is estimated by central differences.
    """

    def __init__(
        self,
        max_iters: int = 1000,
        min_error: float = 0.0,
        min_step_error_diff: float = 0.0,
        tau: float = 1.0,
        der_epsilon: float = 1e-3,
    ) -> None:
        self.set_params(max_iters, min_error, min_step_error_diff, tau, der_epsilon)
        self.verbose = False
        self.step_callback: Optional[Callable[[np.ndarray], None]] = None
        self.stop_function: Optional[Callable[[np.ndarray], bool]] = None
        self._v = 5.0
        self._mu = -1.0
        self._curr_z = np.zeros(0)
        self._x = np.zeros(0)
        self._curr_err = 0.0
        self._prev_err = 0.0
        self._min_err = 0.0

    def set_params(
        self,
        max_iters: int,
        min_error: float,
        min_step_error_diff: float = 0.0,
        tau: float = 1.0,
        der_epsilon: float = 1e-3,
    ) -> None:
        """Set the stopping criteria, initial damping scale and derivative step."""
        self.max_iters = int(max_iters)
        self.min_error = float(min_error)
        self.min_step_error_diff = float(min_step_error_diff)
        self.tau = float(tau)
        self.der_epsilon = float(der_epsilon)

    def calc_derivatives(self, z, f: Residuals) -> np.ndarray:
        """Estimate the Jacobian of ``f`` at ``z`` by central differences."""
        z = _as_vector(z)
        columns = []
        for i in range(z.size):
            offset = np.zeros_like(z)
            offset[i] = self.der_epsilon
            xp = _as_vector(f(z + offset))
            xm = _as_vector(f(z - offset))
            columns.append((xp - xm) / (2.0 * self.der_epsilon))
        return np.column_stack(columns) if columns else np.zeros((0, 0))

    def _jacobian_for(self, f: Residuals, jacobian: Optional[Jacobian]) -> Jacobian:
        if jacobian is not None:
            return lambda z: np.atleast_2d(np.asarray(jacobian(z), dtype=float))
        return lambda z: self.calc_derivatives(z, f)

    def init(self, z, f: Residuals) -> None:
        """Start a search from ``z``."""
        self._curr_z = _as_vector(z).copy()
        self._x = _as_vector(f(self._curr_z))
        err = float(np.dot(self._x, self._x))
        self._min_err = self._curr_err = self._prev_err = err
        self._mu = -1.0

    def step(self, f: Residuals, jacobian: Optional[Jacobian] = None) -> bool:
        """Take one damped step; return whether a step was accepted."""
        jac = self._jacobian_for(f, jacobian)
        J = jac(self._curr_z)
        jtj = J.T @ J
        b = -J.T @ self._x
        if self._mu < 0:
            diag = np.diag(jtj)
            self._mu = float(diag[int(np.argmax(diag))]) * self.tau

        gain = 0.0
        prev_mu = 0.0
        ntries = 0
        accepted = False
        while True:
            jtj[np.diag_indices_from(jtj)] += self._mu - prev_mu
            prev_mu = self._mu
            try:
                delta = np.linalg.solve(jtj, b)
            except np.linalg.LinAlgError:
                delta = np.linalg.lstsq(jtj, b, rcond=None)[0]
            estimated = self._curr_z + delta
            self._x = _as_vector(f(estimated))
            err = float(np.dot(self._x, self._x))
            predicted = 0.5 * float(delta @ (self._mu * delta - b))
            with np.errstate(divide="ignore", invalid="ignore"):
                gain = float(np.float64(err - self._prev_err) / np.float64(predicted))
            if gain > 0:
                self._mu *= max(0.33, 1.0 - (2.0 * gain - 1.0) ** 3)
                self._v = 5.0
                self._curr_err = err
                self._curr_z = estimated
                accepted = True
            else:
                self._mu *= self._v
                self._v *= 5.0
            if not (gain <= 0 and ntries < 5):
                break
            ntries += 1

        if self.verbose:
            print(
                f"Curr Error={self._curr_err:.5g} "
                f"AErr(prev-curr)={self._prev_err - self._curr_err:.5g} "
                f"gain={gain:.5g} dumping factor={self._mu:.5g}"
            )
        if self._curr_err < self._prev_err:
            self._curr_err, self._prev_err = self._prev_err, self._curr_err
        return accepted

    def current_solution(self) -> tuple[np.ndarray, float]:
        """Return a copy of the current parameters and their recorded error."""
        return self._curr_z.copy(), self._curr_err

    def solve(self, z, f: Residuals, jacobian: Optional[Jacobian] = None) -> tuple[np.ndarray, float]:
        """Run the search from ``z``; return the solution and its error."""
        self.init(z, f)
        if self.stop_function is not None:
            while True:
                self.step(f, jacobian)
                if self.step_callback is not None:
                    self.step_callback(self._curr_z)
                if self.stop_function(self._curr_z):
                    break
        else:
            must_exit = False
            for i in range(self.max_iters):
                if must_exit:
                    break
                if self.verbose:
                    print(f"iteration {i}/{self.max_iters}  ", end="", file=sys.stderr)
                accepted = self.step(f, jacobian)
                if self._curr_err < self.min_error:
                    must_exit = True
                if abs(self._prev_err - self._curr_err) <= self.min_step_error_diff or not accepted:
                    must_exit = True
                if self._curr_err < self._prev_err:
                    must_exit = True
                if self.step_callback is not None:
                    self.step_callback(self._curr_z)
        return self._curr_z.copy(), self._curr_err