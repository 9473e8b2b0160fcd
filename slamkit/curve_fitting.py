"""Fitting the curve ``y = exp(a*x^2 + b*x + c)`` by nonlinear least squares."""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field

import numpy as np

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)
DEFAULT_COUNT = 100
DEFAULT_SIGMA = 1.0


@dataclass
class FitResult:
    """Outcome of a fit.

    ``history`` holds one ``(cost, update, params)`` entry per accepted step,
    where ``cost`` is the sum of squared residuals before the step and
    ``params`` the estimate after it.
    """

    params: np.ndarray
    cost: float
    iterations: int
    history: list[tuple[float, np.ndarray, np.ndarray]] = field(default_factory=list)


def curve_model(params, x):
    """Evaluate ``exp(a*x^2 + b*x + c)`` for ``params = (a, b, c)``."""
    a, b, c = _as_params(params)
    x = np.asarray(x, dtype=float)
    with np.errstate(over="ignore"):
        return np.exp(a * x * x + b * x + c)


def _as_params(params) -> np.ndarray:
    p = np.asarray(params, dtype=float)
    if p.shape != (3,):
        raise ValueError("curve parameters must be three numbers (a, b, c)")
    return p


def _as_data(x, y) -> tuple[np.ndarray, np.ndarray]:
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if xs.ndim != 1 or xs.shape != ys.shape:
        raise ValueError("x and y must be one-dimensional and of equal length")
    if xs.size == 0:
        raise ValueError("no data points")
    return xs, ys


def generate_data(true_params=TRUE_PARAMS, count=DEFAULT_COUNT, sigma=DEFAULT_SIGMA, seed=0):
    """Sample ``count`` points at ``x = i/100`` with Gaussian noise of deviation ``sigma**2``."""
    if count < 0:
        raise ValueError("count must not be negative")
    rng = np.random.default_rng(seed)
    x = np.arange(count) / 100.0
    noise = rng.normal(0.0, sigma * sigma, size=count) if sigma else np.zeros(count)
    return x, curve_model(true_params, x) + noise


def _residuals_and_jacobian(params, x, y):
    with np.errstate(over="ignore", invalid="ignore"):
        f = curve_model(params, x)
        residual = y - f
        jacobian = np.column_stack([-x * x * f, -x * f, -f])
    return residual, jacobian


def _cost(params, x, y) -> float:
    with np.errstate(over="ignore", invalid="ignore"):
        r = y - curve_model(params, x)
        return float(r @ r)


def gauss_newton(x, y, initial=INITIAL_PARAMS, iterations=100, sigma=DEFAULT_SIGMA) -> FitResult:
    """Plain Gauss-Newton; stops when the cost no longer decreases or the step is undefined."""
    xs, ys = _as_data(x, y)
    params = _as_params(initial).copy()
    inv_sigma2 = 1.0 / (sigma * sigma)
    history = []
    last_cost = 0.0
    done = 0
    for it in range(iterations):
        residual, jacobian = _residuals_and_jacobian(params, xs, ys)
        hessian = inv_sigma2 * jacobian.T @ jacobian
        gradient = -inv_sigma2 * jacobian.T @ residual
        cost = float(residual @ residual)
        try:
            dx = np.linalg.solve(hessian, gradient)
        except np.linalg.LinAlgError:
            break
        if not np.all(np.isfinite(dx)):
            break
        if it > 0 and cost >= last_cost:
            break
        params = params + dx
        last_cost = cost
        done += 1
        history.append((cost, dx, params.copy()))
    return FitResult(params, _cost(params, xs, ys), done, history)


def levenberg_marquardt(x, y, initial=INITIAL_PARAMS, iterations=50, sigma=DEFAULT_SIGMA) -> FitResult:
    """Levenberg-Marquardt with diagonal damping and a trust-region style update."""
    xs, ys = _as_data(x, y)
    params = _as_params(initial).copy()
    weight = 1.0 / (sigma * sigma)
    lam = 1e-3
    nu = 2.0
    history = []
    done = 0
    cost = _cost(params, xs, ys)
    for _ in range(iterations):
        residual, jacobian = _residuals_and_jacobian(params, xs, ys)
        hessian = weight * jacobian.T @ jacobian
        gradient = weight * jacobian.T @ residual
        if not np.all(np.isfinite(gradient)) or np.max(np.abs(gradient)) < 1e-12:
            break
        damping = np.diag(np.maximum(np.diag(hessian), 1e-12))
        done += 1
        try:
            dx = np.linalg.solve(hessian + lam * damping, -gradient)
        except np.linalg.LinAlgError:
            lam *= nu
            nu *= 2.0
            continue
        candidate = params + dx
        new_cost = _cost(candidate, xs, ys)
        predicted = 0.5 * float(dx @ (lam * damping @ dx - gradient))
        actual = 0.5 * weight * (cost - new_cost)
        if np.isfinite(new_cost) and predicted > 0.0 and actual > 0.0:
            rho = actual / predicted
            lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
            nu = 2.0
            history.append((cost, dx, candidate.copy()))
            params = candidate
            converged = np.linalg.norm(dx) < 1e-10 * (np.linalg.norm(params) + 1e-10)
            converged = converged or (cost - new_cost) <= 1e-14 * cost
            cost = new_cost
            if converged:
                break
        else:
            lam *= nu
            nu *= 2.0
    return FitResult(params, cost, done, history)


def _fmt(values) -> str:
    return " ".join(f"{v:g}" for v in values)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Fit y = exp(a*x^2 + b*x + c) to noisy samples.")
    parser.add_argument("--method", choices=("gauss-newton", "levenberg-marquardt"), default="gauss-newton")
    parser.add_argument("--iterations", type=int, default=None)
    parser.add_argument("--count", type=int, default=DEFAULT_COUNT)
    parser.add_argument("--sigma", type=float, default=DEFAULT_SIGMA)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args(argv)

    x, y = generate_data(TRUE_PARAMS, args.count, args.sigma, args.seed)
    if args.method == "gauss-newton":
        solver, default_iterations = gauss_newton, 100
    else:
        solver, default_iterations = levenberg_marquardt, 50
    iterations = default_iterations if args.iterations is None else args.iterations

    start = time.perf_counter()
    try:
        result = solver(x, y, INITIAL_PARAMS, iterations, args.sigma)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1
    elapsed = time.perf_counter() - start

    for cost, dx, params in result.history:
        print(f"total cost: {cost:g}, \t\tupdate: {_fmt(dx)}\t\testimated params: {','.join(f'{p:g}' for p in params)}")
    print(f"solve time cost = {elapsed:g} seconds. ")
    print(f"estimated abc = {', '.join(f'{p:g}' for p in result.params)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())