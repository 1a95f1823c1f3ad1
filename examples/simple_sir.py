# ode_engine/examples/simple_sir.py
"""Single-location SIR integrated with each ode_engine stepper.

This example demonstrates the core API:

- ODEProblem bundles f(t, y), the interval and the initial state.
- integrate(problem, stepper, step_size) returns an IntegrationTrace holding
  every committed (t, y) pair on the fixed grid t_i = t0 + i h.
- Implicit steppers (backward-euler, gl4) solve each step with Newton, using an
  analytic Jacobian when the problem provides one.
- Seeding the initial state with an AD variable propagates the sensitivity
  dI(t)/dI(0) alongside the trajectory (explicit steppers only).

We model a normalized SIR system with state y = (S, I, R) and S + I + R = 1.

This script saves plots to disk (no interactive windows).
"""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from ode_engine import ODEProblem, integrate, variable

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "sir"


def sir_rhs(
    t: float,  # noqa: ARG001 (no explicit time dependence here)
    state: np.ndarray,
    *,
    beta: float,
    gamma: float,
) -> np.ndarray:
    """RHS for a normalized SIR model.

    Works for float and AD-valued states alike.

    Args:
        t: Current time (unused; included for API compatibility).
        state: State vector (S, I, R).
        beta: Transmission rate.
        gamma: Recovery rate.

    Returns:
        RHS vector (dS/dt, dI/dt, dR/dt).
    """
    s, i = state[0], state[1]
    new_inf = beta * s * i
    recov = gamma * i
    return np.array([-new_inf, new_inf - recov, recov], dtype=state.dtype)


def sir_jacobian(
    t: float,  # noqa: ARG001
    state: np.ndarray,
    *,
    beta: float,
    gamma: float,
) -> np.ndarray:
    """Analytic df/dy of the SIR right-hand side.

    Returns:
        (3, 3) Jacobian.
    """
    s, i = float(state[0]), float(state[1])
    return np.array(
        [
            [-beta * i, -beta * s, 0.0],
            [beta * i, beta * s - gamma, 0.0],
            [0.0, gamma, 0.0],
        ]
    )


def compute_conservation_drift(states: np.ndarray) -> float:
    """Compute max |S+I+R-1| over stored times.

    Args:
        states: State history, shape (n_points, 3).

    Returns:
        Maximum absolute conservation drift.
    """
    return float(np.max(np.abs(states.sum(axis=1) - 1.0)))


def save_sir_plot(
    time: np.ndarray,
    states: np.ndarray,
    *,
    title: str,
    out_path: Path,
    drift: float | None = None,
) -> None:
    """Save S, I, R trajectories to an image file.

    Args:
        time: 1D array of times, shape (n_points,).
        states: State history, shape (n_points, 3).
        title: Plot title.
        out_path: Output path for the saved figure.
        drift: Optional conservation drift to annotate.
    """
    plt.figure(figsize=(8, 5))
    for col, label in enumerate(("S", "I", "R")):
        plt.plot(time, states[:, col], label=label)
    plt.grid(visible=True)
    plt.legend()

    if drift is not None and np.isfinite(drift):
        title = f"{title}\nmax |S+I+R-1| = {drift:.3e}"

    plt.title(title)
    plt.xlabel("Time")
    plt.ylabel("Proportion")
    plt.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_path, dpi=150)
    plt.close()


def main() -> None:
    """Run and save SIR simulations for every stepper plus a sensitivity curve.

    Files are written to: examples/output/sir/
    """
    # ---------------------------------------------------------------------
    # Model parameters
    # ---------------------------------------------------------------------
    beta = 0.30
    gamma = 1.0 / 7.0
    initial_infected = 0.01
    total_time = 160.0
    step_size = 0.5

    def rhs(t: float, y: np.ndarray) -> np.ndarray:
        return sir_rhs(t, y, beta=beta, gamma=gamma)

    def jac(t: float, y: np.ndarray) -> np.ndarray:
        return sir_jacobian(t, y, beta=beta, gamma=gamma)

    y0 = [1.0 - initial_infected, initial_infected, 0.0]

    # ---------------------------------------------------------------------
    # (1) One run per stepper on the same grid
    # ---------------------------------------------------------------------
    for stepper in ("euler", "rk4", "backward-euler", "gl4"):
        problem = ODEProblem(
            rhs=rhs,
            t0=0.0,
            y0=y0,
            t_final=total_time,
            jacobian=jac if stepper in {"backward-euler", "gl4"} else None,
        )
        trace = integrate(problem, stepper, step_size)
        drift = compute_conservation_drift(trace.states)
        save_sir_plot(
            trace.times,
            trace.states,
            title=f"SIR via integrate ({stepper}, h={step_size})",
            out_path=_OUTPUT_DIR / f"simple_sir_{stepper}.png",
            drift=drift,
        )

    # ---------------------------------------------------------------------
    # (2) Sensitivity of the epidemic curve to the initial infected fraction
    # ---------------------------------------------------------------------
    ad_problem = ODEProblem(
        rhs=rhs,
        t0=0.0,
        y0=[1.0 - initial_infected, variable(initial_infected, 1), 0.0],
        t_final=total_time,
    )
    ad_trace = integrate(ad_problem, "rk4", step_size)
    sensitivity = ad_trace.taylor_coefficients(1)[:, 1]

    plt.figure(figsize=(8, 5))
    plt.plot(ad_trace.times, sensitivity)
    plt.grid(visible=True)
    plt.title("dI(t)/dI(0) via forward-mode AD (RK4)")
    plt.xlabel("Time")
    plt.ylabel("Sensitivity")
    plt.tight_layout()
    out_path = _OUTPUT_DIR / "simple_sir_sensitivity.png"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_path, dpi=150)
    plt.close()


if __name__ == "__main__":
    main()
