# ivp_engine/examples/bouncing_ball.py
"""Bouncing ball with a partially elastic impact event.

This example demonstrates:

- EventCondition with direction=-1: only downward crossings of the floor fire.
- The reaction edits integrator.u in place (velocity reversal with damping).
- Pre- and post-impact points are both recorded at the impact time, so the
  saved trajectory shows the velocity jump as a vertical segment.
- Dense output sol(t) is continuous in height across impacts.

This script saves plots to disk (no interactive windows).
"""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from ivp_engine import EventCondition, ODEProblem, solve

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "bouncing_ball"

GRAVITY = 9.81


def ball_rhs(t: float, u: np.ndarray) -> np.ndarray:  # noqa: ARG001
    """Free fall: u = (height, velocity)."""
    return np.array([u[1], -GRAVITY])


def make_bounce(restitution: float):  # noqa: ANN201
    """Return an event reaction that reflects the velocity.

    Args:
        restitution: Fraction of speed kept at each impact.

    Returns:
        Reaction callable for EventCondition.
    """

    def bounce(integrator) -> None:  # noqa: ANN001
        integrator.u[1] = -restitution * integrator.u[1]

    return bounce


def save_ball_plot(
    time: np.ndarray,
    states: np.ndarray,
    dense_time: np.ndarray,
    dense_height: np.ndarray,
    *,
    out_path: Path,
) -> None:
    """Save height and velocity trajectories to an image file.

    Args:
        time: Recorded times, shape (n_points,).
        states: Recorded states, shape (n_points, 2).
        dense_time: Evaluation times for the dense interpolant.
        dense_height: Interpolated heights at ``dense_time``.
        out_path: Output path for the saved figure.
    """
    fig, (ax_h, ax_v) = plt.subplots(2, 1, figsize=(8, 6), sharex=True)
    ax_h.plot(dense_time, dense_height, label="sol(t)")
    ax_h.plot(time, states[:, 0], "o", markersize=3, label="steps")
    ax_h.set_ylabel("Height")
    ax_h.grid(visible=True)
    ax_h.legend()

    ax_v.plot(time, states[:, 1])
    ax_v.set_ylabel("Velocity")
    ax_v.set_xlabel("Time")
    ax_v.grid(visible=True)

    fig.suptitle("Bouncing ball (dp5, events with direction=-1)")
    fig.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, dpi=150)
    plt.close(fig)


def main(output_dir: Path | None = None) -> int:
    """Integrate the bouncing ball and save the trajectory plot.

    Args:
        output_dir: Directory for the figure; defaults to examples/output/.

    Returns:
        Number of impacts detected.
    """
    out = _OUTPUT_DIR if output_dir is None else Path(output_dir)

    event = EventCondition(
        lambda t, u: u[0],  # noqa: ARG005
        make_bounce(0.8),
        direction=-1,
    )
    prob = ODEProblem(ball_rhs, np.array([10.0, 0.0]), tspan=(0.0, 8.0))
    sol = solve(prob, callback=event, abstol=1e-8, reltol=1e-8)

    dense_time = np.linspace(0.0, sol.t, 600)
    dense_height = np.array([sol(t)[0] for t in dense_time])

    save_ball_plot(
        sol.t_series,
        np.asarray(sol.timeseries),
        dense_time,
        dense_height,
        out_path=out / "bouncing_ball.png",
    )
    print(f"{sol.stats.nevents} impacts, {sol.stats.naccept} accepted steps")
    return sol.stats.nevents


if __name__ == "__main__":
    main()
