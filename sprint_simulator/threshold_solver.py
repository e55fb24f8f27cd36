"""
Mean-field equilibrium solver for the sprint threshold.

Every runner is an agent that may sprint when its instantaneous utility u is worth
more than the future value it gives up. An agent is Active (may sprint), Cooling
(just sprinted) or Recovering (the rack breaker tripped). With trip probability
P_trip held fixed, value iteration converges on

    V(R)    = d (1 - pr) V(A) / (1 - d pr)
    V(C)    = d [(1 - P_trip)(1 - pc) V(A) + P_trip V(R)] / (1 - d (1 - P_trip) pc)
    V(u, A) = max(u + d [(1 - P_trip) V(C) + P_trip V(R)],
                  d [(1 - P_trip) V(A) + P_trip V(R)])
    V(A)    = integral of V(u, A) f(u) du

and agents sprint iff u >= u_T = d (V(A) - V(C)) (1 - P_trip). The outer loop feeds
the implied number of simultaneous sprinters back through the breaker's trip curve
until P_trip stops moving.
"""

import numpy as np


class SolverParams:
    """Population and breaker parameters. Defaults are the rack-scale values of the sprinting game."""

    def __init__(self, N=1000, N_min=250, N_max=750, pc=0.50, pr=0.88, delta=0.99,
                 u_min=0.0, u_max=1.0, grid_size=800):
        if grid_size < 2:
            raise ValueError(f"grid_size must be >= 2, got {grid_size}")
        if u_max <= u_min:
            raise ValueError(f"Utility domain is empty: [{u_min}, {u_max}]")
        if not 0.0 <= delta < 1.0:
            raise ValueError(f"delta must be in [0, 1), got {delta}")
        if N_min > N_max:
            raise ValueError(f"Breaker knees are inverted: N_min={N_min} > N_max={N_max}")
        self.N = N
        self.N_min = N_min
        self.N_max = N_max
        self.pc = pc  # P(stay cooling)
        self.pr = pr  # P(stay recovering)
        self.delta = delta
        self.u_min = u_min
        self.u_max = u_max
        self.grid_size = grid_size

    def copy(self, **overrides):
        values = dict(vars(self))
        values.update(overrides)
        return SolverParams(**values)


class SolverResult:
    def __init__(self, converged, outer_iters, ptrip, threshold_ut, p_sprint, p_active,
                 expected_n_sprinters, V_A, V_C, V_R):
        self.converged = converged
        self.outer_iters = outer_iters
        self.ptrip = ptrip
        self.threshold_ut = threshold_ut
        self.p_sprint = p_sprint
        self.p_active = p_active
        self.expected_n_sprinters = expected_n_sprinters
        self.V_A = V_A
        self.V_C = V_C
        self.V_R = V_R

    def as_dict(self):
        return dict(vars(self))

    def __repr__(self):
        return (f"SolverResult(converged={self.converged}, outer_iters={self.outer_iters}, "
                f"ptrip={self.ptrip:.6f}, threshold_ut={self.threshold_ut:.6f}, "
                f"expected_n_sprinters={self.expected_n_sprinters:.2f})")


def clamp(x, lo, hi):
    return max(lo, min(hi, x))


def trip_curve(n_sprinters, N_min, N_max):
    """Probability that the breaker trips with n_sprinters simultaneous sprinters."""
    if n_sprinters < N_min:
        return 0.0
    if n_sprinters > N_max:
        return 1.0
    if N_max == N_min:
        return 1.0
    return (n_sprinters - N_min) / float(N_max - N_min)


class BellmanMeanFieldSolver:
    def __init__(self, params, distribution):
        self.params = params
        self.distribution = distribution
        self.grid = np.linspace(params.u_min, params.u_max, params.grid_size)
        self.du = (params.u_max - params.u_min) / (params.grid_size - 1)
        # Trapezoid weights, half weight at both endpoints
        self.weights = np.ones(params.grid_size)
        self.weights[0] = self.weights[-1] = 0.5
        self.density = self.distribution.pdf(self.grid)

    def integrate(self, values):
        """Integral of values(u) f(u) du over the grid."""
        return float(np.sum(self.weights * values * self.density) * self.du)

    def recovery_value(self, V_A):
        P = self.params
        return P.delta * (1.0 - P.pr) * V_A / (1.0 - P.delta * P.pr)

    def cooling_value(self, V_A, V_R, ptrip):
        P = self.params
        return (P.delta * ((1.0 - ptrip) * (1.0 - P.pc) * V_A + ptrip * V_R)
                / (1.0 - P.delta * (1.0 - ptrip) * P.pc))

    def active_values(self, V_A, ptrip):
        """V(u, A) on the grid: the better of sprinting now and waiting."""
        P = self.params
        V_R = self.recovery_value(V_A)
        V_C = self.cooling_value(V_A, V_R, ptrip)
        sprint = self.grid + P.delta * ((1.0 - ptrip) * V_C + ptrip * V_R)
        wait = P.delta * ((1.0 - ptrip) * V_A + ptrip * V_R)
        return np.maximum(sprint, wait)

    def value_iteration(self, V_A, ptrip, max_inner, tol_inner):
        """Iterate V(A) to a fixed point for a fixed trip probability. Returns (V_A, converged)."""
        for _ in range(max_inner):
            V_A_new = self.integrate(self.active_values(V_A, ptrip))
            if abs(V_A_new - V_A) < tol_inner:
                return V_A_new, True
            V_A = V_A_new
        return V_A, False

    def equilibrium(self, V_A, ptrip):
        """Threshold and population statistics implied by V(A) at the given trip probability."""
        P = self.params
        V_R = self.recovery_value(V_A)
        V_C = self.cooling_value(V_A, V_R, ptrip)
        threshold_ut = P.delta * (V_A - V_C) * (1.0 - ptrip)
        p_sprint = clamp(self.integrate((self.grid >= threshold_ut).astype(float)), 0.0, 1.0)
        p_active = clamp((1.0 - P.pc) / (1.0 + p_sprint - P.pc), 0.0, 1.0)
        n_sprinters = p_sprint * p_active * P.N
        return {
            "V_R": V_R,
            "V_C": V_C,
            "threshold_ut": threshold_ut,
            "p_sprint": p_sprint,
            "p_active": p_active,
            "expected_n_sprinters": n_sprinters,
        }

    def solve(self, ptrip_init=0.40, max_outer=200, max_inner=2000, tol_outer=1e-6, tol_inner=1e-8):
        """
        Run the nested fixed point.

        Hitting max_outer is not an error: the latest estimate comes back with
        converged=False and callers decide how much to trust it. V(A) is warm-started
        across outer iterations. An outer step whose value iteration hit max_inner only
        continues the value iteration; P_trip moves only on a converged V(A).
        """
        P = self.params
        ptrip = clamp(ptrip_init, 0.0, 1.0)
        V_A = 0.0

        for outer in range(max_outer):
            V_A, inner_converged = self.value_iteration(V_A, ptrip, max_inner, tol_inner)
            if not inner_converged:
                continue
            eq = self.equilibrium(V_A, ptrip)
            ptrip_new = trip_curve(eq["expected_n_sprinters"], P.N_min, P.N_max)

            if abs(ptrip_new - ptrip) < tol_outer:
                return SolverResult(True, outer + 1, ptrip_new, eq["threshold_ut"], eq["p_sprint"],
                                    eq["p_active"], eq["expected_n_sprinters"], V_A, eq["V_C"], eq["V_R"])
            ptrip = ptrip_new

        eq = self.equilibrium(V_A, ptrip)
        return SolverResult(False, max_outer, ptrip, eq["threshold_ut"], eq["p_sprint"],
                            eq["p_active"], eq["expected_n_sprinters"], V_A, eq["V_C"], eq["V_R"])
