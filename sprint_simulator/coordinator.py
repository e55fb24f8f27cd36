from common.distributions import NarrowGaussian
from sprint_simulator.threshold_solver import BellmanMeanFieldSolver, SolverParams, clamp

MIN_UTILITY_STD = 0.01


def rack_params(runners_per_rack, rack_sprint_limit, **overrides):
    """
    Solver parameters for one rack: the breaker starts to trip at a quarter of the rack,
    but never later than the sprint limit, and always trips past the sprint limit.
    """
    return SolverParams(N=runners_per_rack, N_min=min(int(0.25 * runners_per_rack), rack_sprint_limit),
                        N_max=rack_sprint_limit, **overrides)


class SprintCoordinator:
    """
    Re-derives the global sprint threshold from the live workload every
    recompute_interval epochs and holds it for the runners to read.

    Utilities observed on the runners are summarised as a bounded normal profile and
    handed to the mean-field solver. The raw threshold is mapped onto the utility
    range and, when a floor and ceiling are configured, clamped between them so it
    sits between the two basins of a bimodal workload.
    """

    def __init__(self, recompute_interval, runners_per_rack=10, rack_sprint_limit=6, params=None,
                 initial_threshold=0.75, threshold_floor=0.4, threshold_ceiling=0.6,
                 solver_options=None, log=None):
        if recompute_interval <= 0:
            raise ValueError(f"recompute_interval must be > 0, got {recompute_interval}")
        self.recompute_interval = recompute_interval
        self.epochs_since_recompute = 0
        self.current_threshold = initial_threshold
        self.threshold_floor = threshold_floor
        self.threshold_ceiling = threshold_ceiling
        if params is None:
            params = rack_params(runners_per_rack, rack_sprint_limit)
        self.params = params
        self.solver_options = {
            'ptrip_init': 0.40,
            'max_outer': 200,
            'max_inner': 2000,
            'tol_outer': 1e-6,
            'tol_inner': 1e-8,
        }
        self.solver_options.update(solver_options or {})
        self.last_result = None
        self.stats = {
            'threshold_recomputes': 0,
            'recomputes_skipped': 0,
            'solver_not_converged': 0,
        }
        self.log = log

    def _log(self, message):
        if self.log is not None:
            self.log(message)

    def epochs_until_recompute(self):
        return self.recompute_interval - self.epochs_since_recompute

    def on_epoch(self, runners):
        """Advance the recompute clock. Returns the solver result when a recompute ran, else None."""
        self.epochs_since_recompute += 1
        if self.epochs_since_recompute < self.recompute_interval:
            return None
        self.epochs_since_recompute = 0
        return self.recompute_threshold(runners)

    def recompute_threshold(self, runners):
        utilities = [u for u in (runner.current_utility() for runner in runners) if u > 0]
        if not utilities:
            self._log("[THRESHOLD SKIPPED] No runner reports a positive utility, keeping "
                      f"threshold {self.current_threshold:.4f}")
            self.stats['recomputes_skipped'] += 1
            return None

        mean = sum(utilities) / len(utilities)
        variance = sum((u - mean) ** 2 for u in utilities) / len(utilities)
        std = max(variance ** 0.5, MIN_UTILITY_STD)

        distribution = NarrowGaussian(mean, std, self.params.u_min, self.params.u_max)
        solver = BellmanMeanFieldSolver(self.params, distribution)
        result = solver.solve(**self.solver_options)
        self.last_result = result
        self.stats['threshold_recomputes'] += 1

        self._log(f"[SOLVER] u_T*={result.threshold_ut:.4f}, P_trip={result.ptrip:.4f}, "
                  f"nS={result.expected_n_sprinters:.2f}, converged={result.converged} "
                  f"(mean={mean:.4f}, std={std:.4f}, samples={len(utilities)})")

        if not result.converged:
            self.stats['solver_not_converged'] += 1
            self._log(f"[THRESHOLD] Solver did not converge, keeping threshold {self.current_threshold:.4f}")
            return result

        self.current_threshold = self.map_threshold(result.threshold_ut)
        self._log(f"[THRESHOLD] Raw u_T*={result.threshold_ut:.4f} -> threshold {self.current_threshold:.4f}")
        return result

    def map_threshold(self, raw_threshold):
        span = self.params.u_max - self.params.u_min
        threshold = (raw_threshold - self.params.u_min) / span
        if self.threshold_floor is not None and self.threshold_ceiling is not None:
            threshold = clamp(threshold, self.threshold_floor, self.threshold_ceiling)
        return threshold
