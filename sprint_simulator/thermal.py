import numpy as np

# Accumulated float steps (e.g. ten 0.1 increments) must still register as reaching the limit
EPSILON = 1e-9


class ThermalConfig:
    """Thermal and electrical policy knobs. Temperatures and hydrogel levels are normalised to [0, 1]."""

    def __init__(self, sprint_heat=0.25, idle_cooling=0.05, hydrogel_depletion=0.10,
                 hydrogel_replenishment=0.05, cooling_recovery_epochs=5, power_recovery_epochs=5,
                 rack_sprint_limit=6, max_temperature=1.0, initial_hydrogel=1.0):
        self.sprint_heat = sprint_heat
        self.idle_cooling = idle_cooling
        self.hydrogel_depletion = hydrogel_depletion
        self.hydrogel_replenishment = hydrogel_replenishment
        self.cooling_recovery_epochs = cooling_recovery_epochs
        self.power_recovery_epochs = power_recovery_epochs
        self.rack_sprint_limit = rack_sprint_limit
        self.max_temperature = max_temperature
        self.initial_hydrogel = initial_hydrogel


class ThermalModel:
    """
    Chip temperature and hydrogel reservoir per runner, indexed by runner index.

    While a chip's reservoir holds any hydrogel, the temperature holds whether or not
    the chip sprints. Once the reservoir is dry, sprinting heats the chip and idling
    cools it. Sprinting drains the reservoir and idling refills it.
    """

    def __init__(self, num_runners, config=None):
        self.config = config or ThermalConfig()
        self.temperatures = np.zeros(num_runners)
        self.hydrogel = np.full(num_runners, float(np.clip(self.config.initial_hydrogel, 0.0, 1.0)))

    def __len__(self):
        return len(self.temperatures)

    def update(self, sprinting):
        """Advance every chip by one epoch given a boolean sprint decision per runner."""
        cfg = self.config
        sprinting = np.asarray(sprinting, dtype=bool)
        absorbed = self.hydrogel > 0.0

        heated = np.minimum(self.temperatures + cfg.sprint_heat, cfg.max_temperature)
        cooled = np.maximum(self.temperatures - cfg.idle_cooling, 0.0)
        self.temperatures = np.where(absorbed, self.temperatures, np.where(sprinting, heated, cooled))

        drained = np.maximum(self.hydrogel - cfg.hydrogel_depletion, 0.0)
        refilled = np.minimum(self.hydrogel + cfg.hydrogel_replenishment, 1.0)
        self.hydrogel = np.where(sprinting, drained, refilled)

    def overheated(self):
        """Indices of chips at the temperature limit."""
        return np.flatnonzero(self.temperatures >= self.config.max_temperature - EPSILON).tolist()

    def temperature(self, index):
        if 0 <= index < len(self.temperatures):
            return float(self.temperatures[index])
        return 0.0

    def hydrogel_level(self, index):
        if 0 <= index < len(self.hydrogel):
            return float(self.hydrogel[index])
        return 0.0

    def set_temperature(self, index, value):
        self.temperatures[index] = min(1.0, max(0.0, value))

    def set_hydrogel(self, index, value):
        self.hydrogel[index] = min(1.0, max(0.0, value))


class FailureDetector:
    """Forces runners into recovery when a chip overheats or a rack exceeds its sprint limit."""

    def __init__(self, config=None):
        self.config = config or ThermalConfig()

    def check_thermal(self, runners, thermal_model):
        """Returns the runners forced into cooling recovery."""
        failed = []
        for index in thermal_model.overheated():
            runner = runners[index]
            runner.force_recovery(self.config.cooling_recovery_epochs)
            failed.append(runner)
        return failed

    def rack_sprinter_counts(self, runners):
        counts = {}
        for runner in runners:
            if runner.sprinting:
                counts[runner.rack_id] = counts.get(runner.rack_id, 0) + 1
        return counts

    def check_power(self, runners):
        """Returns {rack_id: sprinters} for every rack whose breaker tripped; all of its runners recover."""
        tripped = {rack: n for rack, n in self.rack_sprinter_counts(runners).items()
                   if n > self.config.rack_sprint_limit}
        for runner in runners:
            if runner.rack_id in tripped:
                runner.force_recovery(self.config.power_recovery_epochs)
        return tripped
