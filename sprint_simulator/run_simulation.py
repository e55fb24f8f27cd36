import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
from pathlib import Path

from common.config import get_float, get_int, get_optional_float, load_config
from data_handling.workload_conversion import generate_workload, load_task_events, load_workload
from sprint_simulator.coordinator import SprintCoordinator, rack_params
from sprint_simulator.sprint_simulator import DataCenter, LeastLoadedScheduling
from sprint_simulator.thermal import ThermalConfig


def get_strategy_instance(strategy_name, strategy_type):
    if strategy_type == "scheduling_strategy":
        if strategy_name == "LeastLoadedScheduling":
            return LeastLoadedScheduling()
        else:
            raise ValueError(f"Unknown Scheduling Strategy: {strategy_name}")

    else:
        raise ValueError(f"Unknown Strategy Type: {strategy_type}")


def create_thermal_config(config):
    defaults = ThermalConfig()
    return ThermalConfig(
        sprint_heat=get_float(config, 'sprint_heat', defaults.sprint_heat),
        idle_cooling=get_float(config, 'idle_cooling', defaults.idle_cooling),
        hydrogel_depletion=get_float(config, 'hydrogel_depletion', defaults.hydrogel_depletion),
        hydrogel_replenishment=get_float(config, 'hydrogel_replenishment', defaults.hydrogel_replenishment),
        cooling_recovery_epochs=get_int(config, 'cooling_recovery_epochs', defaults.cooling_recovery_epochs),
        power_recovery_epochs=get_int(config, 'power_recovery_epochs', defaults.power_recovery_epochs),
        rack_sprint_limit=get_int(config, 'rack_sprint_limit', defaults.rack_sprint_limit),
        initial_hydrogel=get_float(config, 'initial_hydrogel', defaults.initial_hydrogel),
    )


def create_data_center(config, log_file=None, verbose=True):
    """Build a data center from string-valued configuration"""
    procs_per_server = get_int(config, 'procs_per_server', 2)
    servers_per_rack = get_int(config, 'servers_per_rack', 5)
    num_runners = get_int(config, 'num_runners', 20)
    thermal_config = create_thermal_config(config)

    runners_per_rack = min(procs_per_server * servers_per_rack, max(num_runners, 1))
    coordinator = SprintCoordinator(
        get_int(config, 'recompute_interval', 10),
        params=rack_params(runners_per_rack, thermal_config.rack_sprint_limit,
                           grid_size=get_int(config, 'solver_grid_size', 800)),
        initial_threshold=get_float(config, 'initial_threshold', 0.75),
        threshold_floor=get_optional_float(config, 'threshold_floor', 0.4),
        threshold_ceiling=get_optional_float(config, 'threshold_ceiling', 0.6),
        solver_options={
            'max_outer': get_int(config, 'solver_max_outer', 200),
            'max_inner': get_int(config, 'solver_max_inner', 2000),
        },
    )

    return DataCenter(
        procs_per_server,
        servers_per_rack,
        num_runners,
        thermal_config=thermal_config,
        coordinator=coordinator,
        scheduling_strategy=get_strategy_instance(
            config.get('scheduling_strategy', 'LeastLoadedScheduling'),
            'scheduling_strategy'
        ),
        log_file=log_file,
        verbose=verbose,
    )


def record_epoch(data_center, event_records, runner_records):
    state = data_center.get_current_state()
    runners = state['runners']

    event_records.append({
        'epoch': state['epoch'],
        'pending_tasks': state['pending_tasks'],
        'threshold': state['threshold'],
        'epochs_until_recompute': state['epochs_until_recompute'],
        'sprinters': sum(r['sprinting'] for r in runners),
        'recovering': sum(not r['can_sprint'] for r in runners),
        'queued_work': sum(r['total_work'] for r in runners),
        'completed_total': data_center.stats['completed'],
    })

    for r_state in runners:
        runner_records.append({
            'epoch': state['epoch'],
            'runner_id': r_state['id'],
            'server_id': r_state['server_id'],
            'rack_id': r_state['rack_id'],
            'sprinting': r_state['sprinting'],
            'epochs_in_recovery': r_state['epochs_in_recovery'],
            'total_work': r_state['total_work'],
            'temperature': r_state['temperature'],
            'hydrogel': r_state['hydrogel'],
        })


def run_simulation(config, verbose=True):
    """Run simulation with the provided configuration. Returns (epochs_df, runners_df, stats)."""

    output_directory = config.get('output_directory', 'output')
    output_path = Path(output_directory)
    output_path.mkdir(parents=True, exist_ok=True)

    output_epochs = output_path / config.get('output_epochs', 'simulation_epochs.parquet')
    output_runners = output_path / config.get('output_runners', 'simulation_runners.parquet')
    output_log = output_path / config.get('output_log', 'simulation.log')

    data_center = create_data_center(config, log_file=str(output_log), verbose=verbose)

    if config.get('input_workload'):
        workload_df = load_workload(config['input_workload'])
    else:
        workload_df = generate_workload(
            get_int(config, 'num_tasks', 200),
            profile=config.get('utility_profile', 'pagerank'),
            min_effort=get_int(config, 'min_effort', 1),
            max_effort=get_int(config, 'max_effort', 5),
            arrival_span=get_int(config, 'arrival_span', 50),
            seed=get_int(config, 'seed', 1337),
        )
    events = load_task_events(workload_df)
    epochs = get_int(config, 'epochs', 100)

    event_records = []
    runner_records = []

    print(f"Starting simulation with {len(events):,} tasks over {epochs:,} epochs...")
    next_event = 0
    for epoch in range(epochs):
        arrivals = []
        while next_event < len(events) and events[next_event].epoch <= epoch:
            arrivals.append(events[next_event].task)
            next_event += 1
        data_center.add_tasks(arrivals)
        data_center.run_epoch()
        record_epoch(data_center, event_records, runner_records)

    epochs_df = pd.DataFrame(event_records)
    runners_df = pd.DataFrame(runner_records)
    pq.write_table(pa.Table.from_pandas(epochs_df), output_epochs)
    pq.write_table(pa.Table.from_pandas(runners_df), output_runners)

    # Print simulation statistics
    stats = data_center.get_stats()
    print("\nSimulation complete:")
    for key, value in stats.items():
        print(f"{key}: {value:,}")

    return epochs_df, runners_df, stats


if __name__ == "__main__":
    config = load_config("config.txt", search_dir=Path(__file__).parent)
    run_simulation(config, verbose=config.get('verbose', 'true').lower() == 'true')
