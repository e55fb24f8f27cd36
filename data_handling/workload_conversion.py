import numpy as np
import pandas as pd
from pathlib import Path

from common.config import get_int, load_config
from common.distributions import build_distribution
from common.models import Task, TaskEvent

WORKLOAD_COLUMNS = ['task_id', 'effort', 'utility', 'arrival_epoch']

# Raw trace header -> workload column
TRACE_COLUMNS = {
    'TaskID': 'task_id',
    'Effort': 'effort',
    'Utility': 'utility',
    'Arrival': 'arrival_epoch',
}


def generate_workload(num_tasks, profile="pagerank", min_effort=1, max_effort=5, arrival_span=0, seed=None):
    """
    Sample a synthetic workload.

    Efforts are uniform integers in [min_effort, max_effort], utilities come from the
    named profile and arrival epochs are uniform in [0, arrival_span].
    """
    if min_effort < 0 or max_effort < min_effort:
        raise ValueError(f"Invalid effort range [{min_effort}, {max_effort}]")
    rng = np.random.default_rng(seed)
    distribution = build_distribution(profile)
    df = pd.DataFrame({
        'task_id': np.arange(num_tasks),
        'effort': rng.integers(min_effort, max_effort + 1, size=num_tasks),
        'utility': distribution.sample(rng, num_tasks),
        'arrival_epoch': rng.integers(0, arrival_span + 1, size=num_tasks),
    })
    return df.sort_values(['arrival_epoch', 'task_id'], kind='stable').reset_index(drop=True)


def clean_workload(df, source="workload"):
    """
    Drop rows the simulator cannot run: missing values, negative effort or arrival,
    utilities outside [0, 1] and duplicate task ids (first kept).
    """
    missing = [c for c in WORKLOAD_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{source} is missing required columns: {missing}")
    df = df[WORKLOAD_COLUMNS]
    initial_row_count = len(df)

    for column in WORKLOAD_COLUMNS:
        df = df.assign(**{column: pd.to_numeric(df[column], errors='coerce')})
        mask = df[column].isna()
        dropped_count = mask.sum()
        if dropped_count > 0:
            print(f"  Dropped {dropped_count} row(s) from {source} due to missing/invalid value in column '{column}'")
            df = df[~mask]

    checks = {
        'negative effort': lambda d: d['effort'] < 0,
        'negative arrival epoch': lambda d: d['arrival_epoch'] < 0,
        'utility outside [0, 1]': lambda d: (d['utility'] < 0) | (d['utility'] > 1),
    }
    for reason, check in checks.items():
        mask = check(df)
        dropped_count = mask.sum()
        if dropped_count > 0:
            print(f"  Dropped {dropped_count} row(s) from {source} due to {reason}")
            df = df[~mask]

    duplicates = df.duplicated(subset=['task_id'], keep='first')
    if duplicates.sum() > 0:
        print(f"  Dropped {duplicates.sum()} duplicate task id(s) from {source}")
        df = df[~duplicates]

    total_dropped = initial_row_count - len(df)
    if total_dropped > 0:
        print(f"  Total rows dropped from {source}: {total_dropped} (from {initial_row_count} to {len(df)})")

    df = df.astype({'task_id': int, 'effort': int, 'arrival_epoch': int, 'utility': float})
    return df.sort_values(['arrival_epoch', 'task_id'], kind='stable').reset_index(drop=True)


def read_workload_traces(input_directory):
    """Read all pipe-delimited .txt traces from input directory into a single cleaned dataframe"""
    input_path = Path(input_directory)

    if not input_path.exists():
        raise FileNotFoundError(f"Input directory not found: {input_directory}")

    txt_files = sorted(input_path.glob("*.txt"))

    if not txt_files:
        raise FileNotFoundError(f"No .txt files found in {input_directory}")

    print(f"Found {len(txt_files)} .txt files in {input_directory}")

    dfs = []
    for txt_file in txt_files:
        print(f"Reading {txt_file.name}...")
        df = pd.read_csv(txt_file, sep='|', skipinitialspace=True, on_bad_lines='skip')
        df = df.rename(columns=lambda c: TRACE_COLUMNS.get(c.strip(), c.strip()))
        dfs.append(clean_workload(df, source=txt_file.name))

    return clean_workload(pd.concat(dfs, ignore_index=True), source="combined traces")


def load_workload(path):
    """Read a workload file (.parquet or .csv) and clean it."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Workload file not found: {path}")
    if path.suffix == '.parquet':
        df = pd.read_parquet(path)
    else:
        df = pd.read_csv(path)
    return clean_workload(df, source=path.name)


def load_task_events(df):
    """Converts a workload dataframe into arrival events ordered by epoch."""
    events = [
        TaskEvent(Task(int(row.task_id), int(row.effort), float(row.utility)), int(row.arrival_epoch))
        for row in df.itertuples(index=False)
    ]
    events.sort(key=lambda ev: ev.epoch)
    return events


def save_workload(df, output_file):
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(output_file, index=False, engine='pyarrow', compression='snappy')
    return output_file


if __name__ == "__main__":
    config = load_config("config.txt", search_dir=Path(__file__).parent)
    output_directory = config.get('output_directory', 'output')
    output_filename = config.get('workload_filename', 'workload')

    if config.get('input_directory'):
        workload_df = read_workload_traces(config['input_directory'])
    else:
        workload_df = generate_workload(
            get_int(config, 'num_tasks', 200),
            profile=config.get('utility_profile', 'pagerank'),
            min_effort=get_int(config, 'min_effort', 1),
            max_effort=get_int(config, 'max_effort', 5),
            arrival_span=get_int(config, 'arrival_span', 50),
            seed=get_int(config, 'seed', 1337),
        )

    print(f"\nWorkload shape: {workload_df.shape}")
    print(workload_df.head())
    print(f"Mean utility: {workload_df['utility'].mean():.4f}")

    output_file = save_workload(workload_df, Path(output_directory) / f"{output_filename}.parquet")
    print(f"\nWorkload saved to: {output_file}")
