import pandas as pd
from pathlib import Path

from common.config import load_config


def read_parquet_files(directory_or_file):
    """Read one parquet file, or every parquet file in a directory, into a single dataframe"""
    path = Path(directory_or_file)
    files = sorted(path.glob("*.parquet")) if path.is_dir() else [path]
    files = [f for f in files if f.exists()]
    if not files:
        raise FileNotFoundError(f"No parquet files found at: {path}")

    print(f"Reading {len(files)} file(s) from: {path}")
    dfs = []
    for f in files:
        print(f"  - {f.name}")
        dfs.append(pd.read_parquet(f))
    return pd.concat(dfs, ignore_index=True)


def summarise_epochs(epochs_df):
    """Cluster-wide behaviour over the whole run"""
    num_epochs = len(epochs_df)
    if num_epochs == 0:
        return {}
    return {
        'epochs': num_epochs,
        'mean_sprinters': epochs_df['sprinters'].mean(),
        'peak_sprinters': int(epochs_df['sprinters'].max()),
        'mean_recovering': epochs_df['recovering'].mean(),
        'tasks_completed': int(epochs_df['completed_total'].iloc[-1]),
        'throughput_per_epoch': epochs_df['completed_total'].iloc[-1] / num_epochs,
        'final_queued_work': int(epochs_df['queued_work'].iloc[-1]),
        'threshold_changes': int((epochs_df['threshold'].diff().fillna(0) != 0).sum()),
        'final_threshold': epochs_df['threshold'].iloc[-1],
    }


def summarise_racks(runners_df):
    """Per-rack sprint rate, recovery share and thermal averages"""
    df = runners_df.assign(recovering=runners_df['epochs_in_recovery'] > 0)
    return (
        df
        .groupby('rack_id', as_index=False)
        .agg(
            runners=('runner_id', 'nunique'),
            sprint_rate=('sprinting', 'mean'),
            recovery_share=('recovering', 'mean'),
            mean_temperature=('temperature', 'mean'),
            peak_temperature=('temperature', 'max'),
            mean_hydrogel=('hydrogel', 'mean'),
        )
        .sort_values('rack_id')
        .reset_index(drop=True)
    )


def threshold_trajectory(epochs_df):
    """Epochs at which the broadcast threshold changed, with the new value"""
    changed = epochs_df['threshold'].diff().fillna(0) != 0
    return epochs_df.loc[changed, ['epoch', 'threshold']].reset_index(drop=True)


if __name__ == "__main__":
    config = load_config("config.txt", search_dir=Path(__file__).parent)
    output_directory = Path(config.get('output_directory', 'output'))
    epochs_df = read_parquet_files(config.get('input_epochs') or output_directory / config.get('output_epochs', 'simulation_epochs.parquet'))
    runners_df = read_parquet_files(config.get('input_runners') or output_directory / config.get('output_runners', 'simulation_runners.parquet'))

    print("\n" + "=" * 60)
    print("RUN SUMMARY")
    print("=" * 60)
    for key, value in summarise_epochs(epochs_df).items():
        print(f"{key:<24} {value:.4f}" if isinstance(value, float) else f"{key:<24} {value:,}")

    print("\n" + "=" * 60)
    print("PER-RACK SUMMARY")
    print("=" * 60)
    print(summarise_racks(runners_df).to_string(index=False))

    print("\n" + "=" * 60)
    print("THRESHOLD TRAJECTORY")
    print("=" * 60)
    print(threshold_trajectory(epochs_df).to_string(index=False))
