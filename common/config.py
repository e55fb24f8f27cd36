from pathlib import Path


def load_config(config_file="config.txt", search_dir=None):
    """Load configuration from config file"""
    config = {}
    # Try to find config file in multiple locations
    config_paths = [
        Path(config_file),  # Current directory
    ]
    if search_dir is not None:
        config_paths.append(Path(search_dir) / config_file)  # Beside the calling script

    config_path = None
    for path in config_paths:
        if path.exists():
            config_path = path
            break

    if config_path is None:
        raise FileNotFoundError(f"Config file '{config_file}' not found in any of: {[str(p) for p in config_paths]}")

    with open(config_path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' in line:
                key, value = line.split('=', 1)
                config[key.strip()] = value.strip()
    return config


def get_int(config, key, default):
    value = config.get(key, '')
    return int(value) if value != '' else default


def get_float(config, key, default):
    value = config.get(key, '')
    return float(value) if value != '' else default


def get_optional_float(config, key, default):
    """Like get_float, but 'none' disables the setting."""
    value = config.get(key, '')
    if value.lower() == 'none':
        return None
    return float(value) if value != '' else default
