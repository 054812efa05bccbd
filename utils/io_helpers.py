from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict

import pandas as pd
import yaml
from rich.logging import RichHandler

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "data": {
        "fix_file": "data/gps.csv",
        "event_file": "data/dives.csv",
    },
    "coordinates": {
        "input_crs": "EPSG:4326",
        "output_crs": "EPSG:3006",
        "transform_on_load": True,
    },
    "cleaning": {"max_speed": 2.5, "max_iterations": 100},
    "resampling": {"percentile": 90, "round_to_s": None},
    "aggregation": {
        "fields": [
            {"name": "mean_magnitude", "source": "magnitude", "func": "mean"},
            {"name": "dive_duration_s", "source": "duration", "func": "sum"},
            {"name": "event_count", "source": "magnitude", "func": "count"},
        ]
    },
    "raster": {"cell_size_m": 5000.0, "h3_resolution": 6},
    "logging": {"level": "INFO", "file": None},
    "outputs": {"dir": "outputs"},
}


def read_config(config_path: Path) -> Dict[str, Any]:
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_settings(config_path: Path | None = None) -> Dict[str, Any]:
    """Read the YAML config (if any) layered over DEFAULT_SETTINGS."""
    if config_path is None or not Path(config_path).exists():
        if config_path is not None:
            logger.warning("Config file %s not found; using defaults", config_path)
        return copy.deepcopy(DEFAULT_SETTINGS)
    return _deep_merge(DEFAULT_SETTINGS, read_config(Path(config_path)))


def ensure_directory(path: Path) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    handlers = [RichHandler(rich_tracebacks=True)]
    if log_file:
        ensure_directory(Path(log_file).parent)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=handlers,
    )


def write_table(data: pd.DataFrame, output_path: Path) -> Path:
    output_path = Path(output_path)
    ensure_directory(output_path.parent)
    sep = "\t" if output_path.suffix.lower() in {".tsv", ".txt"} else ","
    data.to_csv(output_path, index=False, sep=sep)
    logger.info("Wrote %d rows to %s", len(data), output_path)
    return output_path
