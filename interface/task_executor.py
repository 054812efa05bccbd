from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from aggregation.interval_aggregator import IntervalAggregator
from aggregation.spatial_aggregator import SpatialAggregator
from analysis.statistics import StatisticsCalculator
from data_loader.csv_loader import BiologgingDataLoader
from data_loader.projection import CoordinateProjector
from processing.pipeline import TrackPipeline
from processing.track_cleaner import SpeedFilter
from processing.track_resampler import TrackResampler
from processing.tracks import BatchResult, TrackFailure
from utils.io_helpers import load_settings, setup_logging, write_table
from utils.validators import validate_coordinates, validate_event_windows

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    ok: bool
    message: str
    artifact: Optional[Path] = None


class TaskExecutor:
    def __init__(self, config_path: Optional[Path] = Path("config/settings.yaml"), configure_logging: bool = True):
        self.config = load_settings(config_path)
        if configure_logging:
            log_cfg = self.config.get("logging", {})
            setup_logging(log_cfg.get("level", "INFO"), log_cfg.get("file"))
        self.loader = BiologgingDataLoader()
        self.projector = CoordinateProjector(self.config["coordinates"])
        self.spatial = SpatialAggregator(self.projector)
        self.stats = StatisticsCalculator()
        self.resampler = TrackResampler()
        self.state: Dict[str, Any] = {
            "fixes": self.config["data"]["fix_file"],
            "events": self.config["data"]["event_file"],
            "crs": self.config["coordinates"]["input_crs"],
            "max_speed": float(self.config["cleaning"]["max_speed"]),
            "percentile": float(self.config["resampling"]["percentile"]),
            "cell_size_m": float(self.config["raster"]["cell_size_m"]),
            "h3_resolution": int(self.config["raster"]["h3_resolution"]),
        }
        self.output_dir = Path(self.config["outputs"]["dir"])
        self.fixes: Optional[pd.DataFrame] = None
        self.events: Optional[pd.DataFrame] = None
        self.cleaned: Optional[BatchResult] = None
        self.regular: Optional[BatchResult] = None
        self.interval_s: Optional[float] = None
        self.augmented: Optional[pd.DataFrame] = None
        self.raster: Optional[pd.DataFrame] = None
        self.failures: List[TrackFailure] = []

    def execute(self, command: Dict[str, Any]) -> ExecutionResult:
        task = command.get("task")
        try:
            if task == "set":
                return self._set(command.get("params", {}))

            if task == "load":
                return self._load_data(command.get("params", {}))

            if task == "clean":
                return self._clean(command.get("max_speed"))

            if task == "resample":
                return self._resample(command.get("interval_s"), command.get("percentile"))

            if task == "aggregate":
                return self._aggregate()

            if task == "run":
                return self._run(command.get("interval_s"))

            if task == "raster":
                return self._raster(command.get("cell_size_m"), command.get("y"))

            if task == "hex":
                return self._hex(command.get("resolution"), command.get("y"))

            if task == "interval_stats":
                return self._interval_stats()

            if task == "compute_stats":
                return self._compute_stats(command.get("columns"))

            if task == "save":
                return self._save(command.get("out"), command.get("what"))

            if task == "failures":
                return self._list_failures()

            if task == "list_columns":
                return self._list_columns()

            if task == "help":
                return ExecutionResult(True, self.help_text())

            if task == "exit":
                return ExecutionResult(True, "exit")

            return ExecutionResult(False, f"Unknown task: {task}")
        except Exception as e:  # noqa: BLE001
            logger.exception("Error executing task")
            return ExecutionResult(False, f"Error: {e}")

    def _set(self, params: Dict[str, Any]) -> ExecutionResult:
        numeric = {"max_speed", "percentile", "cell_size_m"}
        updates: Dict[str, Any] = {}
        for key, value in params.items():
            if key not in self.state:
                return ExecutionResult(False, f"Unknown setting: {key}. Known: {', '.join(sorted(self.state))}")
            if key in numeric:
                updates[key] = float(value)
            elif key == "h3_resolution":
                updates[key] = int(value)
            else:
                updates[key] = value
        self.state.update(updates)
        return ExecutionResult(True, f"Updated settings: {updates}")

    def _load_data(self, params: Dict[str, Any]) -> ExecutionResult:
        base = Path(params["dir"]) if "dir" in params else None
        fix_path = Path(params.get("fixes", self.state["fixes"]))
        event_path = Path(params.get("events", self.state["events"]))
        if base is not None:
            fix_path = fix_path if fix_path.is_absolute() else base / fix_path
            event_path = event_path if event_path.is_absolute() else base / event_path
        crs = params.get("crs", self.state["crs"])

        fixes = self.loader.load_fixes([fix_path], crs=crs)
        if {"latitude", "longitude"} <= set(fixes.columns):
            ok, errs = validate_coordinates(fixes)
            if not ok:
                logger.warning("Fix coordinates: %s", "; ".join(errs))
            fixes = self.projector.add_projected_coords(fixes)
        events = self.loader.load_events([event_path])
        ok, errs = validate_event_windows(events)
        if not ok:
            logger.warning("Event windows: %s", "; ".join(errs))

        self.fixes = fixes
        self.events = events
        self.cleaned = self.regular = None
        self.augmented = self.raster = None
        self.interval_s = None
        self.failures = []
        return ExecutionResult(
            True,
            f"Loaded {len(fixes)} fixes for {fixes['individual_id'].nunique()} individuals "
            f"and {len(events)} events",
        )

    def _ensure(self, attr: str, hint: str) -> None:
        if getattr(self, attr) is None:
            raise RuntimeError(f"Nothing to work on yet. Use '{hint}' first.")

    def _clean(self, max_speed: Optional[float]) -> ExecutionResult:
        self._ensure("fixes", "load")
        if max_speed is not None:
            self.state["max_speed"] = float(max_speed)
        cleaner = SpeedFilter(self.state["max_speed"], self.config["cleaning"]["max_iterations"])
        self.cleaned = cleaner.clean(self.fixes)
        self.failures = list(self.cleaned.failures)
        kept = sum(len(t) for t in self.cleaned.tracks.values())
        return ExecutionResult(
            True,
            f"Kept {kept} of {len(self.fixes)} fixes at <= {self.state['max_speed']} m/s "
            f"({len(self.cleaned.failures)} failed individuals)",
        )

    def _resample(self, interval_s: Optional[float], percentile: Optional[float]) -> ExecutionResult:
        self._ensure("cleaned", "clean")
        if percentile is not None:
            self.state["percentile"] = float(percentile)
        if interval_s is None:
            interval_s = self.resampler.choose_interval(
                self.cleaned.tracks, self.state["percentile"], self.config["resampling"].get("round_to_s")
            )
        self.interval_s = float(interval_s)
        self.regular = self.resampler.resample(self.cleaned.tracks, self.interval_s)
        self.failures = [*self.cleaned.failures, *self.regular.failures]
        n = sum(len(t) for t in self.regular.tracks.values())
        return ExecutionResult(True, f"Resampled {len(self.regular.tracks)} tracks every {self.interval_s:.0f} s ({n} fixes)")

    def _aggregate(self) -> ExecutionResult:
        self._ensure("regular", "resample")
        aggregator = IntervalAggregator.from_config(self.config["aggregation"].get("fields"))
        result = aggregator.aggregate(self.regular.tracks, self.events)
        self.augmented = result.to_frame()
        self.failures = [*self.cleaned.failures, *self.regular.failures, *result.failures]
        return ExecutionResult(True, f"Augmented {len(self.augmented)} regular fixes with {len(aggregator.fields)} event summaries")

    def _run(self, interval_s: Optional[float]) -> ExecutionResult:
        self._ensure("fixes", "load")
        pipeline = TrackPipeline.from_settings(self.config, interval_s=interval_s)
        pipeline.cleaner.max_speed = self.state["max_speed"]
        pipeline.percentile = self.state["percentile"]
        result = pipeline.run(self.fixes, self.events)
        self.cleaned, self.regular = result.cleaned, result.regular
        self.interval_s = result.interval_s
        self.augmented = result.augmented
        self.failures = result.failures
        step = f"{result.interval_s:.0f} s" if result.interval_s is not None else "n/a"
        return ExecutionResult(
            True,
            f"Pipeline done: {len(result.augmented)} augmented fixes, step {step}, "
            f"{len(result.failed_individuals)} failed individuals",
        )

    def _value_columns(self, y: Optional[str]) -> List[str]:
        fields = [f["name"] for f in self.config["aggregation"].get("fields", [])]
        cols = [y] if y else [c for c in fields if c in self.augmented.columns]
        missing = [c for c in cols if c not in self.augmented.columns]
        if missing:
            raise ValueError(self._unknown_column_message(missing[0]))
        return cols

    def _raster(self, cell_size_m: Optional[float], y: Optional[str]) -> ExecutionResult:
        self._ensure("augmented", "aggregate")
        cell = float(cell_size_m or self.state["cell_size_m"])
        cols = self._value_columns(y)
        self.raster = self.spatial.rasterize(self.augmented, cell, {c: "mean" for c in cols})
        out = write_table(self.raster, self.output_dir / "rasters" / f"grid_{int(cell)}m.csv")
        return ExecutionResult(True, f"Rasterized into {len(self.raster)} cells of {cell:.0f} m; saved to {out}", artifact=out)

    def _hex(self, resolution: Optional[int], y: Optional[str]) -> ExecutionResult:
        self._ensure("augmented", "aggregate")
        res = int(resolution if resolution is not None else self.state["h3_resolution"])
        cols = self._value_columns(y)
        df = self.spatial.assign_hex_ids(self.augmented, res)
        self.raster = self.spatial.aggregate_by_hex(df, {c: "mean" for c in cols})
        out = write_table(self.raster, self.output_dir / "rasters" / f"hex_res{res}.csv")
        return ExecutionResult(True, f"Binned into {len(self.raster)} H3 cells (res {res}); saved to {out}", artifact=out)

    def _interval_stats(self) -> ExecutionResult:
        self._ensure("cleaned", "clean")
        table = self.stats.interval_stats(self.cleaned.tracks, self.state["percentile"])
        if table.empty:
            return ExecutionResult(False, "No track has more than one fix")
        return ExecutionResult(True, table.to_string(index=False, float_format=lambda v: f"{v:.1f}"))

    def _compute_stats(self, columns: Optional[List[str]]) -> ExecutionResult:
        self._ensure("augmented", "aggregate")
        cols = columns or self._value_columns(None)
        for c in cols:
            if c not in self.augmented.columns:
                return ExecutionResult(False, self._unknown_column_message(c))
        stats = self.stats.calculate_descriptive_stats(self.augmented, cols)
        out = self.output_dir / "reports" / "descriptive_stats.txt"
        self.stats.save_stats_to_file(stats, out)
        return ExecutionResult(True, f"Saved stats to {out}", artifact=out)

    def _save(self, out: Optional[str], what: Optional[str]) -> ExecutionResult:
        what = (what or "augmented").lower()
        if what == "augmented":
            self._ensure("augmented", "aggregate")
            table = self.augmented
        elif what == "cleaned":
            self._ensure("cleaned", "clean")
            table = self.cleaned.to_frame()
        elif what == "regular":
            self._ensure("regular", "resample")
            table = self.regular.to_frame()
        elif what == "raster":
            self._ensure("raster", "raster")
            table = self.raster
        else:
            return ExecutionResult(False, f"Unknown table: {what}. Use augmented, cleaned, regular or raster")
        path = Path(out) if out else self.output_dir / f"{what}.csv"
        write_table(table, path)
        return ExecutionResult(True, f"Saved {len(table)} rows to {path}", artifact=path)

    def _list_failures(self) -> ExecutionResult:
        if not self.failures:
            return ExecutionResult(True, "No failures.")
        return ExecutionResult(True, "\n".join(str(f) for f in self.failures))

    def _list_columns(self) -> ExecutionResult:
        self._ensure("augmented", "aggregate")
        return ExecutionResult(True, "Columns: " + ", ".join(self.augmented.columns))

    def help_text(self) -> str:
        return (
            "Commands:\n"
            "  set key=value [...]                  # fixes, events, crs, max_speed, percentile, cell_size_m, h3_resolution\n"
            "  load fixes=data/gps.csv events=data/dives.csv [crs=EPSG:4326] [dir=...]\n"
            "  clean [max_speed=2.5]                # iterative speed filter\n"
            "  resample [interval=10min] [percentile=90]\n"
            "  aggregate                            # attach dive summaries to regular fixes\n"
            "  run [interval=10min]                 # clean + resample + aggregate\n"
            "  intervals                            # sampling-gap statistics per individual\n"
            "  raster [cell=5000] [y=<column>]      # grid summary in projected metres\n"
            "  hex [res=6] [y=<column>]             # H3 hexagon summary\n"
            "  stats [columns=a,b]\n"
            "  save [what=augmented|cleaned|regular|raster] [out=path]\n"
            "  failures | columns | help | exit\n"
        )

    def _unknown_column_message(self, col: str) -> str:
        cols = list(self.augmented.columns) if self.augmented is not None else []
        sample = ", ".join(c for c in cols if c != "timestamp")[:200]
        return f"Column not found: {col}. Available columns include: {sample}."
