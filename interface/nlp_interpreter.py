from __future__ import annotations

import re
from typing import Any, Dict, Tuple

import pandas as pd


class CommandInterpreter:
    """Simple rule-based interpreter for the track-processing console.

    Examples:
    - "load fixes=data/gps.csv events=data/dives.csv"
    - "clean max_speed=2.5"
    - "resample interval=10min"  (or "resample percentile=90")
    - "aggregate"
    - "run"                       # clean + resample + aggregate
    - "raster cell=5000 y=mean_magnitude"
    - "hex res=6 y=dive_duration_s"
    - "stats columns=mean_magnitude,dive_duration_s"
    - "save out=outputs/augmented.csv"
    """

    def parse_command(self, user_input: str) -> Dict[str, Any]:
        raw = user_input.strip()
        s = raw.lower()

        if s in {"exit", "quit"}:
            return {"task": "exit"}

        if s in {"help", "?"}:
            return {"task": "help"}

        if s.startswith("set "):
            m = re.findall(r"(\w+)=([^\s]+)", raw, flags=re.IGNORECASE)
            return {"task": "set", "params": {k.lower(): v for k, v in m}}

        if s.startswith("load"):
            pairs = re.findall(r"(fixes|events|crs|dir)=([^\s]+)", raw, flags=re.IGNORECASE)
            return {"task": "load", "params": {k.lower(): v for k, v in pairs}}

        if s.startswith("clean"):
            return {"task": "clean", "max_speed": self._find_float(raw, ["max_speed", "speed"])}

        if s.startswith("resample"):
            interval = self._find_param(raw, ["interval", "dt", "every"]) or self._find_interval(s)
            return {
                "task": "resample",
                **self._interval_param(interval),
                "percentile": self._find_float(raw, ["percentile", "p"]),
            }

        if s.startswith("aggregate") or s.startswith("merge"):
            return {"task": "aggregate"}

        if s == "run" or s.startswith("run "):
            interval = self._find_param(raw, ["interval", "dt"])
            return {"task": "run", **self._interval_param(interval)}

        if s.startswith("raster") or s.startswith("grid"):
            return {
                "task": "raster",
                "cell_size_m": self._find_float(raw, ["cell", "cell_size", "size"]),
                "y": self._find_param(raw, ["y", "column", "value"]),
            }

        if s.startswith("hex") or s.startswith("map hex"):
            res = self._find_param(raw, ["res", "resolution"])
            return {
                "task": "hex",
                "resolution": int(res) if res and res.isdigit() else None,
                "y": self._find_param(raw, ["y", "column", "value"]),
            }

        if s.startswith("intervals"):
            return {"task": "interval_stats"}

        if s.startswith("stats"):
            cols = self._find_list(raw, r"columns=([\w,]+)")
            return {"task": "compute_stats", "columns": cols}

        if s.startswith("save"):
            return {"task": "save", "out": self._find_param(raw, ["out", "file", "path"]), "what": self._find_param(raw, ["what", "table"])}

        if s.startswith("failures") or s.startswith("errors"):
            return {"task": "failures"}

        if re.match(r"^(\s*(show|list)\s+)?columns\b", s):
            return {"task": "list_columns"}

        # default: show help
        return {"task": "help"}

    def validate_command(self, command: Dict[str, Any]) -> Tuple[bool, str | None]:
        task = command.get("task")
        if command.get("error"):
            return False, command["error"]
        if task == "resample" and command.get("interval_s") is not None and command["interval_s"] <= 0:
            return False, "Resampling interval must be positive"
        if task == "clean" and command.get("max_speed") is not None and command["max_speed"] <= 0:
            return False, "max_speed must be positive"
        if task == "raster" and command.get("cell_size_m") is not None and command["cell_size_m"] <= 0:
            return False, "Cell size must be positive"
        if task == "set" and not command.get("params"):
            return False, "Nothing to set; use key=value"
        return True, None

    @staticmethod
    def interval_seconds(text: str) -> float:
        """'600', '600s', '10min', '1h' -> seconds."""
        text = text.strip().lower()
        if re.fullmatch(r"[0-9]+(\.[0-9]+)?", text):
            return float(text)
        return pd.Timedelta(text).total_seconds()

    def _interval_param(self, text: str | None) -> Dict[str, Any]:
        if not text:
            return {"interval_s": None}
        try:
            return {"interval_s": self.interval_seconds(text)}
        except ValueError:
            return {"interval_s": None, "error": f"Cannot read interval '{text}'; use e.g. 600, 600s, 10min or 1h"}

    def _find_interval(self, s: str) -> str | None:
        m = re.search(r"\b(\d+(?:s|min|h|d))\b", s)
        return m.group(1) if m else None

    def _find_param(self, raw: str, keys: list[str]) -> str | None:
        """Find a parameter value for any of the given keys.

        Supports both "key=value" and "key:value" syntaxes.
        """
        for k in keys:
            m = re.search(rf"\b{k}[=:]([^\s]+)", raw, flags=re.IGNORECASE)
            if m:
                return m.group(1)
        return None

    def _find_float(self, raw: str, keys: list[str]) -> float | None:
        val = self._find_param(raw, keys)
        if val is None:
            return None
        try:
            return float(val)
        except ValueError:
            return None

    def _find_list(self, raw: str, pattern: str) -> list[str] | None:
        m = re.search(pattern, raw, flags=re.IGNORECASE)
        if not m:
            return None
        return [t.strip() for t in m.group(1).split(",") if t.strip()]
