from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd

from processing.tracks import TIME_COL


class StatisticsCalculator:
    def interval_stats(self, tracks: Dict[str, pd.DataFrame], percentile: float = 90) -> pd.DataFrame:
        """Per-individual sampling gaps in seconds, used to pick a resampling step."""
        rows = []
        for individual_id, track in tracks.items():
            gaps = pd.to_datetime(track[TIME_COL]).diff().dt.total_seconds().dropna()
            if gaps.empty:
                continue
            rows.append(
                {
                    "individual_id": individual_id,
                    "fixes": int(len(track)),
                    "mean_s": float(gaps.mean()),
                    "median_s": float(gaps.median()),
                    f"p{percentile:g}_s": float(np.percentile(gaps, percentile)),
                    "max_s": float(gaps.max()),
                }
            )
        return pd.DataFrame(rows)

    def calculate_descriptive_stats(self, data: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
        desc = {}
        for col in columns:
            s = pd.to_numeric(data[col], errors="coerce").dropna()
            if s.empty:
                continue
            q = s.quantile([0.05, 0.25, 0.5, 0.75, 0.95])
            desc[col] = {
                "count": int(s.count()),
                "mean": float(s.mean()),
                "std": float(s.std(ddof=1)) if s.count() > 1 else np.nan,
                "min": float(s.min()),
                "p05": float(q.loc[0.05]),
                "p25": float(q.loc[0.25]),
                "median": float(q.loc[0.5]),
                "p75": float(q.loc[0.75]),
                "p95": float(q.loc[0.95]),
                "max": float(s.max()),
                "missing": int(data[col].isna().sum()),
            }
        return pd.DataFrame(desc).T.reset_index().rename(columns={"index": "variable"})

    def save_stats_to_file(self, stats: pd.DataFrame, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = ["Descriptive Statistics", "======================", ""]
        for _, row in stats.iterrows():
            lines.append(f"Variable: {row['variable']}")
            lines.append(
                f"count={row['count']} mean={row['mean']:.3f} std={row['std']:.3f} "
                f"min={row['min']:.3f} median={row['median']:.3f} p95={row['p95']:.3f} "
                f"max={row['max']:.3f} missing={row['missing']}"
            )
            lines.append("")
        output_path.write_text("\n".join(lines), encoding="utf-8")
