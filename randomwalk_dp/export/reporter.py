"""Summary report generation for random walk simulations."""

from typing import List, Dict, Optional
from pathlib import Path

import numpy as np


class Reporter:
    """Generates summary statistics and formatted text report."""

    def __init__(self, config_path: str):
        self.config_path = config_path
        self.step_metrics: List[Dict] = []
        self.initial_peak: Optional[float] = None
        self.max_spread = 0.0

    @staticmethod
    def spread(distribution: np.ndarray) -> float:
        """Root mean square distance of the mass from its centroid, in cells."""
        total = distribution.sum()
        if total <= 0:
            return 0.0
        rows, cols = np.indices(distribution.shape)
        r_mean = (rows * distribution).sum() / total
        c_mean = (cols * distribution).sum() / total
        var = (((rows - r_mean) ** 2 + (cols - c_mean) ** 2) * distribution).sum() / total
        return float(np.sqrt(var))

    def update(self, step: int, distribution: np.ndarray, absorbed_mass: float) -> None:
        """Accumulate metrics per step."""
        peak = float(distribution.max())
        spread = self.spread(distribution)
        if self.initial_peak is None:
            self.initial_peak = peak
        self.max_spread = max(self.max_spread, spread)
        self.step_metrics.append({
            'step': step,
            'mass': float(distribution.sum()),
            'absorbed': absorbed_mass,
            'peak': peak,
            'spread': spread,
        })

    def generate_summary(self, summary: Dict,
                         output_dir: Path,
                         csv_enabled: bool,
                         snapshot_enabled: bool,
                         gif_enabled: bool,
                         archive_enabled: bool = False) -> str:
        """Returns formatted text report."""
        last = self.step_metrics[-1] if self.step_metrics else {}

        # Build report
        lines = [
            "",
            "=" * 80,
            "                    RANDOM WALK DYNAMIC PROGRAM REPORT",
            "=" * 80,
            f"Configuration: {self.config_path}",
            f"Merge Strategy: {summary.get('strategy', 'n/a')}",
            "",
            "PROGRAMS",
            "-" * 40,
        ]
        for p in summary.get('programs', []):
            lines.append(
                f"{p['name']:<16} steps={p['total_steps']:<6} state={p['state']:<10} "
                f"mass={p['total_mass']:.9f} absorbed={p['absorbed_mass']:.3g} "
                f"peak={p['peak_mass']:.4g}@{p['peak_cell']}"
            )

        lines += [
            "",
            "MERGED DISTRIBUTION",
            "-" * 40,
            f"Total Steps:           {summary.get('total_steps', 0)}",
            f"Merged Mass:           {summary.get('merged_mass', 0.0):.9f}",
            f"Absorbed Mass:         {summary.get('absorbed_mass', 0.0):.3g}",
            f"Peak Cell Mass:        {summary.get('merged_peak', 0.0):.4g}"
            f" (initial {self.initial_peak if self.initial_peak is not None else 0.0:.4g})",
            f"Final Spread:          {last.get('spread', 0.0):.3f} cells",
            f"Max Spread:            {self.max_spread:.3f} cells",
            "",
            "OUTPUT FILES",
            "-" * 40,
        ]

        # Output file paths
        if csv_enabled:
            lines.append(f"CSV Log:    {output_dir / 'distribution_log.csv'}")
        else:
            lines.append("CSV Log:    (disabled)")

        if snapshot_enabled:
            lines.append(f"Snapshot:   {output_dir / 'final_distribution.png'}")
        else:
            lines.append("Snapshot:   (disabled)")

        if gif_enabled:
            lines.append(f"Animation:  {output_dir / 'distribution.gif'}")
        else:
            lines.append("Animation:  (disabled)")

        if archive_enabled:
            lines.append(f"Archive:    {output_dir / 'final_distribution.npz'}")
        else:
            lines.append("Archive:    (disabled)")

        lines.append("=" * 80)

        return "\n".join(lines)
