"""Heatmap rendering and animation export for random walk distributions."""

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
from matplotlib.colors import LogNorm, to_rgb
from pathlib import Path
from typing import List, TYPE_CHECKING
from PIL import Image
import io

from ..model.field_type import FieldType

if TYPE_CHECKING:
    from ..model.state import StepSnapshot


class Visualizer:
    """
    Generates visual outputs using matplotlib.

    Supports:
    - Single PNG heatmap snapshots over the terrain
    - Animated GIF compilation
    """

    # ESA WorldCover palette
    COLORS = {
        FieldType.TREE_COVER: '#006400',
        FieldType.SHRUBLAND: '#FFBB22',
        FieldType.GRASSLAND: '#FFFF4C',
        FieldType.CROPLAND: '#F096FF',
        FieldType.BUILT_UP: '#FA0000',
        FieldType.BARE: '#B4B4B4',
        FieldType.SNOW_ICE: '#F0F0F0',
        FieldType.WATER: '#0064C8',
        FieldType.WETLAND: '#0096A0',
        FieldType.MANGROVES: '#00CF75',
        FieldType.MOSS_LICHEN: '#FAE6A0',
        FieldType.BARRIER: '#2C3E50',
    }

    def __init__(self, field_types: np.ndarray, log_scale: bool = True,
                 cmap: str = 'inferno'):
        self.field_types = np.asarray(field_types)
        self.height, self.width = self.field_types.shape
        self.log_scale = log_scale
        self.cmap = cmap
        self.frames: List[Image.Image] = []

    def _terrain_rgb(self) -> np.ndarray:
        base = np.ones((self.height, self.width, 3))
        for ft, color in self.COLORS.items():
            base[self.field_types == int(ft)] = to_rgb(color)
        return base

    def _create_figure(self, snapshot: "StepSnapshot", title: str = "") -> plt.Figure:
        """Create matplotlib figure for a distribution."""
        # Determine figure size based on grid aspect ratio
        aspect = self.width / self.height
        fig_height = 6
        fig_width = max(6, fig_height * aspect)
        fig, ax = plt.subplots(figsize=(fig_width, fig_height))

        extent = [-0.5, self.width - 0.5, self.height - 0.5, -0.5]
        ax.imshow(self._terrain_rgb(), aspect='equal', extent=extent, alpha=0.35)

        # Zero cells stay transparent so the terrain shows through
        dist = np.ma.masked_less_equal(snapshot.distribution, 0.0)
        if dist.count() > 0:
            norm = None
            if self.log_scale and dist.min() < dist.max():
                norm = LogNorm(vmin=dist.min(), vmax=dist.max())
            image = ax.imshow(dist, cmap=self.cmap, norm=norm, aspect='equal',
                              extent=extent, interpolation='nearest')
            fig.colorbar(image, ax=ax, label='probability mass')

        label = f'{title} | ' if title else ''
        ax.set_title(f'{label}Step {snapshot.step} | Mass: {snapshot.total_mass():.6f} | '
                     f'Absorbed: {snapshot.absorbed_mass:.3g}')
        ax.set_xlabel('Column')
        ax.set_ylabel('Row')
        ax.set_xlim(-0.5, self.width - 0.5)
        ax.set_ylim(self.height - 0.5, -0.5)

        plt.tight_layout()
        return fig

    def buffer_frame(self, snapshot: "StepSnapshot", title: str = "") -> None:
        """Store frame for GIF generation."""
        fig = self._create_figure(snapshot, title)

        # Convert to PIL Image
        buf = io.BytesIO()
        fig.savefig(buf, format='png', dpi=80)
        buf.seek(0)
        img = Image.open(buf).copy()
        self.frames.append(img)
        buf.close()
        plt.close(fig)

    def save_snapshot(self, snapshot: "StepSnapshot", output_path: Path,
                      title: str = "") -> None:
        """Save single PNG heatmap of a distribution."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig = self._create_figure(snapshot, title)
        fig.savefig(output_path, dpi=150, bbox_inches='tight')
        plt.close(fig)

    def generate_gif(self, output_path: Path, fps: int = 10) -> None:
        """Compile buffered frames into animated GIF."""
        if not self.frames:
            return

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        duration = int(1000 / fps)  # milliseconds per frame

        self.frames[0].save(
            output_path,
            save_all=True,
            append_images=self.frames[1:],
            duration=duration,
            loop=0
        )

    def clear_frames(self) -> None:
        """Clear buffered frames."""
        self.frames.clear()
