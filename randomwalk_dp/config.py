"""Configuration dataclasses and YAML loader for random walk simulations."""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional
from pathlib import Path

import numpy as np
import yaml

from .errors import ConfigError, InvalidKernelError, NumericError
from .model.builder import DynamicProgramBuilder
from .model.engine import DEFAULT_TOLERANCE, DynamicProgram
from .model.executor import ParallelExecutor
from .model.grid import InitialDistribution, as_field_type_matrix
from .model.kernel import KERNEL_TYPES, Kernel
from .model.multi import MultiDynamicProgram


@dataclass
class GridConfig:
    terrain: Optional[List[List[Any]]] = None  # inline matrix of tags
    terrain_file: Optional[Path] = None        # CSV of tags
    rows: Optional[int] = None                 # uniform terrain size
    cols: Optional[int] = None
    default_field_type: str = "grassland"


@dataclass
class KernelSpec:
    kernel_type: str  # key of KERNEL_TYPES
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InitialSpec:
    kind: str  # "uniform", "point" or "matrix"
    row: Optional[int] = None
    col: Optional[int] = None
    values: Optional[List[List[float]]] = None


@dataclass
class BarrierSpec:
    barrier_type: str  # "rectangle" or "points"
    data: Dict[str, Any]


@dataclass
class ProgramConfig:
    name: str
    grid: GridConfig
    kernels: Dict[str, KernelSpec]
    initial: InitialSpec
    boundary: str = "absorb"
    iterations: Optional[int] = None
    epsilon: Optional[float] = None
    history: int = 0
    target_mass: float = 1.0
    tolerance: float = DEFAULT_TOLERANCE
    barriers: List[BarrierSpec] = field(default_factory=list)


@dataclass
class SimulationConfig:
    programs: List[ProgramConfig]
    merge_strategy: str = "sum"
    merge_weights: Optional[List[float]] = None
    merge_per_step: bool = False
    parallelism: int = 1
    deadline: Optional[float] = None

    # Export flags (can be overridden by CLI)
    csv_enabled: bool = True
    snapshot_enabled: bool = True
    gif_enabled: bool = False
    archive_enabled: bool = False
    csv_threshold: float = 0.0
    quiet: bool = False
    out_dir: Path = field(default_factory=lambda: Path("./output"))


def load_terrain_csv(path: Path) -> np.ndarray:
    """Read a comma-separated matrix of field type codes or names."""
    try:
        raw = np.loadtxt(path, delimiter=",", dtype=str, ndmin=2, comments="#")
    except ValueError as e:
        raise ConfigError(f"Malformed terrain file {path}: {e}") from e
    return as_field_type_matrix(raw)


def make_kernel(spec: KernelSpec) -> Kernel:
    """Instantiate a kernel from its spec."""
    cls = KERNEL_TYPES.get(spec.kernel_type)
    if cls is None:
        raise InvalidKernelError(
            f"Unknown kernel type {spec.kernel_type!r}; expected one of {sorted(KERNEL_TYPES)}"
        )
    try:
        return cls(**spec.params)
    except (TypeError, KeyError, NumericError) as e:
        raise InvalidKernelError(f"Invalid {spec.kernel_type} kernel {spec.params}: {e}") from e


def _parse_kernels(kernels_raw: Dict[str, Any]) -> Dict[str, KernelSpec]:
    """Parse the field type -> kernel table from raw YAML data."""
    kernels = {}
    for field_type, k in kernels_raw.items():
        if isinstance(k, str):
            k = {'type': k}
        params = {key: value for key, value in k.items() if key != 'type'}
        kernels[str(field_type)] = KernelSpec(kernel_type=k['type'], params=params)
    return kernels


def _parse_initial(initial_raw: Dict[str, Any]) -> InitialSpec:
    kind = initial_raw.get('type', 'uniform')
    if kind == 'point':
        return InitialSpec(kind=kind, row=initial_raw['row'], col=initial_raw['col'])
    if kind == 'matrix':
        return InitialSpec(kind=kind, values=initial_raw['values'])
    if kind == 'uniform':
        return InitialSpec(kind=kind)
    raise ConfigError(f"Unknown initial distribution type: {kind}")


def _parse_barriers(barriers_raw: List[Dict]) -> List[BarrierSpec]:
    """Parse barrier specifications from raw YAML data."""
    barriers = []
    for b in barriers_raw:
        barrier_type = b.get('type', 'rectangle')
        if barrier_type == 'rectangle':
            data = {
                'row0': b['row0'],
                'col0': b['col0'],
                'row1': b['row1'],
                'col1': b['col1']
            }
        elif barrier_type == 'points':
            data = {'coords': [tuple(c) for c in b['coords']]}
        else:
            raise ConfigError(f"Unknown barrier type: {barrier_type}")
        barriers.append(BarrierSpec(barrier_type=barrier_type, data=data))
    return barriers


def _parse_grid(grid_raw: Dict[str, Any], base_dir: Path) -> GridConfig:
    terrain_file = grid_raw.get('terrain_file')
    if terrain_file is not None:
        terrain_file = Path(terrain_file)
        if not terrain_file.is_absolute():
            terrain_file = base_dir / terrain_file
    return GridConfig(
        terrain=grid_raw.get('terrain'),
        terrain_file=terrain_file,
        rows=grid_raw.get('rows'),
        cols=grid_raw.get('cols'),
        default_field_type=grid_raw.get('default_field_type', 'grassland')
    )


def _parse_program(raw: Dict[str, Any], index: int, base_dir: Path) -> ProgramConfig:
    return ProgramConfig(
        name=raw.get('name', f"dp{index}"),
        grid=_parse_grid(raw['grid'], base_dir),
        kernels=_parse_kernels(raw['kernels']),
        initial=_parse_initial(raw.get('initial', {})),
        boundary=raw.get('boundary', 'absorb'),
        iterations=raw.get('iterations'),
        epsilon=raw.get('epsilon'),
        history=raw.get('history', 0),
        target_mass=raw.get('target_mass', 1.0),
        tolerance=raw.get('tolerance', DEFAULT_TOLERANCE),
        barriers=_parse_barriers(raw.get('barriers', []))
    )


def parse_config(raw: Dict[str, Any], base_dir: Path = Path(".")) -> SimulationConfig:
    """Build a SimulationConfig from already-loaded YAML data."""
    if not isinstance(raw, dict):
        raise ConfigError("Configuration must be a mapping")

    try:
        # A single program may be given at top level instead of a list
        programs_raw = raw.get('programs')
        if programs_raw is None:
            programs_raw = [raw['program']]
        programs = [_parse_program(p, i, base_dir) for i, p in enumerate(programs_raw)]

        sim_raw = raw.get('simulation', {})
        merge_raw = sim_raw.get('merge', {})

        # Parse export config (optional)
        export_raw = raw.get('export', {})
        csv_threshold = export_raw.get('csv_threshold', 0.0)
        if csv_threshold < 0:
            raise ConfigError(f"export.csv_threshold must be non-negative, got {csv_threshold}")

        return SimulationConfig(
            programs=programs,
            merge_strategy=merge_raw.get('strategy', 'sum'),
            merge_weights=merge_raw.get('weights'),
            merge_per_step=merge_raw.get('per_step', False),
            parallelism=sim_raw.get('parallelism', 1),
            deadline=sim_raw.get('deadline'),
            csv_enabled=export_raw.get('csv', True),
            snapshot_enabled=export_raw.get('snapshot', True),
            gif_enabled=export_raw.get('gif', False),
            archive_enabled=export_raw.get('archive', False),
            csv_threshold=csv_threshold
        )
    except KeyError as e:
        raise ConfigError(f"Missing configuration key: {e}") from e
    except (TypeError, AttributeError) as e:
        raise ConfigError(f"Malformed configuration: {e}") from e


def load_config(config_path: Path) -> SimulationConfig:
    """Load and validate YAML configuration file."""
    config_path = Path(config_path)
    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    return parse_config(raw, config_path.parent)


def terrain_for(grid: GridConfig) -> np.ndarray:
    """Resolve the terrain matrix of a grid config."""
    if grid.terrain is not None:
        return as_field_type_matrix(grid.terrain)
    if grid.terrain_file is not None:
        return load_terrain_csv(grid.terrain_file)
    if grid.rows is None or grid.cols is None:
        raise ConfigError("Grid needs terrain, terrain_file or rows/cols")
    return as_field_type_matrix(
        [[grid.default_field_type] * grid.cols for _ in range(grid.rows)]
    )


def _initial_for(spec: InitialSpec) -> InitialDistribution:
    if spec.kind == 'point':
        return InitialDistribution.point(spec.row, spec.col)
    if spec.kind == 'matrix':
        return InitialDistribution.matrix(spec.values)
    return InitialDistribution.uniform()


def build_program(program: ProgramConfig, parallelism: int = 1,
                  executor: Optional[ParallelExecutor] = None) -> DynamicProgram:
    """Run a ProgramConfig through the builder."""
    builder = (DynamicProgramBuilder()
               .set_name(program.name)
               .set_field_types(terrain_for(program.grid))
               .set_field_kernels({ft: make_kernel(spec) for ft, spec in program.kernels.items()})
               .set_initial_distribution(_initial_for(program.initial))
               .set_boundary_policy(program.boundary)
               .set_history_capacity(program.history)
               .set_target_mass(program.target_mass)
               .set_tolerance(program.tolerance)
               .set_parallelism(parallelism))
    if program.iterations is not None:
        builder.set_iterations(program.iterations)
    if program.epsilon is not None:
        builder.set_convergence_epsilon(program.epsilon)
    if executor is not None:
        builder.set_executor(executor)

    for barrier in program.barriers:
        if barrier.barrier_type == 'rectangle':
            builder.add_rect_barrier(barrier.data['row0'], barrier.data['col0'],
                                     barrier.data['row1'], barrier.data['col1'])
        else:
            for r, c in barrier.data['coords']:
                builder.add_single_barrier(r, c)

    return builder.build()


def build_simulation(config: SimulationConfig) -> MultiDynamicProgram:
    """Build every program and wrap them with the configured merge strategy."""
    programs: List[DynamicProgram] = []
    try:
        for program in config.programs:
            programs.append(build_program(program, config.parallelism))
        return MultiDynamicProgram(
            programs,
            strategy=config.merge_strategy,
            weights=config.merge_weights,
            per_step=config.merge_per_step
        )
    except ConfigError:
        for dp in programs:
            dp.close()
        raise
