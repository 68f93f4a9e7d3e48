#!/usr/bin/env python3
"""
Random Walk Dynamic Program

Computes where a random walker (lost person, drifting object, diffusing
quantity) is likely to be after a number of time steps on a classified
terrain grid.

Usage:
    randomwalk-dp --config configs/search_area.yaml [options]

Examples:
    randomwalk-dp --config configs/search_area.yaml
    randomwalk-dp --config configs/search_area.yaml --gif --out-dir results/
    randomwalk-dp --config configs/search_area.yaml --steps 200 --no-csv --quiet
    randomwalk-dp --config configs/search_area.yaml --workers 8 --deadline 30
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import SimulationConfig, load_config, build_simulation
from .errors import ConfigError, ExecutionError, NumericError
from .export.archive import save_snapshot
from .export.csv_writer import CSVWriter
from .export.visualizer import Visualizer
from .export.reporter import Reporter
from .model.multi import MultiDynamicProgram
from .model.state import StepSnapshot

logger = logging.getLogger(__name__)

# Buffer every Nth step as a GIF frame
GIF_FRAME_INTERVAL = 5


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='randomwalk-dp',
        description='Random walk probability distributions by dynamic programming',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split('Examples:')[1]
    )

    parser.add_argument('--config', type=Path, required=True,
                        help='YAML file describing the programs and their merge')

    # Run control
    parser.add_argument('--steps', type=int, default=None,
                        help='Iteration count for every program (overrides config)')
    parser.add_argument('--workers', type=int, default=None,
                        help='Worker threads per program (overrides simulation.parallelism)')
    parser.add_argument('--deadline', type=float, default=None,
                        help='Wall-clock budget in seconds, checked between steps')
    parser.add_argument('--out-dir', type=Path, default=Path('./output'),
                        help='Output directory for exports (default: ./output)')

    # Outputs
    outputs = parser.add_argument_group('outputs')
    outputs.add_argument('--csv', dest='csv', action='store_true', default=None,
                         help='Log every step to distribution_log.csv (default)')
    outputs.add_argument('--no-csv', dest='csv', action='store_false',
                         help='Do not write the CSV log')
    outputs.add_argument('--snapshot', dest='snapshot', action='store_true', default=None,
                         help='Render the final heatmap (default)')
    outputs.add_argument('--no-snapshot', dest='snapshot', action='store_false',
                         help='Do not render the final heatmap')
    outputs.add_argument('--gif', action='store_true', default=False,
                         help='Animate the evolution as distribution.gif')
    outputs.add_argument('--archive', action='store_true', default=False,
                         help='Save the final distribution as compressed .npz')

    # Verbosity
    parser.add_argument('--quiet', action='store_true', default=False,
                        help='No progress or report on stdout')
    parser.add_argument('--verbose', action='store_true', default=False,
                        help='Log every step at DEBUG level')

    return parser.parse_args(argv)


def apply_overrides(config: SimulationConfig, args: argparse.Namespace) -> None:
    """Let command line flags win over the YAML settings."""
    if args.steps is not None:
        for program in config.programs:
            program.iterations = args.steps
    if args.workers is not None:
        config.parallelism = args.workers
    if args.deadline is not None:
        config.deadline = args.deadline
    if args.csv is not None:
        config.csv_enabled = args.csv
    if args.snapshot is not None:
        config.snapshot_enabled = args.snapshot
    config.gif_enabled = config.gif_enabled or args.gif
    config.archive_enabled = config.archive_enabled or args.archive
    config.quiet = args.quiet
    config.out_dir = args.out_dir


def merged_snapshot(multi: MultiDynamicProgram, merged=None) -> StepSnapshot:
    """Snapshot of the merged distribution at the current step."""
    return StepSnapshot(
        step=multi.step_count,
        distribution=multi.merge() if merged is None else merged,
        absorbed_mass=multi.absorbed_mass,
        max_change=max(dp.last_max_change for dp in multi.programs)
    )


def run(multi: MultiDynamicProgram, config: SimulationConfig,
        csv_writer, visualizer: Visualizer, reporter: Reporter) -> StepSnapshot:
    """
    Step all programs, feeding every committed merge to the exporters.

    Returns the last committed merged snapshot. A NumericError or
    ExecutionError propagates after the exporters saw every step before it.
    """
    def record(snapshot: StepSnapshot) -> None:
        if csv_writer:
            csv_writer.append(snapshot)
        if config.gif_enabled and (snapshot.step % GIF_FRAME_INTERVAL == 0 or multi.is_finished()):
            visualizer.buffer_frame(snapshot, title=multi.strategy.value)
        reporter.update(snapshot.step, snapshot.distribution, snapshot.absorbed_mass)

    def on_step(step: int, merged) -> None:
        snapshot = merged_snapshot(multi, merged)
        record(snapshot)
        if not config.quiet and step % 100 == 0:
            print(f"  Step {step}: mass {snapshot.total_mass():.9f}, "
                  f"peak {snapshot.distribution.max():.4g}")

    record(merged_snapshot(multi))
    multi.run(deadline=config.deadline, on_step=on_step)
    return merged_snapshot(multi)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: Configuration file not found: {args.config}", file=sys.stderr)
        return 1
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1
    apply_overrides(config, args)

    try:
        multi = build_simulation(config)
    except ConfigError as e:
        print(f"Error in configuration: {e}", file=sys.stderr)
        return 1

    out_dir = config.out_dir
    field_types = multi.programs[0].grid.field_types
    logger.info("Loaded %d program(s) from %s, exports to %s",
                len(multi.programs), args.config, out_dir)

    if not config.quiet:
        rows, cols = multi.shape
        print(f"Initializing {len(multi.programs)} program(s) on a {rows}x{cols} grid")
        for dp in multi.programs:
            print(f"  {dp.name}: boundary={dp.boundary.value}, "
                  f"iterations={dp.iterations}, epsilon={dp.epsilon}")
        print(f"  merge: {multi.strategy.value}, workers per program: {config.parallelism}")

    csv_writer = CSVWriter(out_dir / 'distribution_log.csv', config.csv_threshold) if config.csv_enabled else None
    visualizer = Visualizer(field_types)
    reporter = Reporter(str(args.config))

    exit_code = 0
    with multi:
        try:
            final = run(multi, config, csv_writer, visualizer, reporter)
        except KeyboardInterrupt:
            if not config.quiet:
                print("\nSimulation interrupted by user.")
            final = merged_snapshot(multi)
        except (NumericError, ExecutionError) as e:
            print(f"Error: simulation aborted after step {multi.step_count}: {e}", file=sys.stderr)
            final = merged_snapshot(multi)
            exit_code = 2
        finally:
            if csv_writer:
                csv_writer.close()

        written = []
        if csv_writer:
            written.append(csv_writer.output_path)
        if config.snapshot_enabled:
            path = out_dir / 'final_distribution.png'
            visualizer.save_snapshot(final, path, title=multi.strategy.value)
            written.append(path)
        if config.gif_enabled and visualizer.frames:
            path = out_dir / 'distribution.gif'
            visualizer.generate_gif(path, fps=10)
            written.append(path)
        if config.archive_enabled:
            written.append(save_snapshot(out_dir / 'final_distribution.npz', final, field_types))

        if not config.quiet:
            for path in written:
                print(f"Saved: {path}")
            print(reporter.generate_summary(
                multi.get_summary(),
                out_dir,
                config.csv_enabled,
                config.snapshot_enabled,
                config.gif_enabled,
                config.archive_enabled
            ))

    return exit_code


if __name__ == '__main__':
    sys.exit(main())
