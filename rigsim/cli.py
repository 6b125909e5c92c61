"""
Command-line interface for synthetic rig measurements.

Usage:
    rigsim-simulate rig.yaml trajectory.csv [--output-dir OUTPUT_DIR]
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import RigLoadOptions, SimulatorOptions
from .rig_io import camera_rig_from_options
from .simulator import CameraSimulator, run_simulation, simulation_times, write_outputs
from .trajectory import load_trajectory_interpolator


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def _mask_arg(value: str):
    """Parse 'INDEX=PATH'."""
    index, sep, path = value.partition('=')
    if not sep or not index.strip().isdigit() or not path:
        raise argparse.ArgumentTypeError(f"Expected INDEX=PATH, got '{value}'")
    return int(index), path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Simulate keypoint tracks of a camera rig moving along a trajectory',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
    # Simulate at 20 Hz with default output
    rigsim-simulate rig.yaml trajectory.csv

    # First camera only, with a mask, 500 landmarks
    rigsim-simulate rig.yaml trajectory.csv --use-single-camera \\
        --mask 0=masks/cam0.png --max-landmarks 500

    # Verbose output
    rigsim-simulate rig.yaml trajectory.csv -v
'''
    )

    parser.add_argument('calib', type=str, help='Path to YAML rig file')
    parser.add_argument('trajectory', type=str, help='Path to CSV trajectory file')

    parser.add_argument(
        '--mask', action='append', type=_mask_arg, default=[], metavar='INDEX=PATH',
        help='Mask image for a camera index (repeatable)'
    )
    parser.add_argument(
        '--use-single-camera', action='store_true',
        help='Use only the first camera of the rig'
    )
    parser.add_argument('--min-depth', type=float, default=1.0, help='Minimum landmark depth (m)')
    parser.add_argument('--max-depth', type=float, default=10.0, help='Maximum landmark depth (m)')
    parser.add_argument(
        '--max-landmarks', type=int, default=1000, help='Maximum number of active landmarks'
    )
    parser.add_argument('--margin', type=float, default=0.0, help='Keypoint border (pixels)')
    parser.add_argument('--seed', type=int, default=0, help='Landmark sampling seed')
    parser.add_argument('--rate', type=float, default=20.0, help='Measurement rate (Hz)')
    parser.add_argument(
        '--output-dir', '-o', type=str, default=None,
        help='Output directory for results (default: next to the trajectory file)'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose output')
    return parser


def main(argv=None) -> int:
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        rig_options = RigLoadOptions(
            calib_filename=args.calib,
            mask_paths=dict(args.mask),
            use_single_camera=args.use_single_camera,
        )
        sim_options = SimulatorOptions(
            min_depth=args.min_depth,
            max_depth=args.max_depth,
            max_num_landmarks=args.max_landmarks,
            keypoint_margin=args.margin,
            seed=args.seed,
        )

        rig = camera_rig_from_options(rig_options)
        logger.info(f"\n{rig}")
        trajectory = load_trajectory_interpolator(args.trajectory)

        if args.output_dir:
            output_dir = Path(args.output_dir)
        else:
            output_dir = Path(args.trajectory).parent / 'simulation_results'

        simulator = CameraSimulator(trajectory, rig, sim_options)
        report = run_simulation(simulator, simulation_times(trajectory, args.rate))
        measurements_path, summary_path = write_outputs(report, str(output_dir))

        # Print summary
        print("\n" + "=" * 60)
        print("SIMULATION SUMMARY")
        print("=" * 60)
        print(f"Rig:                    {report.rig_label} ({report.num_cameras} cameras)")
        print(f"Steps:                  {report.num_steps}")
        print(f"Time range:             {report.start_time:.3f} - {report.end_time:.3f}")
        print(f"Landmarks created:      {report.total_landmarks_created}")
        print(f"Landmarks evicted:      {report.total_evicted}")
        print(f"Tracks:                 {report.num_tracks}")
        print(f"Mean track length:      {report.mean_track_length:.1f}")
        for cam_idx, mean_count in report.mean_keypoints_per_camera.items():
            print(f"Camera {cam_idx} keypoints/step:  {mean_count:.1f}")
        print(f"\nMeasurements:           {measurements_path}")
        print(f"Summary:                {summary_path}")
        print("=" * 60)
        return 0

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except (ValueError, IndexError, RuntimeError) as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
