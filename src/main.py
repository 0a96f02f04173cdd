#!/usr/bin/env python3
"""
Splat Temporal: per-attribute videos from sequences of Gaussian splats

Main CLI application entry point.

This application turns a directory of .ply point clouds into videos by:
1. Converting every .ply into a SOG bundle (meta.json + WebP images) with splat-transform
2. Rearranging the WebP images into one frame sequence per attribute
3. Encoding every sequence into a VP9 WebM video with FFmpeg
4. Writing a manifest that maps each point cloud to its frame and video-backed metadata
"""

import argparse
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from catalog import SourceCatalog, prepare_output_roots
from config import STILL_IMAGE_EXT, VIDEO_EXT, PipelineConfig, build_config, load_config_file
from encoder import EncodeOrchestrator, VideoEncoder, list_sequence_dirs, resolve_transcoder
from manifest import build_entries, write_manifest
from models import EncodeResult, FrameLedger, PipelineError, SourceObject
from sequencing import SequenceBuilder


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class SplatTemporalPipeline:
    """Main pipeline orchestrating conversion, sequencing, encoding and the manifest"""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.catalog = SourceCatalog(config)
        self.builder = SequenceBuilder(
            config.sequence_root,
            image_ext=STILL_IMAGE_EXT,
            mismatch_policy=config.frame_mismatch
        )
        self.objects: List[SourceObject] = []
        self.ledger = FrameLedger()
        self.encode_results: List[EncodeResult] = []

        logger.info("SplatTemporalPipeline initialized")

    def run(self) -> Optional[Path]:
        """
        Run the complete pipeline.

        Returns:
            Path to the written manifest, or None if the run failed
        """
        try:
            logger.info("=" * 80)
            logger.info("Starting Splat Temporal Pipeline")
            if self.config.videos_only:
                logger.info("MODE: Videos only (rebuilding from existing output)")
            else:
                logger.info(f"INPUT: {self.config.input_dir}")
            logger.info(f"OUTPUT: {self.config.output_dir}")
            logger.info(f"ENCODER: VP9 crf={self.config.crf} gop={self.config.gop} fps={self.config.fps:g}")
            logger.info("=" * 80)

            if shutil.which(self.config.ffmpeg) is None:
                logger.warning(f"FFmpeg not found on PATH: {self.config.ffmpeg}")

            prepare_output_roots(self.config)

            if self.config.videos_only:
                logger.info("\n[STEP 1-2] Collecting existing source objects and frames...")
                self._plan_existing()
            else:
                logger.info("\n[STEP 1-2] Converting point clouds and building sequences...")
                self._convert_and_sequence()

            self.builder.check_mismatches(self.ledger)

            logger.info("\n[STEP 3] Encoding attribute videos...")
            self._encode()

            logger.info("\n[STEP 4] Writing manifest...")
            entries = build_entries(self.objects, self.ledger, STILL_IMAGE_EXT, VIDEO_EXT)
            manifest_path = write_manifest(entries, self.config.manifest_path)

            logger.info("=" * 80)
            if not self.config.videos_only:
                logger.info(f"Processed {len(self.objects)} .ply files.")
                logger.info(f"Sequences written to {self.config.sequence_root}")
            logger.info(f"Videos written to {self.config.video_root}")
            logger.info("=" * 80)
            return manifest_path

        except PipelineError as e:
            logger.error(f"Pipeline failed: {e}")
            return None
        except OSError as e:
            logger.error(f"Pipeline failed: {e}", exc_info=True)
            return None

    def _convert_and_sequence(self) -> None:
        def tracked():
            for obj in self.catalog.iter_converted():
                self.objects.append(obj)
                yield obj

        self.ledger, _ = self.builder.build(tracked(), self.catalog.still_images)

    def _plan_existing(self) -> None:
        self.objects = self.catalog.scan_existing()
        # Sequences already on disk are trusted; otherwise lay them out again from sog/
        if list_sequence_dirs(self.config.sequence_root):
            self.ledger = self.builder.index_existing(self.objects)
            return
        if self.objects:
            logger.info("No existing sequences; rebuilding them from sog/")
        self.ledger, _ = self.builder.build(self.objects, self.catalog.still_images)

    def _encode(self) -> None:
        orchestrator = EncodeOrchestrator(
            self.config.video_root,
            VideoEncoder(
                ffmpeg=self.config.ffmpeg,
                fps=self.config.fps,
                crf=self.config.crf,
                gop=self.config.gop
            ),
            image_ext=STILL_IMAGE_EXT,
            video_ext=VIDEO_EXT,
            transcoder=resolve_transcoder(self.config.fallback),
            jobs=self.config.jobs,
            verify=self.config.verify
        )
        self.encode_results = orchestrator.encode_all(self.config.sequence_root)

        encoded = [r for r in self.encode_results if r.succeeded]
        fallback = [r for r in encoded if r.used_fallback]
        failed = [r for r in self.encode_results if r.failed]
        logger.info(
            f"Encoded {len(encoded)} video(s), {len(fallback)} via fallback, "
            f"{len(self.encode_results) - len(encoded) - len(failed)} skipped, {len(failed)} failed"
        )

        if failed:
            for r in failed:
                logger.error(f"  {r.attribute}: {r.error}")
            raise PipelineError(
                f"Encoding failed for: {', '.join(r.attribute for r in failed)}"
            )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Convert .ply files to SOG, rearrange WebP sequences, and encode WebM videos',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Convert, sequence and encode
  splat-temporal -i ./plys -o ./out

  # Re-encode videos from an existing output folder
  splat-temporal -o ./out --videos-only

  # Options from a YAML file, overridden on the command line
  splat-temporal --config run.yaml --crf 24
        """
    )

    parser.add_argument('-i', '--input', dest='input_dir', help='Input directory containing .ply files')
    parser.add_argument('-o', '--output', dest='output_dir',
                        help='Output directory for SOG, sequences, and videos')
    parser.add_argument('--config', help='YAML file with pipeline options')
    parser.add_argument('--splat-exec', help='splat-transform executable')
    parser.add_argument('--splat-args', nargs='+', help='Extra args passed to splat-transform')
    parser.add_argument('--webp-width', type=int, help='Force WebP width for SOG outputs')
    parser.add_argument('--webp-height', type=int, help='Force WebP height for SOG outputs')
    parser.add_argument('--crf', type=int, help='VP9 CRF quality, lower is better (default: 18)')
    parser.add_argument('--gop', type=int, help='Keyframe interval (GOP size) (default: 30)')
    parser.add_argument('--fps', type=float, help='Frame rate for output videos (default: 30)')
    parser.add_argument('--overwrite', action='store_true', default=None,
                        help='Overwrite existing output directories')
    parser.add_argument('--videos-only', action='store_true', default=None,
                        help='Only encode videos from existing sequences')
    parser.add_argument('--frame-mismatch', choices=['fail', 'warn'],
                        help='What to do when attributes of one .ply land on different frames (default: fail)')
    parser.add_argument('--on-converter-error', choices=['abort', 'skip'],
                        help='Abort the run or skip the input when splat-transform fails (default: abort)')
    parser.add_argument('--fallback', choices=['auto', 'dwebp', 'opencv', 'none'],
                        help='Transcoder used when FFmpeg cannot decode WebP (default: auto)')
    parser.add_argument('--jobs', type=int, help='Concurrent video encodes (default: CPU count)')
    parser.add_argument('--verify', action='store_true', default=None,
                        help='Decode every video and check its frame count')
    parser.add_argument('--ffmpeg', help='FFmpeg executable (default: ffmpeg)')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')

    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    # Set logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    cli_values = vars(args).copy()
    config_file = cli_values.pop('config')
    cli_values.pop('verbose')

    try:
        file_values = load_config_file(config_file) if config_file else {}
        config = build_config(file_values, cli_values)
    except FileNotFoundError:
        logger.error(f"Config file not found: {config_file}")
        sys.exit(2)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    pipeline = SplatTemporalPipeline(config)
    manifest_path = pipeline.run()

    if manifest_path:
        sys.exit(0)
    else:
        sys.exit(1)


if __name__ == '__main__':
    main()
