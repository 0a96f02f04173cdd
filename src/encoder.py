"""
Video Encoding Module

This module is responsible for:
1. Validating that each attribute sequence is numbered 0..N-1 without gaps
2. Encoding each sequence into one VP9 WebM video with FFmpeg
3. Falling back to a WebP -> PNG transcode when FFmpeg cannot decode WebP
4. Optionally decoding the produced videos to verify their frame counts
5. Running the per-attribute encodes concurrently

Each sequence moves through an explicit state machine:
PENDING -> PRIMARY_ATTEMPT -> (SUCCESS | FALLBACK_ATTEMPT -> (SUCCESS | FAILED))
"""

import logging
import re
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np
from tqdm import tqdm

from models import (
    EncodeError,
    EncodeResult,
    EncodeState,
    SequenceGapError,
    TranscodeError,
)
from sequencing import FRAME_NAME_WIDTH


logger = logging.getLogger(__name__)

FALLBACK_EXT = 'png'
FALLBACK_DIR_NAME = '_png'
STDERR_TAIL_LINES = 20


def list_sequence_dirs(sequence_root: Path) -> List[Path]:
    """Attribute sequence directories, sorted by name"""
    root = Path(sequence_root)
    if not root.exists():
        return []
    return sorted((d for d in root.iterdir() if d.is_dir()), key=lambda d: d.name)


def list_sequence_frames(sequence_dir: Path, ext: str) -> List[str]:
    """Frame file names with the given extension, sorted"""
    suffix = f".{ext.lower()}"
    return sorted(
        p.name for p in Path(sequence_dir).iterdir()
        if p.is_file() and p.name.lower().endswith(suffix)
    )


def check_contiguous(frame_files: List[str], ext: str) -> int:
    """
    Check that frames are named frame_00000..frame_<N-1> with nothing missing.

    Returns:
        Number of frames

    Raises:
        SequenceGapError: on a misnamed frame or a missing index
    """
    pattern = re.compile(rf"^frame_(\d{{{FRAME_NAME_WIDTH},}})\.{re.escape(ext)}$", re.IGNORECASE)
    indices = []
    for name in frame_files:
        match = pattern.match(name)
        if not match:
            raise SequenceGapError(f"Unexpected frame file name: {name}")
        indices.append(int(match.group(1)))

    indices.sort()
    for expected, actual in enumerate(indices):
        if actual != expected:
            raise SequenceGapError(f"Missing frame {expected} (next present frame is {actual})")
    return len(indices)


def frame_pattern(sequence_dir: Path, ext: str) -> str:
    return str(Path(sequence_dir) / f"frame_%0{FRAME_NAME_WIDTH}d.{ext}")


def build_filter_graph() -> str:
    """
    Composite each frame over an opaque black canvas of the same even size.

    VP9 with yuv420p needs even dimensions and carries no alpha, so frames are
    padded to even width/height and alpha-blended onto the background instead
    of having their alpha dropped.
    """
    return (
        'color=black@1.0:size=16x16[bg];'
        '[0:v]format=rgba,pad=ceil(iw/2)*2:ceil(ih/2)*2:0:0:color=black@0.0[fg];'
        '[bg][fg]scale2ref[bg2][fg2];'
        '[bg2][fg2]overlay=shortest=1:format=auto[outv]'
    )


def build_ffmpeg_command(
    ffmpeg: str,
    input_pattern: str,
    output_path: Path,
    fps: float,
    crf: int,
    gop: int
) -> List[str]:
    """FFmpeg command encoding an image sequence into VP9 WebM"""
    return [
        ffmpeg,
        '-hide_banner',
        '-loglevel', 'error',
        '-framerate', f"{fps:g}",
        '-start_number', '0',
        '-i', input_pattern,
        '-filter_complex', build_filter_graph(),
        '-map', '[outv]',
        '-c:v', 'libvpx-vp9',
        '-b:v', '0',
        '-crf', str(crf),
        '-g', str(gop),
        '-pix_fmt', 'yuv420p',
        '-threads', '1',  # reproducible output across runs
        '-map_metadata', '-1',
        '-fflags', '+bitexact',
        '-flags:v', '+bitexact',
        '-an',
        '-y',
        str(output_path)
    ]


def _stderr_tail(stderr: bytes) -> str:
    lines = stderr.decode('utf-8', 'replace').strip().splitlines()
    return '\n'.join(lines[-STDERR_TAIL_LINES:])


class VideoEncoder:
    """
    Encodes image sequences with FFmpeg.
    """

    def __init__(self, ffmpeg: str = 'ffmpeg', fps: float = 30, crf: int = 18, gop: int = 30):
        self.ffmpeg = ffmpeg
        self.fps = fps
        self.crf = crf
        self.gop = gop

    def encode(self, input_pattern: str, output_path: Path) -> None:
        """Encode one image sequence; raises EncodeError with FFmpeg's exit code and stderr"""
        cmd = build_ffmpeg_command(self.ffmpeg, input_pattern, output_path, self.fps, self.crf, self.gop)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True)
        except FileNotFoundError:
            raise EncodeError(f"FFmpeg executable not found: {self.ffmpeg}")

        if result.returncode != 0:
            stderr = _stderr_tail(result.stderr or b'')
            raise EncodeError(
                f"ffmpeg failed with exit code {result.returncode} for {input_pattern}: {stderr}",
                returncode=result.returncode,
                stderr=stderr
            )


class DwebpTranscoder:
    """Decodes WebP frames to PNG with libwebp's dwebp tool"""

    name = 'dwebp'

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or shutil.which('dwebp')

    def available(self) -> bool:
        return self.executable is not None

    def transcode(self, src: Path, dst: Path) -> None:
        try:
            result = subprocess.run([self.executable, str(src), '-o', str(dst)], capture_output=True)
        except FileNotFoundError:
            raise TranscodeError(f"dwebp executable not found: {self.executable}")
        if result.returncode != 0:
            raise TranscodeError(
                f"dwebp failed with exit code {result.returncode} for {src}",
                returncode=result.returncode,
                stderr=_stderr_tail(result.stderr or b'')
            )


class OpenCVTranscoder:
    """Decodes WebP frames to PNG with OpenCV, keeping the alpha channel"""

    name = 'opencv'

    def available(self) -> bool:
        try:
            ok, _ = cv2.imencode('.webp', np.zeros((2, 2, 3), dtype=np.uint8))
        except cv2.error:
            return False
        return bool(ok)

    def transcode(self, src: Path, dst: Path) -> None:
        image = cv2.imread(str(src), cv2.IMREAD_UNCHANGED)
        if image is None:
            raise TranscodeError(f"OpenCV could not decode {src}")
        if not cv2.imwrite(str(dst), image):
            raise TranscodeError(f"OpenCV could not write {dst}")


def resolve_transcoder(name: str):
    """
    Pick the fallback transcoder available on this host.

    Args:
        name: 'auto', 'dwebp', 'opencv' or 'none'

    Returns:
        A transcoder instance, or None when no fallback is available
    """
    if name == 'none':
        return None

    candidates = {
        'auto': [DwebpTranscoder, OpenCVTranscoder],
        'dwebp': [DwebpTranscoder],
        'opencv': [OpenCVTranscoder],
    }[name]

    for cls in candidates:
        transcoder = cls()
        if transcoder.available():
            logger.info(f"Fallback transcoder: {transcoder.name}")
            return transcoder

    logger.warning(f"No fallback transcoder available (requested: {name})")
    return None


def transcode_sequence(frame_files: List[str], sequence_dir: Path, side_dir: Path, transcoder) -> None:
    """Transcode every frame, in order, into side_dir; stops at the first failure"""
    if side_dir.exists():
        shutil.rmtree(side_dir)
    side_dir.mkdir(parents=True)

    for name in frame_files:
        target = side_dir / f"{Path(name).stem}.{FALLBACK_EXT}"
        transcoder.transcode(Path(sequence_dir) / name, target)


def count_video_frames(video_path: Path) -> int:
    """Decode a video with OpenCV and count its frames"""
    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise EncodeError(f"Cannot open video: {video_path}")

    count = 0
    try:
        while True:
            ret, _ = cap.read()
            if not ret:
                break
            count += 1
    finally:
        cap.release()
    return count


class EncodeOrchestrator:
    """
    Turns every attribute sequence into exactly one video.

    Sequences are independent, so they are encoded on a bounded worker pool;
    each worker blocks on its own FFmpeg process.
    """

    def __init__(
        self,
        video_root: Path,
        encoder: VideoEncoder,
        image_ext: str,
        video_ext: str,
        transcoder=None,
        jobs: int = 1,
        verify: bool = False
    ):
        """
        Initialize the EncodeOrchestrator.

        Args:
            video_root: Directory receiving <attribute>.<video_ext>
            encoder: Primary FFmpeg encoder
            image_ext: Extension of the sequence frames
            video_ext: Extension of the produced videos
            transcoder: Fallback transcoder, or None if unavailable
            jobs: Maximum number of concurrent encodes
            verify: Decode each video afterwards and compare frame counts
        """
        self.video_root = Path(video_root)
        self.encoder = encoder
        self.image_ext = image_ext
        self.video_ext = video_ext
        self.transcoder = transcoder
        self.jobs = max(1, jobs)
        self.verify = verify

    def output_path(self, attribute: str) -> Path:
        return self.video_root / f"{attribute}.{self.video_ext}"

    def encode_sequence(self, sequence_dir: Path) -> EncodeResult:
        """Run the primary/fallback state machine for one attribute sequence"""
        sequence_dir = Path(sequence_dir)
        attribute = sequence_dir.name
        result = EncodeResult(
            attribute=attribute,
            sequence_dir=sequence_dir,
            output_path=self.output_path(attribute),
        )

        frames = list_sequence_frames(sequence_dir, self.image_ext)
        if not frames:
            logger.info(f"Skipping empty sequence: {attribute}")
            result.transition(EncodeState.SKIPPED)
            return result

        try:
            result.frame_count = check_contiguous(frames, self.image_ext)
        except SequenceGapError as e:
            logger.error(f"Sequence {attribute} is not contiguous: {e}")
            result.error = e
            result.transition(EncodeState.FAILED)
            return result

        # A video left by an earlier run must not survive a failed encode
        self.video_root.mkdir(parents=True, exist_ok=True)
        result.output_path.unlink(missing_ok=True)

        result.transition(EncodeState.PRIMARY_ATTEMPT)
        try:
            self.encoder.encode(frame_pattern(sequence_dir, self.image_ext), result.output_path)
            result.transition(EncodeState.SUCCESS)
        except EncodeError as primary_error:
            if primary_error.returncode is None:
                # FFmpeg never ran; the fallback would need it too
                logger.error(f"Encoding {attribute} failed: {primary_error}")
                result.error = primary_error
                result.transition(EncodeState.FAILED)
                return result
            if self.transcoder is None:
                logger.error(f"Encoding {attribute} failed and no fallback is available: {primary_error}")
                result.error = primary_error
                result.transition(EncodeState.FAILED)
                return result

            logger.warning(
                f"ffmpeg could not decode {self.image_ext.upper()} in {sequence_dir}; "
                f"falling back to {self.transcoder.name} + {FALLBACK_EXT.upper()}."
            )
            result.transition(EncodeState.FALLBACK_ATTEMPT)
            result.used_fallback = True

            side_dir = sequence_dir / FALLBACK_DIR_NAME
            try:
                transcode_sequence(frames, sequence_dir, side_dir, self.transcoder)
                self.encoder.encode(frame_pattern(side_dir, FALLBACK_EXT), result.output_path)
                result.transition(EncodeState.SUCCESS)
            except EncodeError as fallback_error:
                logger.error(f"Fallback encode of {attribute} failed: {fallback_error}")
                result.error = fallback_error
                result.transition(EncodeState.FAILED)
                return result

        if self.verify:
            self._verify(result)

        if result.succeeded:
            logger.info(f"Encoded {attribute}: {result.frame_count} frames -> {result.output_path}")
        return result

    def _verify(self, result: EncodeResult) -> None:
        try:
            decoded = count_video_frames(result.output_path)
        except EncodeError as e:
            result.error = e
            result.transition(EncodeState.FAILED)
            return

        if decoded != result.frame_count:
            result.error = EncodeError(
                f"{result.output_path} decodes to {decoded} frames, expected {result.frame_count}"
            )
            logger.error(str(result.error))
            result.transition(EncodeState.FAILED)

    def encode_all(self, sequence_root: Path) -> List[EncodeResult]:
        """
        Encode every attribute sequence under sequence_root.

        Returns:
            One EncodeResult per sequence directory, ordered by attribute name
        """
        sequence_dirs = list_sequence_dirs(sequence_root)
        if not sequence_dirs:
            logger.warning(f"No sequences found in {sequence_root}")
            return []

        self.video_root.mkdir(parents=True, exist_ok=True)
        workers = min(self.jobs, len(sequence_dirs))
        logger.info(f"Encoding {len(sequence_dirs)} sequences with {workers} worker(s)")

        results = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.encode_sequence, d): d for d in sequence_dirs}
            for future in tqdm(as_completed(futures), total=len(futures), desc="Encoding videos"):
                results.append(future.result())

        return sorted(results, key=lambda r: r.attribute)
