"""
Source Catalog Module

This module is responsible for:
1. Preparing the sog/, sequences/ and videos/ output roots
2. Running the external converter (splat-transform) once per .ply input
3. Enumerating already converted source objects (rebuild mode)
4. Discovering the per-attribute still images each object produced
"""

import logging
import shutil
import subprocess
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from tqdm import tqdm

from config import STILL_IMAGE_EXT, PipelineConfig
from models import ConverterError, PipelineError, SourceObject, StillImage


logger = logging.getLogger(__name__)


def list_ply_files(input_dir: Path) -> List[Path]:
    """List .ply files directly inside input_dir, sorted by path"""
    return sorted(
        p for p in Path(input_dir).iterdir()
        if p.is_file() and p.name.lower().endswith('.ply')
    )


def unique_dir(base_dir: Path) -> Path:
    """Return base_dir, or base_dir_1, base_dir_2, ... whichever does not exist yet"""
    candidate = Path(base_dir)
    suffix = 1
    while candidate.exists():
        candidate = base_dir.with_name(f"{base_dir.name}_{suffix}")
        suffix += 1
    return candidate


def prepare_output_roots(config: PipelineConfig) -> None:
    """
    Create the output roots, clearing or refusing stale ones in fresh mode.

    Rebuild mode (videos_only) reuses whatever is already on disk.
    """
    roots = [config.sog_root, config.sequence_root, config.video_root]

    if not config.videos_only:
        existing = [d for d in roots if d.exists()]
        if existing and not config.overwrite:
            raise PipelineError(
                f"Output subfolder already exists: {existing[0]} (use --overwrite to allow)"
            )
        for d in existing:
            logger.info(f"Removing existing output folder: {d}")
            shutil.rmtree(d)

    for d in roots:
        d.mkdir(parents=True, exist_ok=True)


def build_converter_command(
    exec_path: str,
    args: Sequence[str],
    input_path: Path,
    output_path: Path
) -> List[str]:
    """Build `<exec> [args...] <input> <output-meta>`; JS entry points run through node"""
    cmd = [exec_path]
    if exec_path.endswith(('.mjs', '.js')):
        cmd = ['node', exec_path]
    return cmd + list(args) + [str(input_path), str(output_path)]


def run_converter(
    object_name: str,
    exec_path: str,
    args: Sequence[str],
    input_path: Path,
    output_path: Path
) -> None:
    """Run the converter for one input; raises ConverterError on failure"""
    cmd = build_converter_command(exec_path, args, input_path, output_path)
    logger.debug(f"Running converter: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd)
    except FileNotFoundError:
        raise ConverterError(object_name, f"converter executable not found: {exec_path}")

    if result.returncode != 0:
        raise ConverterError(
            object_name,
            f"splat-transform failed with exit code {result.returncode}",
            returncode=result.returncode
        )


def attribute_name(image_path: Path) -> str:
    """The attribute channel of a still image is its file name without extension"""
    return Path(image_path).stem


def iter_still_images(root: Path, ext: str = STILL_IMAGE_EXT) -> Iterator[Path]:
    """
    Yield every still image below root, walking directories with an explicit stack.

    Entries are visited in name order at each level so repeated walks of the
    same tree yield the same sequence.
    """
    suffix = f".{ext.lower()}"
    pending = [Path(root)]
    while pending:
        current = pending.pop()
        subdirs = []
        for entry in sorted(current.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                subdirs.append(entry)
            elif entry.is_file() and entry.name.lower().endswith(suffix):
                yield entry
        # Reversed so the first subdirectory is popped first
        pending.extend(reversed(subdirs))


class SourceCatalog:
    """
    Produces the ordered list of source objects for a run.

    Fresh mode converts every input with the external converter; rebuild
    mode enumerates the object directories already present under sog/.
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.image_ext = STILL_IMAGE_EXT

    def plan_inputs(self) -> List[Tuple[Path, Path]]:
        """Pair every input with the output directory it will be converted into"""
        input_dir = self.config.input_dir
        if input_dir is None or not input_dir.exists():
            raise PipelineError(f"Input directory not found: {input_dir}")

        ply_files = list_ply_files(input_dir)
        if not ply_files:
            raise PipelineError(f"No .ply files found in {input_dir}")

        plan = []
        claimed = set()
        for ply_path in ply_files:
            base = self.config.sog_root / ply_path.stem
            out_dir = unique_dir(base)
            # Directories are created lazily, so also avoid ones claimed earlier in this plan
            suffix = 1
            while out_dir in claimed:
                out_dir = unique_dir(base.with_name(f"{base.name}_{suffix}"))
                suffix += 1
            claimed.add(out_dir)
            plan.append((ply_path, out_dir))
        return plan

    def convert_one(self, ply_path: Path, out_dir: Path) -> SourceObject:
        """Convert a single input into its own sog directory"""
        out_dir.mkdir(parents=True, exist_ok=True)
        obj = SourceObject(name=ply_path.name, source_path=ply_path, output_dir=out_dir)
        run_converter(
            obj.name,
            self.config.splat_exec,
            self.config.converter_args(),
            ply_path,
            obj.meta_path
        )
        return obj

    def iter_converted(self) -> Iterator[SourceObject]:
        """
        Convert inputs in catalog order, yielding each object once converted.

        Once an input has converted cleanly, the next one starts on a worker
        thread while the caller handles the current object. Nothing else is
        converting when a conversion fails.
        """
        plan = self.plan_inputs()
        logger.info(f"Converting {len(plan)} .ply files with {self.config.splat_exec}")

        with ThreadPoolExecutor(max_workers=1) as executor:
            pending: Optional[Future] = None
            progress = tqdm(total=len(plan), desc="Converting point clouds")
            try:
                for i, (ply_path, out_dir) in enumerate(plan):
                    future = pending or executor.submit(self.convert_one, ply_path, out_dir)
                    pending = None

                    try:
                        obj = future.result()
                    except ConverterError as e:
                        if self.config.on_converter_error == 'abort':
                            raise
                        logger.warning(f"Skipping input after converter failure: {e}")
                        continue
                    finally:
                        progress.update(1)

                    if i + 1 < len(plan):
                        pending = executor.submit(self.convert_one, *plan[i + 1])
                    yield obj
            finally:
                progress.close()

    def convert_inputs(self) -> List[SourceObject]:
        return list(self.iter_converted())

    def scan_existing(self) -> List[SourceObject]:
        """Enumerate object directories under sog/ in lexicographic order"""
        sog_root = self.config.sog_root
        if not sog_root.exists():
            logger.warning(f"No sog folder found at {sog_root}")
            return []

        objects = []
        for out_dir in sorted((d for d in sog_root.iterdir() if d.is_dir()), key=lambda d: d.name):
            obj = SourceObject(name=f"{out_dir.name}.ply", source_path=None, output_dir=out_dir)
            if not obj.meta_path.exists():
                logger.warning(f"Skipping {out_dir}: no meta.json")
                continue
            objects.append(obj)

        logger.info(f"Found {len(objects)} existing source objects in {sog_root}")
        return objects

    def still_images(self, obj: SourceObject) -> List[StillImage]:
        """All attribute still images produced for one object"""
        return [
            StillImage(object_name=obj.name, attribute=attribute_name(p), path=p)
            for p in iter_still_images(obj.output_dir, self.image_ext)
        ]
