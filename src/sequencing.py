"""
Sequence Builder Module

This module is responsible for:
1. Assigning every source object one canonical frame index, in catalog order
2. Copying each attribute still image to <sequences>/<attribute>/frame_NNNNN.<ext>
3. Detecting attributes that would land on a different frame than their object

Frame bookkeeping lives in an explicit FrameLedger that is passed in and
returned by every call, so the ordering guarantees do not depend on hidden
counters.
"""

import logging
import shutil
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, List, Tuple

from tqdm import tqdm

from models import (
    FrameIndexMismatchError,
    FrameLedger,
    FrameMismatch,
    FramePlacement,
    SourceObject,
    StillImage,
)


logger = logging.getLogger(__name__)

FRAME_NAME_WIDTH = 5


def frame_file_name(index: int, ext: str) -> str:
    return f"frame_{index:0{FRAME_NAME_WIDTH}d}.{ext}"


def _copy_ledger(ledger: FrameLedger) -> FrameLedger:
    return replace(
        ledger,
        attribute_counters=dict(ledger.attribute_counters),
        object_frames=dict(ledger.object_frames),
        mismatches=list(ledger.mismatches),
    )


class SequenceBuilder:
    """
    Lays out per-attribute frame sequences from source object still images.
    """

    def __init__(self, sequence_root: Path, image_ext: str, mismatch_policy: str = 'fail'):
        """
        Initialize the SequenceBuilder.

        Args:
            sequence_root: Directory receiving one subdirectory per attribute
            image_ext: Still image extension, without the dot
            mismatch_policy: 'fail' to abort after the pass on any frame mismatch,
                'warn' to only report it
        """
        self.sequence_root = Path(sequence_root)
        self.image_ext = image_ext
        self.mismatch_policy = mismatch_policy

    def assign(self, ledger: FrameLedger, object_name: str, attribute: str) -> Tuple[FrameLedger, int]:
        """
        Resolve the frame index of one attribute image.

        The first attribute seen for an object takes the next global frame
        index, which becomes the object's canonical index. Any attribute whose
        own sequence counter disagrees with it is recorded as a mismatch and
        still placed at the canonical index.

        Returns:
            Tuple of (updated ledger, frame index)
        """
        ledger = _copy_ledger(ledger)
        expected = ledger.attribute_counters.get(attribute, 0)

        if object_name not in ledger.object_frames:
            ledger.object_frames[object_name] = ledger.next_frame
            ledger.next_frame += 1
        canonical = ledger.object_frames[object_name]

        if expected != canonical:
            mismatch = FrameMismatch(
                object_name=object_name,
                attribute=attribute,
                expected=canonical,
                observed=expected,
            )
            ledger.mismatches.append(mismatch)
            logger.warning(
                f"Frame index mismatch for {object_name}: attribute '{attribute}' "
                f"saw {expected}, expected {canonical}"
            )

        ledger.attribute_counters[attribute] = canonical + 1
        return ledger, canonical

    def target_path(self, attribute: str, frame_index: int) -> Path:
        return self.sequence_root / attribute / frame_file_name(frame_index, self.image_ext)

    def place_object(
        self,
        ledger: FrameLedger,
        obj: SourceObject,
        images: Iterable[StillImage],
        copy: bool = True
    ) -> Tuple[FrameLedger, List[FramePlacement]]:
        """Assign frames to, and optionally copy, every still image of one object"""
        placements = []
        for image in images:
            ledger, index = self.assign(ledger, obj.name, image.attribute)
            target = self.target_path(image.attribute, index)
            if copy:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(image.path, target)
            placements.append(FramePlacement(
                object_name=obj.name,
                attribute=image.attribute,
                frame_index=index,
                source_path=image.path,
                target_path=target,
            ))
        if not placements:
            logger.warning(f"No still images found for {obj.name} in {obj.output_dir}")
        return ledger, placements

    def build(
        self,
        objects: Iterable[SourceObject],
        list_images: Callable[[SourceObject], List[StillImage]],
        copy: bool = True,
        ledger: FrameLedger = None
    ) -> Tuple[FrameLedger, List[FramePlacement]]:
        """
        Build the sequences for all objects in catalog order.

        Args:
            objects: Source objects in catalog order (may be a lazy iterator)
            list_images: Returns the still images of one object
            copy: If False, only plan frame indices without touching the disk
            ledger: Starting ledger (a fresh one by default)

        Returns:
            Tuple of (final ledger, all placements)
        """
        ledger = ledger or FrameLedger()
        placements: List[FramePlacement] = []

        for obj in tqdm(objects, desc="Building sequences" if copy else "Planning frames"):
            ledger, placed = self.place_object(ledger, obj, list_images(obj), copy=copy)
            placements.extend(placed)

        attributes = sorted({p.attribute for p in placements})
        logger.info(
            f"Assigned {ledger.next_frame} frames across {len(attributes)} attributes: "
            f"{', '.join(attributes) if attributes else 'none'}"
        )
        return ledger, placements

    def index_existing(self, objects: List[SourceObject]) -> FrameLedger:
        """
        Index objects whose sequences are already on disk.

        Frames follow the order of the objects alone; still images are not
        consulted. Sequence directories holding a different number of frames
        than there are objects are reported.
        """
        ledger = FrameLedger(
            next_frame=len(objects),
            object_frames={obj.name: i for i, obj in enumerate(objects)},
        )

        if self.sequence_root.exists():
            for seq_dir in sorted(p for p in self.sequence_root.iterdir() if p.is_dir()):
                count = len(list(seq_dir.glob(f"frame_*.{self.image_ext}")))
                if count != len(objects):
                    logger.warning(
                        f"Sequence {seq_dir.name} holds {count} frames but {len(objects)} "
                        f"objects were found in sog/; videos may not line up with the manifest"
                    )

        logger.info(f"Indexed {len(objects)} objects against existing sequences")
        return ledger

    def check_mismatches(self, ledger: FrameLedger) -> None:
        """Report frame mismatches prominently; raise under the 'fail' policy"""
        if not ledger.mismatches:
            return

        logger.warning("=" * 80)
        logger.warning(
            f"{len(ledger.mismatches)} frame index mismatch(es) detected; "
            "attribute videos may be desynchronized"
        )
        for m in ledger.mismatches:
            logger.warning(f"  {m.object_name} [{m.attribute}]: saw {m.observed}, expected {m.expected}")
        logger.warning("=" * 80)

        if self.mismatch_policy == 'fail':
            raise FrameIndexMismatchError(
                f"{len(ledger.mismatches)} frame index mismatch(es); sequences left in "
                f"{self.sequence_root} for inspection (use --frame-mismatch warn to continue)"
            )
