"""
Shared data models for the splat temporal pipeline.

This module contains dataclasses, enums and exceptions used across
the catalog, sequencing, encoder and manifest stages, kept here to
avoid circular imports between them.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class PipelineError(RuntimeError):
    """Fatal error that aborts the whole run"""


class ConverterError(PipelineError):
    """The external point cloud converter failed for one input"""

    def __init__(self, object_name: str, message: str, returncode: Optional[int] = None):
        self.object_name = object_name
        self.returncode = returncode
        super().__init__(f"{object_name}: {message}")


class FrameIndexMismatchError(PipelineError):
    """Attributes of one source object resolved to different frame indices"""


class EncodeError(PipelineError):
    """An attribute sequence could not be encoded"""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class SequenceGapError(EncodeError):
    """A sequence directory is not numbered 0..N-1 without holes"""


class TranscodeError(EncodeError):
    """A frame could not be transcoded on the fallback path"""


@dataclass(frozen=True)
class SourceObject:
    """One converted input (one point cloud)"""
    name: str  # original identifier, e.g. "frame_001.ply"
    source_path: Optional[Path]  # None when rebuilt from an existing sog/ tree
    output_dir: Path

    @property
    def meta_path(self) -> Path:
        return self.output_dir / 'meta.json'


@dataclass(frozen=True)
class StillImage:
    """A per-attribute still image produced for one source object"""
    object_name: str
    attribute: str
    path: Path


@dataclass(frozen=True)
class FramePlacement:
    """Where a still image lands inside its attribute sequence"""
    object_name: str
    attribute: str
    frame_index: int
    source_path: Path
    target_path: Path


@dataclass(frozen=True)
class FrameMismatch:
    """An attribute that would have landed on a different frame than its object"""
    object_name: str
    attribute: str
    expected: int
    observed: int


@dataclass
class FrameLedger:
    """
    Frame index bookkeeping for one run.

    `attribute_counters` maps an attribute name to the next frame index its
    sequence expects; `object_frames` maps a source object to its canonical
    frame index. Only the sequence builder updates a ledger.
    """
    next_frame: int = 0
    attribute_counters: Dict[str, int] = field(default_factory=dict)
    object_frames: Dict[str, int] = field(default_factory=dict)
    mismatches: List[FrameMismatch] = field(default_factory=list)

    def frame_for(self, object_name: str) -> Optional[int]:
        return self.object_frames.get(object_name)


class EncodeState(Enum):
    PENDING = 'pending'
    PRIMARY_ATTEMPT = 'primary_attempt'
    FALLBACK_ATTEMPT = 'fallback_attempt'
    SUCCESS = 'success'
    FAILED = 'failed'
    SKIPPED = 'skipped'


# Allowed transitions of the per-sequence encode state machine
ENCODE_TRANSITIONS = {
    EncodeState.PENDING: {EncodeState.PRIMARY_ATTEMPT, EncodeState.SKIPPED, EncodeState.FAILED},
    EncodeState.PRIMARY_ATTEMPT: {EncodeState.SUCCESS, EncodeState.FALLBACK_ATTEMPT, EncodeState.FAILED},
    EncodeState.FALLBACK_ATTEMPT: {EncodeState.SUCCESS, EncodeState.FAILED},
    EncodeState.SUCCESS: {EncodeState.FAILED},  # verification can still reject a video
    EncodeState.FAILED: set(),
    EncodeState.SKIPPED: set(),
}


@dataclass
class EncodeResult:
    """Outcome of encoding one attribute sequence"""
    attribute: str
    sequence_dir: Path
    output_path: Path
    state: EncodeState = EncodeState.PENDING
    history: List[EncodeState] = field(default_factory=lambda: [EncodeState.PENDING])
    frame_count: int = 0
    used_fallback: bool = False
    error: Optional[Exception] = None

    def transition(self, new_state: EncodeState) -> None:
        if new_state not in ENCODE_TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid encode transition for {self.attribute}: "
                f"{self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    @property
    def succeeded(self) -> bool:
        return self.state is EncodeState.SUCCESS

    @property
    def failed(self) -> bool:
        return self.state is EncodeState.FAILED


@dataclass
class ManifestEntry:
    """One source object in the final manifest"""
    original: str
    frame: Optional[int]
    meta: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original': self.original,
            'frame': self.frame,
            'meta': self.meta,
        }
