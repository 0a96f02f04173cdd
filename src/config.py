"""
Pipeline Configuration

Holds every option recognized by the pipeline, validated with pydantic.
Values can come from a YAML file (keys are field names) and from the
command line, which takes precedence.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


logger = logging.getLogger(__name__)

STILL_IMAGE_EXT = 'webp'
VIDEO_EXT = 'webm'
MANIFEST_NAME = 'manifest.json'


def default_converter_exec() -> str:
    """Prefer a vendored splat-transform checkout, else rely on PATH"""
    local_path = Path('vendor') / 'splat-transform' / 'bin' / 'cli.mjs'
    if local_path.exists():
        return str(local_path.resolve())
    return 'splat-transform'


class PipelineConfig(BaseModel):
    """All knobs of one pipeline run"""

    input_dir: Optional[Path] = None
    output_dir: Path
    splat_exec: str = Field(default_factory=default_converter_exec)
    splat_args: List[str] = Field(default_factory=list)
    webp_width: Optional[int] = Field(default=None, gt=0)
    webp_height: Optional[int] = Field(default=None, gt=0)
    crf: int = Field(default=18, ge=0, le=63)
    gop: int = Field(default=30, gt=0)
    fps: float = Field(default=30, gt=0)
    overwrite: bool = False
    videos_only: bool = False
    frame_mismatch: Literal['fail', 'warn'] = 'fail'
    on_converter_error: Literal['abort', 'skip'] = 'abort'
    fallback: Literal['auto', 'dwebp', 'opencv', 'none'] = 'auto'
    jobs: int = Field(default_factory=lambda: os.cpu_count() or 1, gt=0)
    verify: bool = False
    ffmpeg: str = 'ffmpeg'

    @field_validator('input_dir', 'output_dir')
    @classmethod
    def _resolve(cls, value: Optional[Path]) -> Optional[Path]:
        if value is None:
            return None
        return Path(value).expanduser().resolve()

    @model_validator(mode='after')
    def _check_input(self) -> 'PipelineConfig':
        if not self.videos_only and self.input_dir is None:
            raise ValueError('Input directory is required unless videos_only is set')
        return self

    # Output layout
    @property
    def sog_root(self) -> Path:
        return self.output_dir / 'sog'

    @property
    def sequence_root(self) -> Path:
        return self.output_dir / 'sequences'

    @property
    def video_root(self) -> Path:
        return self.output_dir / 'videos'

    @property
    def manifest_path(self) -> Path:
        return self.video_root / MANIFEST_NAME

    def converter_args(self) -> List[str]:
        """Extra converter arguments plus the forced WebP size, if any"""
        args = list(self.splat_args)
        if self.webp_width is not None:
            args += ['--webp-width', str(self.webp_width)]
        if self.webp_height is not None:
            args += ['--webp-height', str(self.webp_height)]
        return args


def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load pipeline options from a YAML file.

    Args:
        config_path: Path to a YAML mapping keyed by PipelineConfig field names

    Returns:
        Dictionary of raw option values
    """
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    unknown = set(data) - set(PipelineConfig.model_fields)
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {config_path}: {', '.join(sorted(unknown))}")
        data = {k: v for k, v in data.items() if k not in unknown}

    return data


def build_config(file_values: Dict[str, Any], cli_values: Dict[str, Any]) -> PipelineConfig:
    """Merge CLI values over file values; None on the CLI means 'not given'"""
    merged = dict(file_values)
    merged.update({k: v for k, v in cli_values.items() if v is not None})
    return PipelineConfig(**merged)
