"""
Manifest Module

Rewrites each source object's meta.json so its attribute files point at the
encoded videos, and writes the manifest mapping every source object to its
frame index.

Manifest format:
{
    "splats": [
        {"original": "a.ply", "frame": 0, "meta": {...}},
        ...
    ]
}
"""

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List

from models import FrameLedger, ManifestEntry, PipelineError, SourceObject


logger = logging.getLogger(__name__)

RECOGNIZED_ATTRIBUTES = ('means', 'scales', 'quats', 'sh0', 'shN')


def rewrite_meta(meta: Dict[str, Any], image_ext: str, video_ext: str) -> Dict[str, Any]:
    """
    Point the attribute file lists of a meta.json at the videos.

    Only the `files` lists of recognized attribute keys are rewritten; the
    input is left untouched.
    """
    rewritten = copy.deepcopy(meta)
    ext_pattern = re.compile(rf"\.{re.escape(image_ext)}$", re.IGNORECASE)

    for key in RECOGNIZED_ATTRIBUTES:
        section = rewritten.get(key)
        if not isinstance(section, dict) or not isinstance(section.get('files'), list):
            continue
        section['files'] = [
            ext_pattern.sub(f".{video_ext}", name) if isinstance(name, str) else name
            for name in section['files']
        ]
    return rewritten


def load_meta(meta_path: Path) -> Dict[str, Any]:
    with open(meta_path, 'r', encoding='utf-8') as f:
        meta = json.load(f)
    if not isinstance(meta, dict):
        raise PipelineError(f"meta.json is not an object: {meta_path}")
    return meta


def build_entries(
    objects: Iterable[SourceObject],
    ledger: FrameLedger,
    image_ext: str,
    video_ext: str
) -> List[ManifestEntry]:
    """One manifest entry per source object, in catalog order"""
    entries = []
    for obj in objects:
        try:
            meta = load_meta(obj.meta_path)
        except FileNotFoundError:
            raise PipelineError(f"Missing meta.json for {obj.name}: {obj.meta_path}")
        except json.JSONDecodeError as e:
            raise PipelineError(f"Invalid JSON in {obj.meta_path}: {e}")

        frame = ledger.frame_for(obj.name)
        if frame is None:
            logger.warning(f"No frame index for {obj.name}; writing null frame")

        entries.append(ManifestEntry(
            original=obj.name,
            frame=frame,
            meta=rewrite_meta(meta, image_ext, video_ext),
        ))
    return entries


def write_manifest(entries: List[ManifestEntry], manifest_path: Path) -> Path:
    """Write the whole manifest at once through a temporary file"""
    manifest_path = Path(manifest_path)
    manifest_path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {'splats': [e.to_dict() for e in entries]}

    tmp = manifest_path.with_name(manifest_path.name + '.tmp')
    with open(tmp, 'w', encoding='utf-8') as f:
        json.dump(manifest, f, indent=2)
        f.write('\n')
    os.replace(tmp, manifest_path)

    logger.info(f"Manifest written to {manifest_path} ({len(entries)} entries)")
    return manifest_path
