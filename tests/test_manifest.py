"""Tests for the manifest rewriter."""

import json

import pytest

from conftest import write_sog
from manifest import RECOGNIZED_ATTRIBUTES, build_entries, load_meta, rewrite_meta, write_manifest
from models import FrameLedger, ManifestEntry, PipelineError, SourceObject


def _meta():
    return {
        "version": 2,
        "count": 100,
        "means": {"mins": [0, 0, 0], "maxs": [1, 1, 1], "files": ["means_l.webp", "means_u.WEBP"]},
        "scales": {"files": ["scales.webp"]},
        "quats": {"files": ["quats.webp"]},
        "sh0": {"files": ["sh0.webp"]},
        "shN": {"count": 64, "files": ["shN_centroids.webp", "shN_labels.webp"]},
        "extra": {"files": ["extra.webp"]},
    }


def test_rewrite_meta_points_recognized_files_at_videos():
    rewritten = rewrite_meta(_meta(), "webp", "webm")

    assert rewritten["means"]["files"] == ["means_l.webm", "means_u.webm"]
    assert rewritten["shN"]["files"] == ["shN_centroids.webm", "shN_labels.webm"]
    for key in RECOGNIZED_ATTRIBUTES:
        for name in rewritten[key]["files"]:
            assert name.endswith(".webm")
            assert not name.lower().endswith(".webp")


def test_rewrite_meta_leaves_everything_else_alone():
    meta = _meta()
    rewritten = rewrite_meta(meta, "webp", "webm")

    assert rewritten["extra"] == {"files": ["extra.webp"]}
    assert rewritten["means"]["mins"] == [0, 0, 0]
    assert rewritten["shN"]["count"] == 64
    assert rewritten["version"] == 2
    # the input is not modified
    assert meta["means"]["files"] == ["means_l.webp", "means_u.WEBP"]


def test_rewrite_meta_tolerates_odd_shapes():
    meta = {"means": "means.webp", "scales": {"files": "scales.webp"}, "quats": {"files": [1, "q.webp"]}}

    rewritten = rewrite_meta(meta, "webp", "webm")

    assert rewritten["means"] == "means.webp"
    assert rewritten["scales"] == {"files": "scales.webp"}
    assert rewritten["quats"]["files"] == [1, "q.webm"]


def test_load_meta_rejects_non_object(tmp_path):
    path = tmp_path / "meta.json"
    path.write_text("[1, 2]")
    with pytest.raises(PipelineError):
        load_meta(path)


def test_build_entries_in_catalog_order(tmp_path):
    objects = []
    for name in ["b", "a", "c"]:
        write_sog(tmp_path / name, ["means"])
        objects.append(SourceObject(name=f"{name}.ply", source_path=None, output_dir=tmp_path / name))
    ledger = FrameLedger(next_frame=2, object_frames={"b.ply": 0, "a.ply": 1})

    entries = build_entries(objects, ledger, "webp", "webm")

    assert [(e.original, e.frame) for e in entries] == [("b.ply", 0), ("a.ply", 1), ("c.ply", None)]
    assert entries[0].meta["means"]["files"] == ["means.webm"]


def test_build_entries_missing_meta(tmp_path):
    obj = SourceObject(name="a.ply", source_path=None, output_dir=tmp_path / "a")
    with pytest.raises(PipelineError, match="Missing meta.json for a.ply"):
        build_entries([obj], FrameLedger(), "webp", "webm")


def test_build_entries_invalid_json(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "meta.json").write_text("{not json")
    obj = SourceObject(name="a.ply", source_path=None, output_dir=tmp_path / "a")
    with pytest.raises(PipelineError, match="Invalid JSON"):
        build_entries([obj], FrameLedger(), "webp", "webm")


def test_write_manifest_document_shape(tmp_path):
    path = tmp_path / "videos" / "manifest.json"
    entries = [
        ManifestEntry(original="a.ply", frame=0, meta={"means": {"files": ["means.webm"]}}),
        ManifestEntry(original="b.ply", frame=None, meta={}),
    ]

    assert write_manifest(entries, path) == path

    data = json.loads(path.read_text())
    assert data == {
        "splats": [
            {"original": "a.ply", "frame": 0, "meta": {"means": {"files": ["means.webm"]}}},
            {"original": "b.ply", "frame": None, "meta": {}},
        ]
    }
    assert not (tmp_path / "videos" / "manifest.json.tmp").exists()
