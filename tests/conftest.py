"""Shared fixtures for the splat temporal tests."""

import json
import subprocess
import sys
from pathlib import Path

import pytest

_SRC = Path(__file__).resolve().parents[1] / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

from config import PipelineConfig  # noqa: E402


WEBP_BYTES = b"RIFF\x1a\x00\x00\x00WEBPVP8L"


def write_sog(out_dir: Path, attributes, meta_extra=None) -> Path:
    """Write a fake splat-transform output: meta.json plus one WebP per attribute."""
    out_dir.mkdir(parents=True, exist_ok=True)
    meta = {"version": 2, "count": 4}
    for attribute in attributes:
        (out_dir / f"{attribute}.webp").write_bytes(WEBP_BYTES + attribute.encode())
        meta[attribute] = {"files": [f"{attribute}.webp"]}
    meta.update(meta_extra or {})
    meta_path = out_dir / "meta.json"
    meta_path.write_text(json.dumps(meta))
    return meta_path


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        values = {
            "input_dir": tmp_path / "in",
            "output_dir": tmp_path / "out",
            "splat_exec": "splat-transform",
            "fallback": "none",
            "jobs": 1,
        }
        values.update(overrides)
        return PipelineConfig(**values)

    return _make


@pytest.fixture
def input_dir(tmp_path):
    d = tmp_path / "in"
    d.mkdir()
    return d


class FakeTools:
    """Stands in for splat-transform and ffmpeg behind subprocess.run."""

    def __init__(self, attributes=("means", "shN")):
        self.attributes = attributes
        self.per_input = {}
        self.converter_calls = []
        self.ffmpeg_calls = []
        self.failing_inputs = set()
        self.failing_patterns = []

    def __call__(self, cmd, **kwargs):
        if cmd[0] == "ffmpeg":
            return self._ffmpeg(cmd)
        return self._convert(cmd)

    def _convert(self, cmd):
        input_path = Path(cmd[-2])
        meta_path = Path(cmd[-1])
        self.converter_calls.append(cmd)
        if input_path.name in self.failing_inputs:
            return subprocess.CompletedProcess(cmd, 3)
        write_sog(meta_path.parent, self.per_input.get(input_path.name, self.attributes))
        return subprocess.CompletedProcess(cmd, 0)

    def _ffmpeg(self, cmd):
        pattern = cmd[cmd.index("-i") + 1]
        output = Path(cmd[-1])
        frames = sorted(p.name for p in Path(pattern).parent.iterdir() if p.is_file())
        self.ffmpeg_calls.append((pattern, output, frames))
        if any(s in pattern for s in self.failing_patterns):
            return subprocess.CompletedProcess(cmd, 1, stdout=b"", stderr=b"decode error")
        output.write_bytes(b"webm:" + ",".join(frames).encode())
        return subprocess.CompletedProcess(cmd, 0, stdout=b"", stderr=b"")


@pytest.fixture
def fake_tools(monkeypatch):
    tools = FakeTools()
    monkeypatch.setattr(subprocess, "run", tools)
    return tools
