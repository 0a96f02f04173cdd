"""Tests for pipeline configuration."""

import pytest
from pydantic import ValidationError

import config as config_module
from config import PipelineConfig, build_config, default_converter_exec, load_config_file


def test_defaults(tmp_path):
    config = PipelineConfig(input_dir=tmp_path / "in", output_dir=tmp_path / "out")

    assert config.crf == 18
    assert config.gop == 30
    assert config.fps == 30
    assert config.frame_mismatch == "fail"
    assert config.on_converter_error == "abort"
    assert config.fallback == "auto"
    assert config.jobs >= 1
    assert not config.overwrite
    assert not config.videos_only


def test_output_layout(tmp_path):
    config = PipelineConfig(output_dir=tmp_path / "out", videos_only=True)

    assert config.output_dir == (tmp_path / "out").resolve()
    assert config.sog_root == config.output_dir / "sog"
    assert config.sequence_root == config.output_dir / "sequences"
    assert config.manifest_path == config.output_dir / "videos" / "manifest.json"


def test_input_required_for_fresh_runs(tmp_path):
    with pytest.raises(ValidationError, match="Input directory is required"):
        PipelineConfig(output_dir=tmp_path / "out")


def test_output_required(tmp_path):
    with pytest.raises(ValidationError):
        PipelineConfig(input_dir=tmp_path)


@pytest.mark.parametrize("field, value", [
    ("crf", -1),
    ("crf", 64),
    ("gop", 0),
    ("fps", 0),
    ("webp_width", 0),
    ("jobs", 0),
    ("frame_mismatch", "ignore"),
    ("fallback", "magick"),
])
def test_invalid_values(tmp_path, field, value):
    with pytest.raises(ValidationError):
        PipelineConfig(input_dir=tmp_path, output_dir=tmp_path / "out", **{field: value})


def test_converter_args_include_forced_size(tmp_path):
    config = PipelineConfig(
        input_dir=tmp_path,
        output_dir=tmp_path / "out",
        splat_args=["--iterations", "5"],
        webp_width=512,
        webp_height=256,
    )

    assert config.converter_args() == ["--iterations", "5", "--webp-width", "512", "--webp-height", "256"]


def test_default_converter_exec_prefers_vendored(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    assert default_converter_exec() == "splat-transform"

    vendored = tmp_path / "vendor" / "splat-transform" / "bin" / "cli.mjs"
    vendored.parent.mkdir(parents=True)
    vendored.write_text("")
    assert default_converter_exec() == str(vendored.resolve())


def test_load_config_file_drops_unknown_keys(tmp_path, caplog):
    path = tmp_path / "run.yaml"
    path.write_text("output_dir: out\ncrf: 20\ncolour: blue\n")

    values = load_config_file(str(path))

    assert values == {"output_dir": "out", "crf": 20}
    assert "colour" in caplog.text


def test_load_config_file_requires_mapping(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="mapping"):
        load_config_file(str(path))


def test_load_config_file_empty(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text("")
    assert load_config_file(str(path)) == {}


def test_build_config_cli_overrides_file(tmp_path):
    file_values = {"output_dir": str(tmp_path / "out"), "crf": 20, "overwrite": True, "videos_only": True}
    cli_values = {"crf": 10, "overwrite": None, "input_dir": None}

    config = build_config(file_values, cli_values)

    assert config.crf == 10
    assert config.overwrite is True
    assert config.input_dir is None


def test_module_constants():
    assert config_module.STILL_IMAGE_EXT == "webp"
    assert config_module.VIDEO_EXT == "webm"
