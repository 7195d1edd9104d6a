#!/usr/bin/env python3

"""
Tests for project sessions and the flat file-list path.
"""

# Standard Library
import os
import sys

# PIP3 modules
import PIL.Image
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from stillcastlib import placeholder
from stillcastlib.core import project as project_module
from stillcastlib.core.project import StillcastProject
from stillcastlib.core.project import plan_flat_session
from stillcastlib.core.session import SessionBuilder
from stillcastlib.core.supervisor import DiagnosticsSink
from stillcastlib.core.timeline import Clip
from stillcastlib.core.timeline import Timeline
from stillcastlib.core.timeline import Track
from stillcastlib.media import ffmpeg as ffmpeg_media

#============================================

def _write_project(tmp_path, lines: list) -> str:
	yaml_path = tmp_path / "show.stillcast.yaml"
	yaml_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
	return str(yaml_path)

#============================================

def test_flat_list_matches_single_clip_timeline(tmp_path) -> None:
	"""
	Ensure a back-to-back file list compiles like one clip over [0, total).
	"""
	combined = str(tmp_path / "temp_combined.mp3")
	flat = plan_flat_session("img.png", ["a.mp3", "b.mp3"], durations=[4, 6],
		music_file="m.mp3", music_volume=40, main_volume=90,
		output_dir=str(tmp_path), ffmpeg="ffmpeg", combined_file=combined)
	timeline = Timeline([Track([Clip(combined, 0, 10, trim_in=0, trim_out=10)])])
	direct = SessionBuilder(ffmpeg="ffmpeg").build("img.png", timeline,
		music_file="m.mp3", music_volume=40, main_volume=90,
		output_dir=str(tmp_path))
	assert flat.graph.text == direct.graph.text
	assert flat.args == direct.args
	assert flat.total_duration == pytest.approx(10.0)

#============================================

def test_flat_single_file_reads_source_directly(tmp_path) -> None:
	audio = str(tmp_path / "talk.mp3")
	session = plan_flat_session("img.png", [audio], durations=[12.5],
		ffmpeg="ffmpeg")
	assert session.inputs == ["img.png", audio]
	assert session.output_file == str(tmp_path / "output.mp4")
	assert "atrim=start=0:end=12.5," in session.graph.text

#============================================

def test_flat_durations_must_match_files() -> None:
	with pytest.raises(RuntimeError, match="durations"):
		plan_flat_session("img.png", ["/x/a.mp3", "/x/b.mp3"], durations=[3],
			ffmpeg="ffmpeg")

#============================================

def test_flat_empty_list_is_rejected() -> None:
	with pytest.raises(RuntimeError, match="no audio files"):
		project_module.convert_to_video("img.png", [], ffmpeg="ffmpeg")

#============================================

def test_flat_measures_missing_durations(tmp_path, monkeypatch) -> None:
	"""
	Ensure durations are read from the files when the caller does not know them.
	"""
	measured = []

	def fake_duration(audio_file, ffmpeg=None):
		measured.append(audio_file)
		return 7.0

	monkeypatch.setattr(ffmpeg_media, "probe_duration", fake_duration)
	session = plan_flat_session("img.png", ["/x/a.mp3", "/x/b.mp3"],
		ffmpeg="ffmpeg", output_dir=str(tmp_path))
	assert measured == ["/x/a.mp3", "/x/b.mp3"]
	assert session.total_duration == pytest.approx(14.0)

#============================================

def test_project_dry_run_with_placeholder(tmp_path, capsys) -> None:
	"""
	Ensure a background color project validates and cleans up its image.
	"""
	yaml_path = _write_project(tmp_path, [
		"stillcast: 1",
		"background: {color: '#336699'}",
		"resolution: [320, 180]",
		"tracks:",
		"  - clips:",
		"      - {source: voice.mp3, start: 1, duration: 4}",
	])
	project = StillcastProject(yaml_path, dry_run=True, ffmpeg="ffmpeg")
	session = project.validate()
	image_file = session.image_file
	assert os.path.isfile(image_file)
	with PIL.Image.open(image_file) as image:
		assert image.size == (320, 180)
		assert image.getpixel((0, 0)) == (0x33, 0x66, 0x99)
	assert "scale=320:180" in session.video_filter
	assert project.run() is None
	captured = capsys.readouterr()
	assert "dry run: validation complete" in captured.out
	assert "-filter_complex" in captured.out
	assert not os.path.exists(image_file)

#============================================

def test_project_plan_lists_inputs(tmp_path) -> None:
	yaml_path = _write_project(tmp_path, [
		"stillcast: 1",
		"image: cover.png",
		"music: {file: bed.mp3, volume: 20}",
		"tracks:",
		"  - clips:",
		"      - {source: a.mp3, duration: 3}",
		"      - {source: b.mp3, start: 3, duration: 2}",
	])
	plan = StillcastProject(yaml_path, ffmpeg="ffmpeg").plan()
	base = str(tmp_path)
	assert plan['inputs'] == [
		os.path.join(base, "cover.png"),
		os.path.join(base, "bed.mp3"),
		os.path.join(base, "a.mp3"),
		os.path.join(base, "b.mp3"),
	]
	assert plan['output_label'] == "final"
	assert plan['output'] == os.path.join(base, "output.mp4")
	assert plan['args'][-1] == plan['output']

#============================================

def test_project_with_no_clips_has_no_side_effects(tmp_path, monkeypatch) -> None:
	"""
	Ensure an empty timeline fails before a placeholder or encoder exists.
	"""
	made = []
	monkeypatch.setattr(placeholder, "make_placeholder_image",
		lambda *args, **kwargs: made.append(args))
	yaml_path = _write_project(tmp_path, [
		"stillcast: 1",
		"background: {color: black}",
		"tracks:",
		"  - clips: []",
	])
	cache_dir = tmp_path / "cache"
	project = StillcastProject(yaml_path, cache_dir=str(cache_dir), ffmpeg="ffmpeg")
	with pytest.raises(RuntimeError, match="no audio clips"):
		project.validate()
	assert made == []
	assert not cache_dir.exists()

#============================================

def test_parse_color_values() -> None:
	assert placeholder.parse_color("#ff0000") == (255, 0, 0)
	assert placeholder.parse_color([1, 2, 3]) == (1, 2, 3)
	assert placeholder.parse_color(None) == (0, 0, 0)
	with pytest.raises(RuntimeError):
		placeholder.parse_color("not-a-color")

#============================================

FAKE_ENCODER = """
import sys
output_file = sys.argv[-1]
with open(output_file, "w") as handle:
	handle.write(" ".join(sys.argv[1:]))
sys.stdout.write("out_time=00:00:03.000000\\n")
sys.stdout.write("progress=end\\n")
"""

#============================================

def test_convert_timeline_with_fake_encoder(tmp_path) -> None:
	"""
	Ensure the timeline entry point runs the encoder and returns the output.
	"""
	encoder = tmp_path / "fake-ffmpeg"
	encoder.write_text(f"#!{sys.executable}\n" + FAKE_ENCODER, encoding="utf-8")
	encoder.chmod(0o755)
	timeline = Timeline([Track([Clip(str(tmp_path / "a.mp3"), 0, 3)])])
	samples = []
	output_file = project_module.convert_timeline_to_video("img.png", timeline,
		output_name="done", on_progress=samples.append,
		diagnostics=DiagnosticsSink(echo=False), ffmpeg=str(encoder))
	assert output_file == str(tmp_path / "done.mp4")
	with open(output_file, "r") as handle:
		recorded = handle.read()
	assert "-filter_complex" in recorded
	assert samples[-1].progress == 100.0
