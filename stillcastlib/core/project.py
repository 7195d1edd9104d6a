#!/usr/bin/env python3

import os
import shutil
import tempfile
from stillcastlib import placeholder
from stillcastlib.core import utils
from stillcastlib.core.loader import ProjectLoader
from stillcastlib.core.session import EncodeSession
from stillcastlib.core.session import SessionBuilder
from stillcastlib.core.session import source_directory
from stillcastlib.core.supervisor import EncodeSupervisor
from stillcastlib.core.timeline import Timeline
from stillcastlib.media import ffmpeg as ffmpeg_media

#============================================

def convert_timeline_to_video(image_file: str, timeline: Timeline,
	fit_mode: str = 'cover', music_file: str = None, music_volume=30,
	main_volume=100, output_dir: str = None, output_name: str = None,
	on_progress=None, diagnostics=None, cancel_token=None,
	ffmpeg: str = None, width: int = 1280, height: int = 720) -> str:
	"""
	Encode a multi-track timeline over a still image.

	Returns the output file path. on_progress receives ProgressSample
	objects while the encoder runs.
	"""
	builder = SessionBuilder(ffmpeg=ffmpeg, width=width, height=height)
	session = builder.build(image_file, timeline, fit_mode=fit_mode,
		music_file=music_file, music_volume=music_volume,
		main_volume=main_volume, output_dir=output_dir,
		output_name=output_name)
	supervisor = EncodeSupervisor(session, on_progress=on_progress,
		diagnostics=diagnostics, cancel_token=cancel_token)
	return supervisor.run()

#============================================

def _flat_output_dir(audio_files: list, output_dir: str) -> str:
	if len(audio_files) == 0:
		raise RuntimeError("no audio files provided")
	if output_dir is not None:
		return output_dir
	return source_directory(audio_files[0])

#============================================

def _flat_total(audio_files: list, durations: list, ffmpeg: str) -> float:
	if durations is not None:
		if len(durations) != len(audio_files):
			raise RuntimeError("durations must match the audio file list")
		return float(sum(float(value) for value in durations))
	total = 0.0
	for audio_file in audio_files:
		total += ffmpeg_media.probe_duration(audio_file, ffmpeg)
	return total

#============================================

def plan_flat_session(image_file: str, audio_files: list,
	fit_mode: str = 'cover', music_file: str = None, music_volume=30,
	main_volume=100, durations: list = None, output_dir: str = None,
	output_name: str = None, ffmpeg: str = None, width: int = 1280,
	height: int = 720, combined_file: str = None) -> EncodeSession:
	"""
	Build the flat file-list session without concatenating anything.

	With several files the session reads combined_file, which the caller
	is expected to create by concatenation.
	"""
	output_dir = _flat_output_dir(audio_files, output_dir)
	if ffmpeg is None:
		ffmpeg = ffmpeg_media.find_ffmpeg()
	audio_file = audio_files[0]
	if len(audio_files) > 1:
		if combined_file is None:
			ext = os.path.splitext(audio_files[0])[1] or '.mp3'
			combined_file = os.path.join(tempfile.gettempdir(), f"temp_combined{ext}")
		audio_file = combined_file
	total = _flat_total(audio_files, durations, ffmpeg)
	builder = SessionBuilder(ffmpeg=ffmpeg, width=width, height=height)
	return builder.build_flat(image_file, audio_file, total, fit_mode=fit_mode,
		music_file=music_file, music_volume=music_volume,
		main_volume=main_volume, output_dir=output_dir,
		output_name=output_name)

#============================================

def convert_to_video(image_file: str, audio_files: list,
	fit_mode: str = 'cover', music_file: str = None, music_volume=30,
	main_volume=100, durations: list = None, output_dir: str = None,
	output_name: str = None, on_progress=None, diagnostics=None,
	cancel_token=None, ffmpeg: str = None, cache_dir: str = None,
	keep_temp: bool = False, width: int = 1280, height: int = 720) -> str:
	"""
	Encode a flat list of whole audio files, played back to back.
	"""
	output_dir = _flat_output_dir(audio_files, output_dir)
	if ffmpeg is None:
		ffmpeg = ffmpeg_media.find_ffmpeg()
	options = {
		'fit_mode': fit_mode,
		'music_file': music_file,
		'music_volume': music_volume,
		'main_volume': main_volume,
		'durations': durations,
		'output_dir': output_dir,
		'output_name': output_name,
		'ffmpeg': ffmpeg,
		'width': width,
		'height': height,
	}
	if len(audio_files) == 1:
		session = plan_flat_session(image_file, audio_files, **options)
		supervisor = EncodeSupervisor(session, on_progress=on_progress,
			diagnostics=diagnostics, cancel_token=cancel_token)
		return supervisor.run()
	concat = ffmpeg_media.ConcatenatedAudio(audio_files, ffmpeg=ffmpeg,
		cache_dir=cache_dir, keep_temp=keep_temp)
	with concat as combined_file:
		if durations is None:
			options['durations'] = [ffmpeg_media.probe_duration(combined_file, ffmpeg)]
			session = plan_flat_session(image_file, [combined_file], **options)
		else:
			session = plan_flat_session(image_file, audio_files,
				combined_file=combined_file, **options)
		supervisor = EncodeSupervisor(session, on_progress=on_progress,
			diagnostics=diagnostics, cancel_token=cancel_token)
		return supervisor.run()

#============================================

class StillcastProject():
	"""
	A project yaml file turned into one encode session.
	"""
	def __init__(self, yaml_file: str, output_override: str = None,
		dry_run: bool = False, keep_temp: bool = False, cache_dir: str = None,
		ffmpeg: str = None):
		loader = ProjectLoader(yaml_file, output_override=output_override)
		self._project = loader.load()
		self.yaml_file = yaml_file
		self.dry_run = dry_run
		self.keep_temp = keep_temp
		self.cache_dir = cache_dir
		self.cache_dir_created = False
		self.ffmpeg = ffmpeg
		self.session = None
		self.supervisor = None
		self.data = self._project.data
		self.timeline = self._project.timeline
		self.fit_mode = self._project.fit_mode

	#============================
	def validate(self) -> EncodeSession:
		if self.session is None:
			try:
				self.session = self._build_session()
			except RuntimeError:
				self.cleanup()
				raise
		return self.session

	#============================
	def plan(self) -> dict:
		session = self.validate()
		plan = session.describe()
		plan['args'] = list(session.args)
		return plan

	#============================
	def run(self, on_progress=None, diagnostics=None, cancel_token=None) -> str:
		session = self.validate()
		if self.dry_run:
			if not utils.is_quiet_mode():
				print("dry run: validation complete")
				print(session.command_text())
			self.cleanup()
			return None
		self.supervisor = EncodeSupervisor(session, on_progress=on_progress,
			diagnostics=diagnostics, cancel_token=cancel_token)
		try:
			output_file = self.supervisor.run()
		finally:
			self.cleanup()
		if not utils.is_quiet_mode():
			print(f"mpv {output_file}")
		return output_file

	#============================
	def cleanup(self) -> None:
		if not self.keep_temp and self.cache_dir_created:
			shutil.rmtree(self.cache_dir, ignore_errors=True)
			self.cache_dir_created = False

	#============================
	def _build_session(self) -> EncodeSession:
		project = self._project
		width, height = project.resolution
		if project.timeline.clip_count() == 0:
			raise RuntimeError("no audio clips in timeline")
		image_file = project.image_file
		if image_file is None:
			image_file = self._make_placeholder(project.background_color,
				width, height)
		builder = SessionBuilder(ffmpeg=self.ffmpeg, width=width, height=height)
		return builder.build(image_file, project.timeline,
			fit_mode=project.fit_mode, music_file=project.music_file,
			music_volume=project.music_volume, main_volume=project.main_volume,
			output_dir=project.output_dir, output_name=project.output_name)

	#============================
	def _make_placeholder(self, color, width: int, height: int) -> str:
		if self.cache_dir is None:
			self.cache_dir = tempfile.mkdtemp(prefix="stillcast-run-")
			self.cache_dir_created = True
		elif not os.path.exists(self.cache_dir):
			os.makedirs(self.cache_dir)
		image_file = os.path.join(self.cache_dir,
			f"{utils.make_timestamp()}-background.png")
		return placeholder.make_placeholder_image(color, image_file, width, height)
