#!/usr/bin/env python3

import os
from stillcastlib.core import utils
from stillcastlib.core import filtergraph
from stillcastlib.core.inputs import resolve_inputs
from stillcastlib.core.timeline import Clip
from stillcastlib.core.timeline import Timeline
from stillcastlib.core.timeline import Track
from stillcastlib.media.ffmpeg import find_ffmpeg

#============================================

FIT_MODES = ('cover', 'contain', 'repeat', 'center')
DEFAULT_FIT_MODE = 'cover'
DEFAULT_OUTPUT_NAME = 'output.mp4'
DEFAULT_WIDTH = 1280
DEFAULT_HEIGHT = 720

VIDEO_CODEC = 'libx264'
AUDIO_CODEC = 'aac'
AUDIO_BITRATE = '192k'
PIXEL_FORMAT = 'yuv420p'

#============================================

def video_filter(fit_mode: str, width: int = DEFAULT_WIDTH,
	height: int = DEFAULT_HEIGHT) -> str:
	size = f"{width}:{height}"
	if fit_mode == 'contain' or fit_mode == 'center':
		return (
			f"scale={size}:force_original_aspect_ratio=decrease,"
			f"pad={size}:(ow-iw)/2:(oh-ih)/2"
		)
	if fit_mode == 'repeat':
		return "tile=2x2"
	# cover, and anything unrecognized
	return f"scale={size}:force_original_aspect_ratio=increase,crop={size}"

#============================================

def normalize_fit_mode(fit_mode: str) -> str:
	if fit_mode is None:
		return DEFAULT_FIT_MODE
	value = str(fit_mode).strip().lower()
	if value not in FIT_MODES:
		return DEFAULT_FIT_MODE
	return value

#============================================

def percent_to_gain(percent, name: str) -> float:
	if isinstance(percent, bool):
		raise RuntimeError(f"{name} must be a number from 0 to 100")
	try:
		value = float(percent)
	except (TypeError, ValueError):
		raise RuntimeError(f"{name} must be a number from 0 to 100")
	if value < 0 or value > 100:
		raise RuntimeError(f"{name} must be a number from 0 to 100")
	return value / 100.0

#============================================

def resolve_output_path(timeline: Timeline, output_dir: str = None,
	output_name: str = None) -> str:
	if output_name:
		filename = utils.sanitize_filename(output_name)
	else:
		filename = DEFAULT_OUTPUT_NAME
	if output_dir is None:
		first_clip = timeline.first_clip()
		if first_clip is None:
			raise RuntimeError("no audio clips in timeline")
		output_dir = source_directory(first_clip.source_file)
	return os.path.join(output_dir, filename)

#============================================

def source_directory(source: str) -> str:
	output_dir = os.path.dirname(source)
	if source == '' or os.path.abspath(output_dir) == os.path.abspath(source):
		raise RuntimeError(f"could not determine audio directory for {source!r}")
	return output_dir

#============================================

def flat_timeline(audio_file: str, total_duration: float) -> Timeline:
	"""
	One clip spanning a whole audio file, for the flat file-list path.
	"""
	clip = Clip(audio_file, start_time=0.0, duration=total_duration,
		trim_in=0.0, trim_out=total_duration)
	return Timeline([Track([clip], volume=1.0)])

#============================================

class EncodeSession():
	def __init__(self):
		self.ffmpeg = None
		self.image_file = None
		self.timeline = None
		self.fit_mode = DEFAULT_FIT_MODE
		self.music_file = None
		self.music_gain = None
		self.main_gain = 1.0
		self.output_file = None
		self.inputs = []
		self.graph = None
		self.video_filter = None
		self.args = []
		self.total_duration = 0.0

	#============================
	@property
	def has_music(self) -> bool:
		return self.music_file is not None

	#============================
	def command_text(self) -> str:
		return utils.format_command(self.args)

	#============================
	def describe(self) -> dict:
		return {
			'inputs': list(self.inputs),
			'filter_complex': self.graph.text if self.graph else '',
			'output_label': self.graph.output_label if self.graph else None,
			'video_filter': self.video_filter,
			'fit_mode': self.fit_mode,
			'background_music': self.has_music,
			'total_duration': self.total_duration,
			'output': self.output_file,
		}

#============================================

class SessionBuilder():
	def __init__(self, ffmpeg: str = None, width: int = DEFAULT_WIDTH,
		height: int = DEFAULT_HEIGHT):
		self.ffmpeg = ffmpeg
		self.width = int(width)
		self.height = int(height)

	#============================
	def build(self, image_file: str, timeline: Timeline,
		fit_mode: str = DEFAULT_FIT_MODE, music_file: str = None,
		music_volume=30, main_volume=100, output_dir: str = None,
		output_name: str = None) -> EncodeSession:
		"""
		Assemble the full encoder invocation for a timeline.

		Validation runs before the encoder binary is looked up, so a bad
		timeline never starts a process.
		"""
		if image_file is None or image_file == '':
			raise RuntimeError("background image is required")
		if timeline.clip_count() == 0:
			raise RuntimeError("no audio clips in timeline")
		main_gain = percent_to_gain(main_volume, "main audio volume")
		music_gain = None
		if music_file is not None:
			music_gain = percent_to_gain(music_volume, "background music volume")
		output_file = resolve_output_path(timeline, output_dir, output_name)

		slots = resolve_inputs(timeline, music_file is not None)
		graph = filtergraph.compile_graph(timeline.flatten(), slots, main_gain,
			music_gain)

		session = EncodeSession()
		session.ffmpeg = self._ffmpeg()
		session.image_file = image_file
		session.timeline = timeline
		session.fit_mode = normalize_fit_mode(fit_mode)
		session.music_file = music_file
		session.music_gain = music_gain
		session.main_gain = main_gain
		session.output_file = output_file
		session.inputs = [image_file]
		if music_file is not None:
			session.inputs.append(music_file)
		session.inputs.extend(slots.unique_sources)
		session.graph = graph
		session.video_filter = video_filter(session.fit_mode, self.width,
			self.height)
		session.total_duration = timeline.total_duration()
		session.args = self._build_args(session)
		return session

	#============================
	def build_flat(self, image_file: str, audio_file: str,
		total_duration: float, fit_mode: str = DEFAULT_FIT_MODE,
		music_file: str = None, music_volume=30, main_volume=100,
		output_dir: str = None, output_name: str = None) -> EncodeSession:
		timeline = flat_timeline(audio_file, total_duration)
		return self.build(image_file, timeline, fit_mode=fit_mode,
			music_file=music_file, music_volume=music_volume,
			main_volume=main_volume, output_dir=output_dir,
			output_name=output_name)

	#============================
	def _ffmpeg(self) -> str:
		if self.ffmpeg is None:
			self.ffmpeg = find_ffmpeg()
		return self.ffmpeg

	#============================
	def _build_args(self, session: EncodeSession) -> list:
		args = [session.ffmpeg, '-y']
		args += ['-loop', '1', '-i', session.image_file]
		for input_file in session.inputs[1:]:
			args += ['-i', input_file]
		args += ['-filter_complex', session.graph.text]
		args += ['-vf', session.video_filter]
		args += ['-map', '0:v']
		args += ['-map', session.graph.map_target()]
		args += ['-c:v', VIDEO_CODEC, '-tune', 'stillimage']
		args += ['-c:a', AUDIO_CODEC, '-b:a', AUDIO_BITRATE]
		args += ['-pix_fmt', PIXEL_FORMAT]
		args += ['-shortest']
		args += ['-progress', 'pipe:1']
		args.append(session.output_file)
		return args
