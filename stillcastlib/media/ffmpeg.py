#!/usr/bin/env python3

import os
import re
import shutil
import subprocess
import tempfile
import imageio_ffmpeg
from stillcastlib.core import utils

#============================================

FFMPEG_ENV = 'STILLCAST_FFMPEG'
DURATION_PATTERN = re.compile(r"Duration:\s*(\d+:\d+:\d+(?:\.\d+)?)")

#============================================

def find_ffmpeg() -> str:
	"""
	Locate the encoder binary: environment override, PATH, then the
	imageio-ffmpeg bundled binary (fetched on first use).
	"""
	override = os.environ.get(FFMPEG_ENV)
	if override:
		if not os.path.isfile(override):
			raise RuntimeError(f"failed to acquire ffmpeg: {FFMPEG_ENV}={override} not found")
		return override
	on_path = shutil.which('ffmpeg')
	if on_path is not None:
		return on_path
	try:
		exe = imageio_ffmpeg.get_ffmpeg_exe()
	except RuntimeError as exc:
		raise RuntimeError(f"failed to acquire ffmpeg: {exc}")
	if not exe or not os.path.isfile(exe):
		raise RuntimeError("failed to acquire ffmpeg: no bundled binary available")
	return exe

#============================================

def probe_duration(audio_file: str, ffmpeg: str = None) -> float:
	"""
	Read the container duration from the ffmpeg input banner.
	"""
	utils.ensure_file_exists(audio_file)
	if ffmpeg is None:
		ffmpeg = find_ffmpeg()
	args = [ffmpeg, '-hide_banner', '-i', audio_file]
	proc = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
		text=True, errors='replace')
	match = DURATION_PATTERN.search(proc.stderr)
	if match is None:
		raise RuntimeError(f"could not read duration of {audio_file}")
	duration = utils.parse_elapsed(match.group(1))
	if duration <= 0:
		raise RuntimeError(f"audio file has no duration: {audio_file}")
	return duration

#============================================

def concat_list_text(audio_files: list) -> str:
	lines = []
	for audio_file in audio_files:
		path = os.path.abspath(audio_file).replace("'", "'\\''")
		lines.append(f"file '{path}'")
	return "\n".join(lines) + "\n"

#============================================

class ConcatenatedAudio():
	"""
	Scoped lossless concatenation of several audio files into one.

	Use as a context manager; the concat list and the combined file live
	in a private temp directory that is removed on exit, whether or not
	the encode that used them succeeded.
	"""
	def __init__(self, audio_files: list, ffmpeg: str = None,
		cache_dir: str = None, keep_temp: bool = False):
		if len(audio_files) == 0:
			raise RuntimeError("no audio files provided")
		self.audio_files = list(audio_files)
		self.ffmpeg = ffmpeg
		self.cache_dir = cache_dir
		self.keep_temp = keep_temp
		self.temp_dir = None
		self.list_file = None
		self.output_file = None

	#============================
	def __enter__(self) -> str:
		for audio_file in self.audio_files:
			utils.ensure_file_exists(audio_file)
		if self.ffmpeg is None:
			self.ffmpeg = find_ffmpeg()
		if self.cache_dir is not None and not os.path.exists(self.cache_dir):
			os.makedirs(self.cache_dir)
		prefix = f"stillcast-concat-{utils.make_timestamp()}-"
		self.temp_dir = tempfile.mkdtemp(prefix=prefix, dir=self.cache_dir)
		self.list_file = os.path.join(self.temp_dir, "concat_list.txt")
		ext = os.path.splitext(self.audio_files[0])[1] or '.mp3'
		self.output_file = os.path.join(self.temp_dir, f"temp_combined{ext}")
		with open(self.list_file, 'w') as handle:
			handle.write(concat_list_text(self.audio_files))
		args = [self.ffmpeg, '-y', '-f', 'concat', '-safe', '0',
			'-i', self.list_file, '-c', 'copy', self.output_file]
		try:
			returncode = utils.runCmd(args)
			if returncode != 0:
				raise RuntimeError(f"failed to concatenate audio (exit code {returncode})")
			utils.ensure_file_exists(self.output_file)
		except BaseException:
			self.cleanup()
			raise
		return self.output_file

	#============================
	def __exit__(self, exc_type, exc_value, traceback) -> bool:
		self.cleanup()
		return False

	#============================
	def cleanup(self) -> None:
		if self.keep_temp or self.temp_dir is None:
			return
		shutil.rmtree(self.temp_dir, ignore_errors=True)
		self.temp_dir = None
