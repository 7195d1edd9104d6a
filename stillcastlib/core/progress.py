#!/usr/bin/env python3

import threading
from stillcastlib.core import utils

#============================================

STDOUT = 'stdout'
STDERR = 'stderr'

#============================================

class ProgressSample():
	def __init__(self, frame: int = 0, fps: float = 0.0, time: str = "",
		progress: float = 0.0):
		self.frame = frame
		self.fps = fps
		self.time = time
		self.progress = progress

	#============================
	def __repr__(self) -> str:
		return (
			f"ProgressSample(frame={self.frame}, fps={self.fps}, "
			f"time={self.time!r}, progress={self.progress:.2f})"
		)

	#============================
	def to_dict(self) -> dict:
		return {
			'frame': self.frame,
			'fps': self.fps,
			'time': self.time,
			'progress': self.progress,
		}

#============================================

class ProgressLine():
	"""One key=value line from the encoder progress stream."""
	def __init__(self, key: str, value: str):
		self.key = key
		self.value = value

#============================================

class DiagnosticLine():
	"""Free text the encoder wrote to its log stream."""
	def __init__(self, text: str):
		self.text = text

#============================================

class Unrecognized():
	def __init__(self, text: str):
		self.text = text

#============================================

def decode_line(line: str, stream: str):
	text = line.rstrip('\r\n')
	if text.strip() == '':
		return Unrecognized(text)
	if stream == STDERR:
		return DiagnosticLine(text)
	if '=' not in text:
		return Unrecognized(text)
	key, value = text.split('=', 1)
	key = key.strip()
	if key == '' or ' ' in key:
		return Unrecognized(text)
	return ProgressLine(key, value.strip())

#============================================

def percent_complete(elapsed_seconds: float, total_seconds: float) -> float:
	if total_seconds <= 0:
		return 0.0
	percent = elapsed_seconds / total_seconds * 100.0
	if percent < 0:
		return 0.0
	return min(100.0, percent)

#============================================

def _parse_int(value: str) -> int:
	try:
		return max(0, int(float(value)))
	except (ValueError, OverflowError):
		return 0

#============================================

def _parse_float(value: str) -> float:
	try:
		return float(value)
	except ValueError:
		return 0.0

#============================================

class ProgressAccumulator():
	"""
	Collects key=value fields until the block-ending 'progress' key,
	then turns them into a ProgressSample.
	"""
	def __init__(self, total_seconds: float):
		self.total_seconds = float(total_seconds)
		self.fields = {}
		self.finished = False

	#============================
	def feed(self, line: ProgressLine):
		if line.key != 'progress':
			self.fields[line.key] = line.value
			return None
		if line.value == 'end':
			self.finished = True
		sample = self._make_sample()
		self.fields = {}
		return sample

	#============================
	def _make_sample(self) -> ProgressSample:
		time_text = self.fields.get('out_time', '')
		elapsed = utils.parse_elapsed(time_text)
		return ProgressSample(
			frame=_parse_int(self.fields.get('frame', '0')),
			fps=_parse_float(self.fields.get('fps', '0')),
			time=time_text,
			progress=percent_complete(elapsed, self.total_seconds),
		)

#============================================

class ProgressChannel():
	"""
	Latest-wins delivery of progress samples to a consumer callback.

	publish() never blocks on the consumer. A dispatcher thread hands the
	most recent pending sample to the callback, so a slow consumer sees
	fewer samples instead of slowing down the encoder reader.
	"""
	def __init__(self, callback, diagnostics=None):
		self.callback = callback
		self.diagnostics = diagnostics
		self._pending = None
		self._closed = False
		self._condition = threading.Condition()
		self._thread = None
		if self.callback is not None:
			self._thread = threading.Thread(target=self._dispatch, daemon=True)
			self._thread.start()

	#============================
	def publish(self, sample: ProgressSample) -> None:
		if self.callback is None:
			return
		with self._condition:
			self._pending = sample
			self._condition.notify()

	#============================
	def close(self, timeout: float = 2.0) -> None:
		with self._condition:
			self._closed = True
			self._condition.notify()
		if self._thread is not None:
			self._thread.join(timeout)

	#============================
	def _dispatch(self) -> None:
		while True:
			with self._condition:
				while self._pending is None and not self._closed:
					self._condition.wait()
				sample = self._pending
				self._pending = None
				closed = self._closed
			if sample is not None:
				try:
					self.callback(sample)
				except Exception as exc:
					if self.diagnostics is not None:
						self.diagnostics.record(STDERR, f"progress consumer failed: {exc}")
					return
			if closed:
				return
