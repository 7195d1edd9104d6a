#!/usr/bin/env python3

#============================================

class Clip():
	"""
	A placed, trimmed reference to one audio source.

	The source window used for encoding is [trim_in, trim_in + duration).
	trim_out is validated and kept for callers, but duration wins.
	"""
	__slots__ = ('source_file', 'start_time', 'duration', 'trim_in', 'trim_out')

	def __init__(self, source_file: str, start_time: float, duration: float,
		trim_in: float = 0.0, trim_out: float = None):
		if source_file is None or str(source_file) == '':
			raise RuntimeError("clip source file is required")
		start_time = float(start_time)
		duration = float(duration)
		trim_in = float(trim_in)
		if trim_out is None:
			trim_out = trim_in + duration
		trim_out = float(trim_out)
		if start_time < 0:
			raise RuntimeError(f"clip start must be >= 0: {source_file}")
		if duration <= 0:
			raise RuntimeError(f"clip duration must be > 0: {source_file}")
		if trim_in < 0:
			raise RuntimeError(f"clip trim_in must be >= 0: {source_file}")
		if trim_out < trim_in:
			raise RuntimeError(f"clip trim_out must be >= trim_in: {source_file}")
		object.__setattr__(self, 'source_file', str(source_file))
		object.__setattr__(self, 'start_time', start_time)
		object.__setattr__(self, 'duration', duration)
		object.__setattr__(self, 'trim_in', trim_in)
		object.__setattr__(self, 'trim_out', trim_out)

	#============================
	def __setattr__(self, name, value):
		raise AttributeError("Clip is immutable")

	#============================
	def __eq__(self, other) -> bool:
		if not isinstance(other, Clip):
			return NotImplemented
		return self.as_tuple() == other.as_tuple()

	#============================
	def __hash__(self) -> int:
		return hash(self.as_tuple())

	#============================
	def __repr__(self) -> str:
		return (
			f"Clip({self.source_file!r}, start={self.start_time}, "
			f"duration={self.duration}, trim_in={self.trim_in}, "
			f"trim_out={self.trim_out})"
		)

	#============================
	def as_tuple(self) -> tuple:
		return (self.source_file, self.start_time, self.duration,
			self.trim_in, self.trim_out)

	#============================
	@property
	def trim_end(self) -> float:
		return self.trim_in + self.duration

	#============================
	@property
	def end_time(self) -> float:
		return self.start_time + self.duration

#============================================

class Track():
	def __init__(self, clips: list = None, volume: float = 1.0):
		self.clips = list(clips or [])
		self.volume = float(volume)
		if self.volume < 0:
			raise RuntimeError("track volume must be >= 0")

#============================================

class ClipWithGain():
	__slots__ = ('clip', 'gain')

	def __init__(self, clip: Clip, gain: float):
		self.clip = clip
		self.gain = float(gain)

	#============================
	def __repr__(self) -> str:
		return f"ClipWithGain({self.clip!r}, gain={self.gain})"

#============================================

class Timeline():
	def __init__(self, tracks: list = None):
		self.tracks = list(tracks or [])

	#============================
	def clip_count(self) -> int:
		return sum(len(track.clips) for track in self.tracks)

	#============================
	def flatten(self) -> list:
		"""
		Pair every clip with its track volume, track order then clip order.
		"""
		flat = []
		for track in self.tracks:
			for clip in track.clips:
				flat.append(ClipWithGain(clip, track.volume))
		return flat

	#============================
	def first_clip(self) -> Clip:
		for track in self.tracks:
			if len(track.clips) > 0:
				return track.clips[0]
		return None

	#============================
	def total_duration(self) -> float:
		total = 0.0
		for track in self.tracks:
			for clip in track.clips:
				total = max(total, clip.end_time)
		return total
