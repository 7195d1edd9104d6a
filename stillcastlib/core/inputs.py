#!/usr/bin/env python3

from stillcastlib.core.timeline import Timeline

#============================================

IMAGE_SLOT = 0
MUSIC_SLOT = 1

#============================================

class InputSlots():
	"""
	Encoder input slot assignment for one session.

	Slot 0 is always the still image and slot 1 is the background music
	when present. Audio sources follow in first-seen order.
	"""
	def __init__(self, unique_sources: list, has_music: bool):
		self.unique_sources = list(unique_sources)
		self.has_music = bool(has_music)
		self.base_offset = 2 if self.has_music else 1
		self.slot_map = {}
		for position, source in enumerate(self.unique_sources):
			self.slot_map[source] = position + self.base_offset

	#============================
	def slot_for(self, source_file: str) -> int:
		# a miss means the timeline was not flattened through resolve_inputs
		return self.slot_map[source_file]

	#============================
	def __len__(self) -> int:
		return len(self.unique_sources)

#============================================

def resolve_inputs(timeline: Timeline, has_music: bool) -> InputSlots:
	unique_sources = []
	seen = set()
	for track in timeline.tracks:
		for clip in track.clips:
			if clip.source_file in seen:
				continue
			seen.add(clip.source_file)
			unique_sources.append(clip.source_file)
	return InputSlots(unique_sources, has_music)
