#!/usr/bin/env python3

import os
import yaml
from stillcastlib.core import utils
from stillcastlib.core.timeline import Clip
from stillcastlib.core.timeline import Timeline
from stillcastlib.core.timeline import Track

#============================================

class ProjectData():
	def __init__(self):
		self.yaml_file = None
		self.base_dir = None
		self.data = {}
		self.image_file = None
		self.background_color = None
		self.fit_mode = 'cover'
		self.resolution = (1280, 720)
		self.main_volume = 100
		self.music_file = None
		self.music_volume = 30
		self.timeline = Timeline()
		self.output_dir = None
		self.output_name = None

#============================================

class ProjectLoader():
	def __init__(self, yaml_file: str, output_override: str = None):
		self.yaml_file = yaml_file
		self.output_override = output_override

	#============================
	def load(self) -> ProjectData:
		project = ProjectData()
		project.yaml_file = self.yaml_file
		project.base_dir = os.path.dirname(os.path.abspath(self.yaml_file))
		project.data = self._load_yaml()
		self._validate_required_keys(project.data)
		data = project.data
		self._parse_background(project, data)
		project.fit_mode = str(data.get('fit', 'cover'))
		project.resolution = self._parse_resolution(data.get('resolution'))
		project.main_volume = self._parse_percent(data.get('volume', 100), 'volume')
		self._parse_music(project, data.get('music'))
		project.timeline = self._parse_tracks(project, data.get('tracks'))
		self._parse_output(project, data.get('output', {}))
		return project

	#============================
	def _load_yaml(self) -> dict:
		utils.ensure_file_exists(self.yaml_file)
		file_size = os.path.getsize(self.yaml_file)
		if file_size > 10 ** 7:
			raise RuntimeError("yaml file is larger than 10MB")
		with open(self.yaml_file, 'r') as data_file:
			try:
				data = yaml.safe_load(data_file)
			except yaml.YAMLError as exc:
				raise RuntimeError(f"invalid yaml in {self.yaml_file}: {exc}")
		if not isinstance(data, dict):
			raise RuntimeError("project yaml must be a mapping at the top level")
		return data

	#============================
	def _validate_required_keys(self, data: dict) -> None:
		if data.get('stillcast') != 1:
			raise RuntimeError("stillcast must be set to 1")
		if data.get('tracks') is None:
			raise RuntimeError("missing required key: tracks")
		if data.get('image') is None and data.get('background') is None:
			raise RuntimeError("either image or background is required")

	#============================
	def _resolve_path(self, project: ProjectData, path) -> str:
		if path is None:
			return None
		path = os.path.expanduser(str(path))
		if os.path.isabs(path):
			return path
		return os.path.join(project.base_dir, path)

	#============================
	def _parse_background(self, project: ProjectData, data: dict) -> None:
		if data.get('image') is not None:
			project.image_file = self._resolve_path(project, data.get('image'))
			return
		background = data.get('background')
		if not isinstance(background, dict) or background.get('color') is None:
			raise RuntimeError("background must be a mapping with a color")
		project.background_color = background.get('color')

	#============================
	def _parse_resolution(self, resolution) -> tuple:
		if resolution is None:
			return (1280, 720)
		if not isinstance(resolution, (list, tuple)) or len(resolution) != 2:
			raise RuntimeError("resolution must be [width, height]")
		try:
			width = int(resolution[0])
			height = int(resolution[1])
		except (TypeError, ValueError):
			raise RuntimeError("resolution must be [width, height]")
		if width <= 0 or height <= 0:
			raise RuntimeError("resolution must be positive")
		return (width, height)

	#============================
	def _parse_percent(self, value, name: str) -> float:
		if isinstance(value, bool) or not isinstance(value, (int, float)):
			raise RuntimeError(f"{name} must be a number from 0 to 100")
		if value < 0 or value > 100:
			raise RuntimeError(f"{name} must be a number from 0 to 100")
		return value

	#============================
	def _parse_music(self, project: ProjectData, music) -> None:
		if music is None:
			return
		if isinstance(music, str):
			music = {'file': music}
		if not isinstance(music, dict) or music.get('file') is None:
			raise RuntimeError("music must be a file path or a mapping with file")
		project.music_file = self._resolve_path(project, music.get('file'))
		project.music_volume = self._parse_percent(music.get('volume', 30),
			'music.volume')

	#============================
	def _parse_tracks(self, project: ProjectData, tracks) -> Timeline:
		if not isinstance(tracks, list):
			raise RuntimeError("tracks must be a list")
		parsed = []
		for index, track_data in enumerate(tracks, start=1):
			if not isinstance(track_data, dict):
				raise RuntimeError(f"tracks[{index}] must be a mapping")
			volume = track_data.get('volume', 1.0)
			if isinstance(volume, bool) or not isinstance(volume, (int, float)):
				raise RuntimeError(f"tracks[{index}].volume must be a number")
			clips_data = track_data.get('clips', [])
			if not isinstance(clips_data, list):
				raise RuntimeError(f"tracks[{index}].clips must be a list")
			clips = []
			for clip_data in clips_data:
				clips.append(self._parse_clip(project, clip_data, index))
			parsed.append(Track(clips, volume=volume))
		return Timeline(parsed)

	#============================
	def _parse_clip(self, project: ProjectData, clip_data: dict,
		track_index: int) -> Clip:
		if not isinstance(clip_data, dict):
			raise RuntimeError(f"tracks[{track_index}] clips must be mappings")
		source = clip_data.get('source')
		if source is None:
			raise RuntimeError(f"tracks[{track_index}] clip is missing source")
		source_file = self._resolve_path(project, source)
		start = utils.parse_timecode(clip_data.get('start', 0))
		trim_in = utils.parse_timecode(clip_data.get('trim_in', 0))
		trim_out = None
		if clip_data.get('trim_out') is not None:
			trim_out = utils.parse_timecode(clip_data.get('trim_out'))
		if clip_data.get('duration') is not None:
			duration = utils.parse_timecode(clip_data.get('duration'))
		elif trim_out is not None:
			duration = trim_out - trim_in
		else:
			raise RuntimeError(f"clip {source} needs duration or trim_out")
		return Clip(source_file, start_time=float(start), duration=float(duration),
			trim_in=float(trim_in),
			trim_out=float(trim_out) if trim_out is not None else None)

	#============================
	def _parse_output(self, project: ProjectData, output) -> None:
		if output is None:
			output = {}
		if not isinstance(output, dict):
			raise RuntimeError("output must be a mapping")
		if output.get('dir') is not None:
			project.output_dir = self._resolve_path(project, output.get('dir'))
		project.output_name = output.get('file')
		if self.output_override is not None:
			override_dir = os.path.dirname(self.output_override)
			if override_dir != '':
				project.output_dir = override_dir
			project.output_name = os.path.basename(self.output_override)
