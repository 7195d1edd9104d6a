#!/usr/bin/env python3

###
#solid color still image used when a project has no background picture
###

import PIL.Image
import PIL.ImageColor
from stillcastlib.core import utils

#===============================
def parse_color(value) -> tuple:
	if value is None:
		return (0, 0, 0)
	if isinstance(value, (list, tuple)) and len(value) == 3:
		return tuple(int(channel) for channel in value)
	if isinstance(value, str):
		try:
			return PIL.ImageColor.getrgb(value)[:3]
		except ValueError:
			raise RuntimeError(f"invalid color value: {value}")
	raise RuntimeError(f"invalid color value: {value}")

#===============================
def make_placeholder_image(color, output_file: str, width: int = 1280,
	height: int = 720) -> str:
	rgb = parse_color(color)
	image = PIL.Image.new("RGB", (int(width), int(height)), color=rgb)
	image.save(output_file)
	utils.ensure_file_exists(output_file)
	return output_file
