#!/usr/bin/env python3

import os
import re
import shlex
import subprocess
import time
from decimal import Decimal

#============================================

_QUIET_MODE = False
_COMMAND_REPORTER = None

VIDEO_EXTENSIONS = ('.mp4', '.mkv', '.mov', '.m4v', '.webm')
UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

#============================================

def set_quiet_mode(quiet: bool) -> None:
	global _QUIET_MODE
	_QUIET_MODE = bool(quiet)

#============================================

def is_quiet_mode() -> bool:
	return _QUIET_MODE

#============================================

def set_command_reporter(reporter) -> None:
	"""
	Register a callable that receives command start/end event dicts.
	"""
	global _COMMAND_REPORTER
	_COMMAND_REPORTER = reporter

#============================================

def clear_command_reporter() -> None:
	global _COMMAND_REPORTER
	_COMMAND_REPORTER = None

#============================================

def report_command_start(command: str) -> None:
	if _COMMAND_REPORTER is None:
		return
	_COMMAND_REPORTER({
		'event': 'start',
		'command': command,
	})

#============================================

def report_command_end(command: str, returncode: int, seconds: float) -> None:
	if _COMMAND_REPORTER is None:
		return
	_COMMAND_REPORTER({
		'event': 'end',
		'command': command,
		'returncode': returncode,
		'seconds': seconds,
	})

#============================================

def format_command(args: list) -> str:
	return " ".join(shlex.quote(str(arg)) for arg in args)

#============================================

def runCmd(args: list) -> int:
	showcmd = format_command(args)
	if not _QUIET_MODE:
		print(f"CMD: '{showcmd}'")
	report_command_start(showcmd)
	t0 = time.time()
	proc = subprocess.Popen(args, stderr=subprocess.PIPE,
		stdout=subprocess.PIPE)
	proc.communicate()
	report_command_end(showcmd, proc.returncode, time.time() - t0)
	return proc.returncode

#============================================

def parse_elapsed(text) -> float:
	"""
	Convert encoder elapsed time text to seconds.

	Accepts bare seconds ("12.5") or hours:minutes:seconds ("00:01:02.5").
	Any other shape gives 0.0 so one bad progress line never stops an encode.
	"""
	if text is None:
		return 0.0
	parts = str(text).strip().split(':')
	if len(parts) == 1:
		return _float_or_zero(parts[0])
	if len(parts) == 3:
		hours = _float_or_zero(parts[0])
		minutes = _float_or_zero(parts[1])
		seconds = _float_or_zero(parts[2])
		return hours * 3600.0 + minutes * 60.0 + seconds
	return 0.0

#============================================

def _float_or_zero(value: str) -> float:
	try:
		return float(value)
	except ValueError:
		return 0.0

#============================================

def parse_timecode(raw_time) -> Decimal:
	if raw_time is None:
		raise RuntimeError("time value is required")
	if isinstance(raw_time, bool):
		raise RuntimeError("time values must be int, float, or timecode string")
	if isinstance(raw_time, int):
		return Decimal(raw_time)
	if isinstance(raw_time, float):
		return Decimal(str(raw_time))
	if isinstance(raw_time, str):
		value = raw_time.strip()
		try:
			if ':' not in value:
				return Decimal(value)
			parts = value.split(':')
			if len(parts) > 3:
				raise RuntimeError(f"invalid timecode: {raw_time}")
			seconds = Decimal(parts.pop())
			minutes = Decimal(parts.pop())
			hours = Decimal(0)
			if len(parts) > 0:
				hours = Decimal(parts.pop())
		except ArithmeticError:
			raise RuntimeError(f"invalid timecode: {raw_time}")
		return hours * Decimal(3600) + minutes * Decimal(60) + seconds
	raise RuntimeError("time values must be int, float, or timecode string")

#============================================

def format_number(value) -> str:
	"""
	Render a number for filter graph text, dropping a trailing '.0'.
	"""
	text = repr(float(value))
	if text.endswith('.0'):
		text = text[:-2]
	if text == '-0':
		text = '0'
	return text

#============================================

def sanitize_filename(filename: str, default_ext: str = '.mp4') -> str:
	name = UNSAFE_FILENAME_CHARS.sub('_', filename.strip())
	if name in ('', '.', '..'):
		name = 'output'
	ext = os.path.splitext(name)[1].lower()
	if ext not in VIDEO_EXTENSIONS:
		name += default_ext
	return name

#============================================

def ensure_file_exists(filepath: str) -> None:
	if not os.path.exists(filepath):
		raise RuntimeError(f"file not found: {filepath}")
	return

#============================================

def make_timestamp() -> str:
	datestamp = time.strftime("%y%b%d").lower()
	uppercase = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
	hourstamp = uppercase[(time.localtime()[3]) % 26]
	minstamp = f"{time.localtime()[4]:02d}"
	secstamp = uppercase[(time.localtime()[5]) % 26]
	timestamp = datestamp + hourstamp + minstamp + secstamp
	return timestamp
