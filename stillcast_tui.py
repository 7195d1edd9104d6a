#!/usr/bin/env python3

"""
Textual dashboard for one stillcast encode.
"""

# Standard Library
import argparse
import math
import os
import sys
import threading
import time

script_dir = os.path.dirname(os.path.abspath(__file__))
if script_dir not in sys.path:
	sys.path.insert(0, script_dir)

# PIP3 modules
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import RichLog, Static
from rich.text import Text

# local repo modules
from stillcastlib.core import utils
from stillcastlib.core.project import StillcastProject
from stillcastlib.core.supervisor import CancelToken
from stillcastlib.core.supervisor import DiagnosticsSink
from stillcastlib.core.supervisor import EncodeError

#============================================

PALETTE = {
	'label': "#4C566A",
	'value': "#D8DEE9",
	'accent': "#88C0D0",
	'good': "#A3BE8C",
	'bad': "#BF616A",
}

STATE_STYLES = {
	'starting': 'value',
	'encoding': 'accent',
	'done': 'good',
	'failed': 'bad',
	'cancelled': 'bad',
}

#============================================

def parse_args():
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(description="stillcast encode dashboard")
	parser.add_argument('-y', '--yaml', dest='yamlfile', required=True,
		help='project yaml file with the audio timeline')
	parser.add_argument('-o', '--output', dest='output_file',
		help='override output file from yaml')
	parser.add_argument('-c', '--cache-dir', dest='cache_dir',
		help='directory for temporary files')
	parser.add_argument('-k', '--keep-temp', dest='keep_temp',
		help='keep temporary files', action='store_true')
	parser.add_argument('-K', '--no-keep-temp', dest='keep_temp',
		help='remove temporary files', action='store_false')
	parser.set_defaults(keep_temp=False)
	args = parser.parse_args()
	return args

#============================================

def format_clock(seconds: float) -> str:
	"""
	Render seconds as H:MM:SS, truncating fractions.
	"""
	total = max(0, int(seconds))
	hours, remainder = divmod(total, 3600)
	minutes, secs = divmod(remainder, 60)
	return f"{hours:d}:{minutes:02d}:{secs:02d}"

#============================================

def estimate_remaining(elapsed: float, percent: float):
	"""
	Linear time left from wall time spent so far, None until progress starts.
	"""
	if percent <= 0 or elapsed <= 0:
		return None
	if percent >= 100:
		return 0.0
	return elapsed * (100.0 - percent) / percent

#============================================

def progress_bar(percent: float, width: int = 30) -> str:
	percent = max(0.0, min(percent, 100.0))
	filled = int(round(width * percent / 100.0))
	return "█" * filled + "░" * (width - filled)

#============================================

class StillcastTuiApp(App):
	TITLE = "stillcast"
	BINDINGS = [
		("q", "quit", "Cancel and quit"),
	]

	CSS = """
	#panels {
		height: 8;
	}

	.panel {
		width: 1fr;
		border: round #4C566A;
		padding: 0 1;
	}

	#log {
		height: 1fr;
		border: round #4C566A;
	}
	"""

	def __init__(self, yaml_file: str, output_override: str = None,
		keep_temp: bool = False, cache_dir: str = None):
		super().__init__()
		self.yaml_file = yaml_file
		self.output_override = output_override
		self.keep_temp = keep_temp
		self.cache_dir = cache_dir
		self.cancel_token = CancelToken()
		self.state = 'starting'
		self.error_text = None
		self.output_file = None
		self.session_info = {}
		self.latest_sample = None
		self.started_at = None
		self.stopped_at = None

	#============================
	def compose(self) -> ComposeResult:
		with Horizontal(id="panels"):
			yield Static("", id="encode", classes="panel")
			yield Static("", id="project", classes="panel")
		yield RichLog(id="log", wrap=True)

	#============================
	def on_mount(self) -> None:
		self.started_at = time.time()
		self._render_project()
		self._render_encode()
		worker = threading.Thread(target=self._encode_worker, daemon=True)
		worker.start()
		self.set_interval(0.5, self._render_encode)

	#============================
	async def action_quit(self) -> None:
		self.cancel_token.cancel()
		self.exit()

	#============================
	def _encode_worker(self) -> None:
		utils.set_quiet_mode(True)
		utils.set_command_reporter(self._on_command_event)
		diagnostics = DiagnosticsSink(listener=self._on_diagnostic, echo=False)
		try:
			project = StillcastProject(self.yaml_file,
				output_override=self.output_override,
				keep_temp=self.keep_temp, cache_dir=self.cache_dir)
			session = project.validate()
			self.session_info = {
				'output': session.output_file,
				'clips': project.timeline.clip_count(),
				'length': session.total_duration,
				'fit': session.fit_mode,
				'music': session.music_file,
			}
			self._post(self._render_project)
			self.state = 'encoding'
			self.output_file = project.run(on_progress=self._store_sample,
				diagnostics=diagnostics, cancel_token=self.cancel_token)
			self.state = 'done'
		except EncodeError as exc:
			self.state = 'cancelled' if exc.cancelled else 'failed'
			self.error_text = str(exc)
		except Exception as exc:
			self.state = 'failed'
			self.error_text = str(exc)
		finally:
			self.stopped_at = time.time()
			utils.clear_command_reporter()
			utils.set_quiet_mode(False)
		self._post(self._show_outcome)

	#============================
	def _post(self, callback, *args) -> None:
		# the app is gone once a cancel has asked it to exit
		if self.cancel_token.is_cancelled():
			return
		self.call_from_thread(callback, *args)

	#============================
	def _store_sample(self, sample) -> None:
		self.latest_sample = sample

	#============================
	def _on_diagnostic(self, stream: str, text: str) -> None:
		self._post(self._log_line, text, 'label')

	#============================
	def _on_command_event(self, event: dict) -> None:
		if event.get('event') == 'start':
			self._post(self._log_line, event.get('command', ''), 'accent')
			return
		code = event.get('returncode')
		seconds = event.get('seconds', 0.0)
		style = 'good' if code == 0 else 'bad'
		self._post(self._log_line, f"ffmpeg exited {code} after {seconds:.1f}s", style)

	#============================
	def _log_line(self, text: str, style: str) -> None:
		self.query_one("#log", RichLog).write(Text(text, style=PALETTE[style]))

	#============================
	def _show_outcome(self) -> None:
		if self.state == 'done':
			self._log_line(f"complete: {self.output_file}", 'good')
		elif self.error_text is not None:
			self._log_line(f"error: {self.error_text}", 'bad')
		self._render_encode()

	#============================
	def _elapsed(self) -> float:
		if self.started_at is None:
			return 0.0
		end = self.stopped_at if self.stopped_at is not None else time.time()
		return end - self.started_at

	#============================
	def _render_encode(self) -> None:
		sample = self.latest_sample
		percent = sample.progress if sample is not None else 0.0
		elapsed = self._elapsed()
		eta = None
		if self.state == 'encoding':
			eta = estimate_remaining(elapsed, percent)
		panel = Text()
		_add_field(panel, "Status", self.state, STATE_STYLES[self.state])
		_add_field(panel, "Elapsed", format_clock(elapsed))
		_add_field(panel, "Remaining",
			format_clock(math.ceil(eta)) if eta is not None else "-")
		panel.append(progress_bar(percent), style=PALETTE['accent'])
		panel.append(f" {percent:5.1f}%\n", style=PALETTE['value'])
		if sample is not None:
			panel.append(f"frame {sample.frame}  {sample.fps:.1f} fps  {sample.time}",
				style=PALETTE['label'])
		self.query_one("#encode", Static).update(panel)

	#============================
	def _render_project(self) -> None:
		info = self.session_info
		panel = Text()
		_add_field(panel, "Project", self.yaml_file)
		_add_field(panel, "Output", info.get('output') or self.output_override or "-")
		length = info.get('length')
		_add_field(panel, "Clips", str(info.get('clips', "-")))
		_add_field(panel, "Length", format_clock(length) if length is not None else "-")
		_add_field(panel, "Fit", info.get('fit') or "-")
		_add_field(panel, "Music", info.get('music') or "none")
		self.query_one("#project", Static).update(panel)

#============================================

def _add_field(panel: Text, label: str, value: str, style: str = 'value') -> None:
	panel.append(f"{label}: ", style=PALETTE['label'])
	panel.append(f"{value}\n", style=PALETTE[style])

#============================================

def main():
	args = parse_args()
	app = StillcastTuiApp(args.yamlfile,
		output_override=args.output_file,
		keep_temp=args.keep_temp,
		cache_dir=args.cache_dir)
	app.run()

#============================================

if __name__ == '__main__':
	main()
