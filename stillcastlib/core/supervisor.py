#!/usr/bin/env python3

import collections
import enum
import subprocess
import threading
import time
from stillcastlib.core import utils
from stillcastlib.core import progress as progress_module
from stillcastlib.core.progress import DiagnosticLine
from stillcastlib.core.progress import ProgressAccumulator
from stillcastlib.core.progress import ProgressChannel
from stillcastlib.core.progress import ProgressLine

#============================================

TERMINATE_GRACE_SECONDS = 5

#============================================

class SessionState(enum.Enum):
	NOT_STARTED = 'not_started'
	RUNNING = 'running'
	SUCCEEDED = 'succeeded'
	FAILED = 'failed'

#============================================

class EncodeError(RuntimeError):
	"""
	Raised when an encode session ends in the Failed state.

	context holds the command parameters needed to diagnose the failure.
	"""
	def __init__(self, message: str, context: dict = None,
		returncode: int = None, cancelled: bool = False,
		diagnostics: list = None):
		self.context = dict(context or {})
		self.returncode = returncode
		self.cancelled = cancelled
		self.diagnostics = list(diagnostics or [])
		super().__init__(self._format(message))

	#============================
	def _format(self, message: str) -> str:
		lines = [message]
		for key in ('inputs', 'filter_complex', 'fit_mode', 'background_music'):
			if key in self.context:
				lines.append(f"  {key}: {self.context[key]}")
		if self.returncode is not None:
			lines.append(f"  exit code: {self.returncode}")
		if len(self.diagnostics) > 0:
			lines.append("  last encoder output:")
			for text in self.diagnostics[-5:]:
				lines.append(f"    {text}")
		return "\n".join(lines)

#============================================

class CancelToken():
	def __init__(self):
		self._event = threading.Event()
		self._callbacks = []
		self._lock = threading.Lock()

	#============================
	def cancel(self) -> None:
		with self._lock:
			self._event.set()
			callbacks = list(self._callbacks)
		for callback in callbacks:
			callback()

	#============================
	def is_cancelled(self) -> bool:
		return self._event.is_set()

	#============================
	def on_cancel(self, callback) -> None:
		with self._lock:
			already = self._event.is_set()
			if not already:
				self._callbacks.append(callback)
		if already:
			callback()

#============================================

class DiagnosticsSink():
	"""
	Records encoder log lines. Never consulted for control decisions.
	"""
	def __init__(self, listener=None, keep_lines: int = 200, echo: bool = True):
		self.listener = listener
		self.echo = echo
		self.lines = collections.deque(maxlen=keep_lines)
		self._lock = threading.Lock()

	#============================
	def record(self, stream: str, text: str) -> None:
		with self._lock:
			self.lines.append(text)
		if self.echo and not utils.is_quiet_mode():
			print(f"FFmpeg: {text}")
		listener = self.listener
		if listener is None:
			return
		try:
			listener(stream, text)
		except Exception as exc:
			# a broken listener is dropped, the encoder streams keep draining
			self.listener = None
			with self._lock:
				self.lines.append(f"diagnostics listener failed: {exc}")

	#============================
	def tail(self, count: int = 20) -> list:
		with self._lock:
			return list(self.lines)[-count:]

#============================================

class EncodeSupervisor():
	def __init__(self, session, on_progress=None, diagnostics: DiagnosticsSink = None,
		cancel_token: CancelToken = None):
		self.session = session
		self.on_progress = on_progress
		self.diagnostics = diagnostics or DiagnosticsSink()
		self.cancel_token = cancel_token or CancelToken()
		self.state = SessionState.NOT_STARTED
		self.returncode = None
		self.last_sample = None
		self.proc = None
		self._stderr_thread = None
		self._stream_error = None

	#============================
	def cancel(self) -> None:
		self.cancel_token.cancel()

	#============================
	def run(self) -> str:
		"""
		Run the encoder to completion and return the output file path.

		Raises EncodeError on spawn failure, stream errors, cancellation
		or a non-zero exit status.
		"""
		if self.state is not SessionState.NOT_STARTED:
			raise RuntimeError("encode session already used")
		if self.cancel_token.is_cancelled():
			self.state = SessionState.FAILED
			raise self._error("encode cancelled", cancelled=True)
		command = utils.format_command(self.session.args)
		if not utils.is_quiet_mode():
			print(f"CMD: '{command}'")
		utils.report_command_start(command)
		t0 = time.time()
		try:
			self._spawn()
			self._drain()
		finally:
			seconds = time.time() - t0
			code = self.returncode if self.returncode is not None else -1
			utils.report_command_end(command, code, seconds)
		self.state = SessionState.SUCCEEDED
		return self.session.output_file

	#============================
	def _spawn(self) -> None:
		try:
			self.proc = subprocess.Popen(self.session.args,
				stdin=subprocess.DEVNULL,
				stdout=subprocess.PIPE, stderr=subprocess.PIPE,
				text=True, errors='replace', bufsize=1)
		except OSError as exc:
			self.state = SessionState.FAILED
			raise self._error(f"failed to spawn ffmpeg: {exc}")
		self.state = SessionState.RUNNING
		self.cancel_token.on_cancel(self._terminate)
		self._stderr_thread = threading.Thread(target=self._read_stderr,
			daemon=True)
		self._stderr_thread.start()

	#============================
	def _drain(self) -> None:
		accumulator = ProgressAccumulator(self.session.total_duration)
		channel = ProgressChannel(self.on_progress, self.diagnostics)
		try:
			self._read_stdout(accumulator, channel)
		except (OSError, ValueError) as exc:
			self._terminate()
			self._wait()
			self.state = SessionState.FAILED
			raise self._error(f"failed to read ffmpeg output: {exc}")
		finally:
			channel.close()
		self._wait()
		if self.returncode == 0 and self._stream_error is None:
			return
		if self.cancel_token.is_cancelled():
			self.state = SessionState.FAILED
			raise self._error("encode cancelled", cancelled=True)
		if self._stream_error is not None:
			self.state = SessionState.FAILED
			raise self._error(f"failed to read ffmpeg output: {self._stream_error}")
		if self.returncode != 0:
			self.state = SessionState.FAILED
			raise self._error("ffmpeg encoding failed")

	#============================
	def _read_stdout(self, accumulator: ProgressAccumulator,
		channel: ProgressChannel) -> None:
		for line in self.proc.stdout:
			if self.cancel_token.is_cancelled():
				self._terminate()
				break
			event = progress_module.decode_line(line, progress_module.STDOUT)
			if isinstance(event, ProgressLine):
				sample = accumulator.feed(event)
				if sample is not None:
					self.last_sample = sample
					channel.publish(sample)
			elif not isinstance(event, DiagnosticLine) and event.text.strip():
				self.diagnostics.record(progress_module.STDOUT, event.text)

	#============================
	def _read_stderr(self) -> None:
		try:
			for line in self.proc.stderr:
				event = progress_module.decode_line(line, progress_module.STDERR)
				if isinstance(event, DiagnosticLine):
					self.diagnostics.record(progress_module.STDERR, event.text)
		except (OSError, ValueError) as exc:
			self._stream_error = exc

	#============================
	def _wait(self) -> None:
		self.returncode = self.proc.wait()
		if self._stderr_thread is not None:
			self._stderr_thread.join()
		self.proc.stdout.close()
		self.proc.stderr.close()

	#============================
	def _terminate(self) -> None:
		"""
		Ask the encoder to stop without blocking the caller.

		Runs from signal handlers and UI callbacks, so the grace period
		and the kill happen on a watcher thread.
		"""
		proc = self.proc
		if proc is None or proc.poll() is not None:
			return
		proc.terminate()
		watcher = threading.Thread(target=self._kill_after_grace, args=(proc,),
			daemon=True)
		watcher.start()

	#============================
	def _kill_after_grace(self, proc) -> None:
		try:
			proc.wait(timeout=TERMINATE_GRACE_SECONDS)
		except subprocess.TimeoutExpired:
			proc.kill()

	#============================
	def _error(self, message: str, cancelled: bool = False) -> EncodeError:
		context = self.session.describe()
		return EncodeError(message, context=context, returncode=self.returncode,
			cancelled=cancelled, diagnostics=self.diagnostics.tail())
