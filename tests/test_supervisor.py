#!/usr/bin/env python3

"""
Supervisor tests driven by a fake encoder script run with this interpreter.
"""

# Standard Library
import os
import subprocess
import sys
import threading
import time

# PIP3 modules
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from stillcastlib.core import supervisor as supervisor_module
from stillcastlib.core.session import SessionBuilder
from stillcastlib.core.supervisor import CancelToken
from stillcastlib.core.supervisor import DiagnosticsSink
from stillcastlib.core.supervisor import EncodeError
from stillcastlib.core.supervisor import EncodeSupervisor
from stillcastlib.core.supervisor import SessionState
from stillcastlib.core.timeline import Clip
from stillcastlib.core.timeline import Timeline
from stillcastlib.core.timeline import Track

#============================================

PROGRESS_SCRIPT = """
import sys
sys.stderr.write("Input #0, png_pipe, from 'img.png':\\n")
sys.stderr.flush()
for second in (2, 5, 10):
	sys.stdout.write("frame=%d\\n" % (second * 25))
	sys.stdout.write("fps=25.0\\n")
	sys.stdout.write("out_time=00:00:%02d.000000\\n" % second)
	state = "end" if second == 10 else "continue"
	sys.stdout.write("progress=%s\\n" % state)
	sys.stdout.flush()
"""

FAILING_SCRIPT = """
import sys
sys.stderr.write("Invalid data found when processing input\\n")
sys.stderr.flush()
sys.exit(3)
"""

SLOW_SCRIPT = """
import sys
import time
for second in range(1, 600):
	sys.stdout.write("out_time=00:00:%02d.000000\\n" % (second % 60))
	sys.stdout.write("progress=continue\\n")
	sys.stdout.flush()
	time.sleep(0.1)
"""

#============================================

def _session(tmp_path, script: str):
	"""
	Build a real session, then swap its command for a fake encoder.
	"""
	clip = Clip("a.mp3", 0, 10, trim_in=0, trim_out=10)
	timeline = Timeline([Track([clip])])
	session = SessionBuilder(ffmpeg="ffmpeg").build("img.png", timeline,
		music_file="m.mp3", output_dir=str(tmp_path))
	session.args = [sys.executable, "-c", script]
	return session

#============================================

def test_success_reports_progress_and_output(tmp_path) -> None:
	"""
	Ensure progress blocks reach the consumer and the output path is returned.
	"""
	samples = []
	session = _session(tmp_path, PROGRESS_SCRIPT)
	sink = DiagnosticsSink(echo=False)
	supervisor = EncodeSupervisor(session, on_progress=samples.append,
		diagnostics=sink)
	output_file = supervisor.run()
	assert output_file == session.output_file
	assert supervisor.state is SessionState.SUCCEEDED
	assert supervisor.returncode == 0
	assert len(samples) >= 1
	assert samples[-1].progress == 100.0
	assert samples[-1].frame == 250
	for previous, current in zip(samples, samples[1:]):
		assert current.progress >= previous.progress
	assert any("png_pipe" in line for line in sink.tail())

#============================================

def test_nonzero_exit_raises_with_context(tmp_path) -> None:
	"""
	Ensure a failed encode carries the exit code and the command context.
	"""
	session = _session(tmp_path, FAILING_SCRIPT)
	supervisor = EncodeSupervisor(session, diagnostics=DiagnosticsSink(echo=False))
	with pytest.raises(EncodeError) as info:
		supervisor.run()
	error = info.value
	assert error.returncode == 3
	assert error.cancelled is False
	assert supervisor.state is SessionState.FAILED
	message = str(error)
	assert "ffmpeg encoding failed" in message
	assert "exit code: 3" in message
	assert "filter_complex" in message
	assert "background_music: True" in message
	assert "Invalid data found" in message
	assert error.context['inputs'] == ["img.png", "m.mp3", "a.mp3"]

#============================================

def test_spawn_failure_is_an_encode_error(tmp_path) -> None:
	session = _session(tmp_path, PROGRESS_SCRIPT)
	session.args = [str(tmp_path / "no-such-encoder")]
	supervisor = EncodeSupervisor(session, diagnostics=DiagnosticsSink(echo=False))
	with pytest.raises(EncodeError, match="failed to spawn ffmpeg"):
		supervisor.run()
	assert supervisor.state is SessionState.FAILED

#============================================

def test_cancel_from_progress_consumer(tmp_path) -> None:
	"""
	Ensure cancelling mid-encode stops the process and reports cancellation.
	"""
	token = CancelToken()
	session = _session(tmp_path, SLOW_SCRIPT)

	def on_progress(sample) -> None:
		token.cancel()

	supervisor = EncodeSupervisor(session, on_progress=on_progress,
		diagnostics=DiagnosticsSink(echo=False), cancel_token=token)
	t0 = time.time()
	with pytest.raises(EncodeError) as info:
		supervisor.run()
	assert info.value.cancelled is True
	assert "encode cancelled" in str(info.value)
	assert time.time() - t0 < 30
	assert supervisor.proc.poll() is not None

#============================================

def test_cancel_before_run_spawns_nothing(tmp_path) -> None:
	token = CancelToken()
	token.cancel()
	session = _session(tmp_path, PROGRESS_SCRIPT)
	supervisor = EncodeSupervisor(session, diagnostics=DiagnosticsSink(echo=False),
		cancel_token=token)
	with pytest.raises(EncodeError):
		supervisor.run()
	assert supervisor.proc is None

#============================================

def test_cancel_token_runs_late_callbacks() -> None:
	calls = []
	token = CancelToken()
	token.on_cancel(lambda: calls.append('early'))
	token.cancel()
	token.on_cancel(lambda: calls.append('late'))
	assert token.is_cancelled()
	assert calls == ['early', 'late']

#============================================

def test_diagnostics_sink_keeps_tail() -> None:
	heard = []
	sink = DiagnosticsSink(listener=lambda stream, text: heard.append(stream),
		keep_lines=3, echo=False)
	for index in range(5):
		sink.record('stderr', f"line {index}")
	assert sink.tail() == ["line 2", "line 3", "line 4"]
	assert sink.tail(1) == ["line 4"]
	assert heard == ['stderr'] * 5

#============================================

HEAVY_STDERR_SCRIPT = """
import sys
for index in range(20000):
	sys.stderr.write("[aac @ 0x55] frame %05d queued for the audio mixer\\n" % index)
sys.stderr.flush()
sys.stdout.write("out_time=00:00:10.000000\\n")
sys.stdout.write("progress=end\\n")
sys.stdout.flush()
"""

STUBBORN_SCRIPT = """
import signal
import sys
import time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
for second in range(1, 600):
	sys.stdout.write("out_time=00:00:%02d.000000\\n" % (second % 60))
	sys.stdout.write("progress=continue\\n")
	sys.stdout.flush()
	time.sleep(0.1)
"""

#============================================

class _FailingReader():
	"""
	Pipe stand-in whose reads fail, closing the real pipe on close().
	"""
	def __init__(self, stream):
		self.stream = stream

	def __iter__(self):
		return self

	def __next__(self):
		raise OSError("pipe read failed")

	def close(self) -> None:
		self.stream.close()

#============================================

def _break_pipe(monkeypatch, pipe_name: str) -> None:
	real_popen = subprocess.Popen

	def popen(*args, **kwargs):
		proc = real_popen(*args, **kwargs)
		setattr(proc, pipe_name, _FailingReader(getattr(proc, pipe_name)))
		return proc

	monkeypatch.setattr(supervisor_module.subprocess, "Popen", popen)

#============================================

def _run_in_thread(supervisor, timeout: float = 60.0) -> dict:
	result = {}

	def target() -> None:
		try:
			result['output'] = supervisor.run()
		except EncodeError as exc:
			result['error'] = exc

	thread = threading.Thread(target=target, daemon=True)
	thread.start()
	thread.join(timeout)
	assert not thread.is_alive(), "encode did not finish"
	return result

#============================================

@pytest.mark.parametrize("listener_fails", [False, True])
def test_heavy_stderr_is_drained(tmp_path, listener_fails: bool) -> None:
	"""
	Ensure far more than a pipe buffer of log output never stalls the encode.
	"""
	calls = []

	def listener(stream, text) -> None:
		calls.append(stream)
		if listener_fails:
			raise RuntimeError("log panel gone")

	sink = DiagnosticsSink(listener=listener, echo=False)
	session = _session(tmp_path, HEAVY_STDERR_SCRIPT)
	supervisor = EncodeSupervisor(session, diagnostics=sink)
	result = _run_in_thread(supervisor)
	assert result == {'output': session.output_file}
	assert supervisor.state is SessionState.SUCCEEDED
	assert "frame 19999" in sink.tail(1)[0]
	if listener_fails:
		assert calls == ['stderr']
		assert sink.listener is None
	else:
		assert len(calls) == 20000

#============================================

def test_failing_listener_is_recorded() -> None:
	def listener(stream, text) -> None:
		raise RuntimeError("log panel gone")

	sink = DiagnosticsSink(listener=listener, echo=False)
	sink.record('stderr', "first")
	sink.record('stderr', "second")
	assert sink.tail() == ["first", "diagnostics listener failed: log panel gone",
		"second"]

#============================================

def test_stdout_read_error_fails_session(tmp_path, monkeypatch) -> None:
	"""
	Ensure a broken progress pipe stops the encoder and fails the session.
	"""
	_break_pipe(monkeypatch, 'stdout')
	session = _session(tmp_path, SLOW_SCRIPT)
	supervisor = EncodeSupervisor(session, diagnostics=DiagnosticsSink(echo=False))
	result = _run_in_thread(supervisor)
	error = result['error']
	assert "failed to read ffmpeg output: pipe read failed" in str(error)
	assert error.cancelled is False
	assert supervisor.state is SessionState.FAILED
	assert supervisor.proc.poll() is not None

#============================================

def test_stderr_read_error_fails_session(tmp_path, monkeypatch) -> None:
	_break_pipe(monkeypatch, 'stderr')
	session = _session(tmp_path, PROGRESS_SCRIPT)
	supervisor = EncodeSupervisor(session, diagnostics=DiagnosticsSink(echo=False))
	result = _run_in_thread(supervisor)
	assert "failed to read ffmpeg output" in str(result['error'])
	assert supervisor.state is SessionState.FAILED

#============================================

def test_cancel_does_not_block_caller(tmp_path, monkeypatch) -> None:
	"""
	Ensure cancel returns at once and the kill follows after the grace period.
	"""
	monkeypatch.setattr(supervisor_module, "TERMINATE_GRACE_SECONDS", 2.0)
	token = CancelToken()
	cancel_seconds = []

	def on_progress(sample) -> None:
		if len(cancel_seconds) > 0:
			return
		t0 = time.time()
		token.cancel()
		cancel_seconds.append(time.time() - t0)

	session = _session(tmp_path, STUBBORN_SCRIPT)
	supervisor = EncodeSupervisor(session, on_progress=on_progress,
		diagnostics=DiagnosticsSink(echo=False), cancel_token=token)
	result = _run_in_thread(supervisor, timeout=30.0)
	assert cancel_seconds[0] < 1.0
	assert result['error'].cancelled is True
	assert supervisor.proc.returncode != 0

#============================================

def test_cancel_after_clean_exit_keeps_output(tmp_path, monkeypatch) -> None:
	"""
	Ensure a cancel that lands after the encoder exited 0 does not fail it.
	"""
	token = CancelToken()
	session = _session(tmp_path, PROGRESS_SCRIPT)
	supervisor = EncodeSupervisor(session, diagnostics=DiagnosticsSink(echo=False),
		cancel_token=token)
	original_wait = supervisor._wait

	def late_cancel() -> None:
		supervisor.proc.wait()
		token.cancel()
		original_wait()

	monkeypatch.setattr(supervisor, "_wait", late_cancel)
	assert supervisor.run() == session.output_file
	assert supervisor.state is SessionState.SUCCEEDED
	assert supervisor.returncode == 0
