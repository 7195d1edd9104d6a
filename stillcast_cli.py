#!/usr/bin/env python3

import argparse
import os
import signal
import sys
import yaml
from tqdm import tqdm
from stillcastlib.core import utils
from stillcastlib.core.project import StillcastProject
from stillcastlib.core.project import convert_to_video
from stillcastlib.core.project import plan_flat_session
from stillcastlib.core.supervisor import CancelToken
from stillcastlib.core.supervisor import EncodeError

#============================================

def parse_args(argv: list = None):
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(
		description="Turn audio plus a still image into a video")
	parser.add_argument('-y', '--yaml', dest='yamlfile',
		help='project yaml file with the audio timeline')
	parser.add_argument('-i', '--image', dest='image_file',
		help='background image (flat mode)')
	parser.add_argument('-a', '--audio', dest='audio_files', action='append',
		help='audio file, repeat to play several back to back (flat mode)')
	parser.add_argument('-t', '--duration', dest='durations', type=float,
		action='append', help='known duration of each audio file in seconds')
	parser.add_argument('-s', '--style', dest='fit_mode', default='cover',
		help='background fit: cover, contain, repeat or center')
	parser.add_argument('-m', '--music', dest='music_file',
		help='background music looped under the audio (flat mode)')
	parser.add_argument('--music-volume', dest='music_volume', type=int,
		default=30, help='background music volume, 0 to 100')
	parser.add_argument('-v', '--volume', dest='main_volume', type=int,
		default=100, help='main audio volume, 0 to 100')
	parser.add_argument('-o', '--output', dest='output_file',
		help='output file name or path')
	parser.add_argument('-d', '--output-dir', dest='output_dir',
		help='output directory (default: next to the first audio file)')
	parser.add_argument('-n', '--dry-run', dest='dry_run', action='store_true',
		help='validate and print the encoder command, do not encode')
	parser.add_argument('-p', '--dump-plan', dest='dump_plan', action='store_true',
		help='print the compiled inputs, filter graph and arguments')
	parser.add_argument('-c', '--cache-dir', dest='cache_dir',
		help='directory for temporary files')
	parser.add_argument('-k', '--keep-temp', dest='keep_temp',
		help='keep temporary files', action='store_true')
	parser.add_argument('-K', '--no-keep-temp', dest='keep_temp',
		help='remove temporary files', action='store_false')
	parser.add_argument('-q', '--quiet', dest='quiet', action='store_true',
		help='hide encoder log lines')
	parser.set_defaults(keep_temp=False)
	args = parser.parse_args(argv)
	if args.yamlfile is None and (args.image_file is None or not args.audio_files):
		parser.error("use -y project.yaml, or -i image with one or more -a audio")
	return args

#============================================

class ProgressBar():
	def __init__(self):
		self.bar = None

	#============================
	def update(self, sample) -> None:
		if self.bar is None:
			self.bar = tqdm(total=100.0, unit='%', bar_format=(
				"{l_bar}{bar}| {n:.1f}/{total:.0f}% [{elapsed}<{remaining}]{postfix}"))
		self.bar.n = round(sample.progress, 1)
		self.bar.set_postfix_str(f"frame={sample.frame} fps={sample.fps:.1f} time={sample.time}")

	#============================
	def close(self) -> None:
		if self.bar is not None:
			self.bar.close()

#============================================

def _split_output(args) -> tuple:
	output_dir = args.output_dir
	output_name = None
	if args.output_file is not None:
		head, tail = os.path.split(args.output_file)
		if head != '' and output_dir is None:
			output_dir = head
		output_name = tail
	return (output_dir, output_name)

#============================================

def run_flat(args, bar: ProgressBar, cancel_token: CancelToken) -> str:
	output_dir, output_name = _split_output(args)
	options = {
		'fit_mode': args.fit_mode,
		'music_file': args.music_file,
		'music_volume': args.music_volume,
		'main_volume': args.main_volume,
		'durations': args.durations,
		'output_dir': output_dir,
		'output_name': output_name,
	}
	if args.dry_run or args.dump_plan:
		session = plan_flat_session(args.image_file, args.audio_files, **options)
		if args.dump_plan:
			plan = session.describe()
			plan['args'] = list(session.args)
			print(yaml.safe_dump(plan, sort_keys=False))
		else:
			print(session.command_text())
		return None
	return convert_to_video(args.image_file, args.audio_files,
		on_progress=bar.update, cancel_token=cancel_token,
		cache_dir=args.cache_dir, keep_temp=args.keep_temp, **options)

#============================================

def run_project(args, bar: ProgressBar, cancel_token: CancelToken) -> str:
	project = StillcastProject(args.yamlfile, output_override=args.output_file,
		dry_run=args.dry_run, keep_temp=args.keep_temp, cache_dir=args.cache_dir)
	if args.dump_plan:
		plan = project.plan()
		project.cleanup()
		print(yaml.safe_dump(plan, sort_keys=False))
		return None
	return project.run(on_progress=bar.update, cancel_token=cancel_token)

#============================================

def main(argv: list = None) -> int:
	args = parse_args(argv)
	utils.set_quiet_mode(args.quiet)
	cancel_token = CancelToken()
	previous_handler = signal.signal(signal.SIGINT,
		lambda signum, frame: cancel_token.cancel())
	bar = ProgressBar()
	try:
		if args.yamlfile is not None:
			output_file = run_project(args, bar, cancel_token)
		else:
			output_file = run_flat(args, bar, cancel_token)
	except EncodeError as exc:
		bar.close()
		print(f"error: {exc}", file=sys.stderr)
		return 130 if exc.cancelled else 1
	except RuntimeError as exc:
		bar.close()
		print(f"error: {exc}", file=sys.stderr)
		return 1
	finally:
		signal.signal(signal.SIGINT, previous_handler)
	bar.close()
	if output_file is not None:
		print(f"Video created successfully: {output_file}")
	return 0


if __name__ == '__main__':
	sys.exit(main())
