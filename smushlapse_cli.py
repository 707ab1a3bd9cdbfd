#!/usr/bin/env python3

import argparse
import os
import sys

import yaml

from smushlib.core import config
from smushlib.core import project
from smushlib.core import utils
from smushlib.media import ffmpeg_frames
from smushlib.media import sources

#============================================

def parse_crop(text: str) -> tuple:
	"""
	Parse 'LEFT,RIGHT,TOP,BOTTOM' crop margins in pixels.
	"""
	parts = text.split(',')
	if len(parts) != 4:
		raise argparse.ArgumentTypeError("crop needs four margins: LEFT,RIGHT,TOP,BOTTOM")
	try:
		margins = tuple(int(part) for part in parts)
	except ValueError as exc:
		raise argparse.ArgumentTypeError(f"crop margins must be integers: {text}") from exc
	if min(margins) < 0:
		raise argparse.ArgumentTypeError(f"crop margins must be >= 0: {text}")
	return margins

#============================================

def add_common_args(parser: argparse.ArgumentParser) -> None:
	parser.add_argument('-i', '--input', dest='input_files', action='append', default=None,
		help='input video file, repeat to read several clips back to back')
	parser.add_argument('-S', '--sources', dest='sources_file', default=None,
		help='tab separated clip list: path and optional per-clip filter')
	parser.add_argument('-c', '--config', dest='config_file', default=None,
		help='YAML config file (defaults are used when missing)')
	parser.add_argument('-r', '--fps', dest='output_fps', default=None,
		help='output frame rate, e.g. 60 or 30000/1001')
	parser.add_argument('-b', '--backend', dest='backend', default=None,
		choices=('cpu', 'torch', 'opencv'), help='frame accumulator backend')
	parser.add_argument('-f', '--filter', dest='filter', default=None,
		help='ffmpeg filter chain applied to the source (crop, scale, transpose...)')
	parser.add_argument('--crop', dest='crop', type=parse_crop, default=None,
		help='trim LEFT,RIGHT,TOP,BOTTOM pixels, after any per-clip filter')
	return

#============================================

def parse_args(argv: list = None) -> argparse.Namespace:
	"""
	Parse command-line arguments.
	"""
	parser = argparse.ArgumentParser(description="Adaptive timelapse: merge quiet stretches, keep the action")
	parser.add_argument('-q', '--quiet', dest='quiet', action='store_true',
		help='only print errors')
	subparsers = parser.add_subparsers(dest='command', required=True)

	auto_parser = subparsers.add_parser('auto', help='two-pass adaptive timelapse')
	add_common_args(auto_parser)
	auto_parser.add_argument('-o', '--output', dest='output_file', default=None,
		help='output video file')
	auto_parser.add_argument('-t', '--target-seconds', dest='output_seconds', type=float, default=None,
		help='target output length in seconds')
	auto_parser.add_argument('-m', '--mode', dest='mode', default=None,
		choices=('threshold', 'direct'), help='adaptive schedule strategy')
	auto_parser.add_argument('-s', '--scorer', dest='scorer', default=None,
		choices=('hue', 'compression'), help='pass 1 activity scorer')
	auto_parser.add_argument('--write-default-config', dest='write_default_config', action='store_true',
		help='write the default config next to the input and exit')

	script_parser = subparsers.add_parser('script', help='keyframe scripted timelapse')
	add_common_args(script_parser)
	script_parser.add_argument('-o', '--output', dest='output_file', required=True,
		help='output video file')
	script_parser.add_argument('-k', '--keyframes', dest='keyframes_file', required=True,
		help='YAML keyframe script (timecode: output seconds)')

	table_parser = subparsers.add_parser('table', help='timelapse from a ratio table')
	add_common_args(table_parser)
	table_parser.add_argument('-o', '--output', dest='output_file', required=True,
		help='output video file')
	table_parser.add_argument('-T', '--table', dest='table_file', required=True,
		help='two-column table: input frame index, cumulative output frame index')

	plan_parser = subparsers.add_parser('plan', help='run pass 1 only and summarize the schedule')
	add_common_args(plan_parser)
	plan_parser.add_argument('-t', '--target-seconds', dest='output_seconds', type=float, default=None,
		help='target output length in seconds')
	plan_parser.add_argument('-m', '--mode', dest='mode', default=None,
		choices=('threshold', 'direct'), help='adaptive schedule strategy')
	plan_parser.add_argument('-s', '--scorer', dest='scorer', default=None,
		choices=('hue', 'compression'), help='pass 1 activity scorer')
	plan_parser.add_argument('-d', '--dump', dest='dump', action='store_true',
		help='print the merge schedule as YAML')

	still_parser = subparsers.add_parser('still', help='average image files into one image')
	still_parser.add_argument('-o', '--output', dest='output_file', required=True,
		help='output image file')
	still_parser.add_argument('-b', '--backend', dest='backend', default='cpu',
		choices=('cpu', 'torch', 'opencv'), help='frame accumulator backend')
	still_parser.add_argument('image_files', nargs='+',
		help='images to average, all the same size')

	parser.set_defaults(quiet=False)
	args = parser.parse_args(argv)
	if args.command != 'still':
		if args.input_files is None and args.sources_file is None:
			parser.error('give at least one -i input or a -S sources table')
		if args.input_files is not None and args.sources_file is not None:
			parser.error('use -i inputs or a -S sources table, not both')
	return args

#============================================

def input_clips(args: argparse.Namespace) -> list:
	if args.sources_file is not None:
		return sources.load_sources_table(args.sources_file)
	return sources.as_clips(args.input_files)

#============================================

def default_output_file(input_file: str) -> str:
	root, _ = os.path.splitext(input_file)
	return f"{root}-smushlapse.mp4"

#============================================

def settings_from_args(args: argparse.Namespace, clips: list, mode: str = None) -> dict:
	overrides = {
		'output_fps': getattr(args, 'output_fps', None),
		'output_seconds': getattr(args, 'output_seconds', None),
		'backend': getattr(args, 'backend', None),
		'filter': getattr(args, 'filter', None),
		'scorer': getattr(args, 'scorer', None),
		'mode': mode or getattr(args, 'mode', None),
	}
	settings = project.resolve_settings(clips[0].path, args.config_file, overrides)
	if args.crop is not None:
		crop_filter = ffmpeg_frames.filter_crop(*args.crop)
		settings["filter"] = ffmpeg_frames.join_filters(crop_filter, settings["filter"])
	return settings

#============================================

def main(argv: list = None) -> int:
	args = parse_args(argv)
	utils.set_quiet_mode(args.quiet)
	if args.command == 'still':
		project.average_images(args.image_files, args.output_file, backend=args.backend)
		return 0
	clips = input_clips(args)
	if args.command == 'auto' and args.write_default_config:
		config_path = config.default_config_path(clips[0].path)
		config.write_config_file(config_path, config.default_config())
		if not utils.is_quiet_mode():
			print(f"Wrote default config: {config_path}")
		return 0
	if args.command == 'plan':
		settings = settings_from_args(args, clips)
		schedule = project.plan_schedule(clips, settings)
		if args.dump:
			print(yaml.safe_dump({'schedule': schedule}, default_flow_style=None))
		return 0
	if args.command == 'script':
		settings = settings_from_args(args, clips, mode='keyframes')
		project.make_timelapse(clips, args.output_file, settings,
			keyframes_file=args.keyframes_file)
		return 0
	if args.command == 'table':
		settings = settings_from_args(args, clips, mode='table')
		project.make_timelapse(clips, args.output_file, settings,
			table_file=args.table_file)
		return 0
	settings = settings_from_args(args, clips)
	output_file = args.output_file or default_output_file(clips[0].path)
	project.make_timelapse(clips, output_file, settings)
	return 0


if __name__ == '__main__':
	sys.exit(main())
