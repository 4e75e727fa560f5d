#!/usr/bin/env python3

# Standard Library
import argparse
import json
import os

# PIP3 modules
import yaml
from tqdm import tqdm

# local repo modules
from detailtracklib import tracker
from detailtracklib.core import config
from detailtracklib.core import pixelbuffer
from detailtracklib.core import utils

#============================================

DEFAULT_CONFIG_PATH = "detailtrack_config.yml"

#============================================

def parse_args() -> argparse.Namespace:
	"""
	Parse command-line arguments.

	Returns:
		argparse.Namespace: Parsed CLI args.
	"""
	parser = argparse.ArgumentParser(
		description="Track small details through frames and compute the alignment transforms."
	)
	parser.add_argument(
		"-r", "--reference", dest="reference_file", default=None,
		help="Reference (first) frame image."
	)
	parser.add_argument(
		"-f", "--frames", dest="frame_files", nargs="+", default=[],
		help="Frame images to align onto the reference frame, in order."
	)
	parser.add_argument(
		"-p", "--points", dest="points", nargs="+", default=[],
		help="Up to 4 detail coordinates on the reference frame as x,y."
	)
	parser.add_argument(
		"-m", "--mask", dest="mask_file", default=None,
		help="Optional background mask image (reference size, white = compare) for probe refinement."
	)
	parser.add_argument(
		"-c", "--config", dest="config_file", default=None,
		help="Optional config YAML path (if missing, defaults are written and then read)."
	)
	parser.add_argument(
		"--write-default-config", dest="write_default_config", action="store_true",
		help="Write the default config file and exit 0."
	)
	parser.add_argument(
		"-o", "--output", dest="output_file", default=None,
		help="Report file path (yaml or json per tracking.report_format)."
	)
	parser.add_argument(
		"-q", "--quiet", dest="quiet", action="store_true",
		help="No progress output."
	)
	parser.add_argument(
		"-d", "--debug", dest="debug", action="store_true",
		help="Trace the tracking algorithms on stderr."
	)
	parser.set_defaults(write_default_config=False)
	parser.set_defaults(quiet=False)
	parser.set_defaults(debug=False)
	return parser.parse_args()

#============================================

def write_report(report_path: str, report: dict, report_format: str) -> None:
	"""
	Write the tracking report.

	Args:
		report_path: Report path.
		report: Report mapping.
		report_format: "yaml" or "json".
	"""
	os.makedirs(os.path.dirname(report_path) or ".", exist_ok=True)
	if report_format == "json":
		text = json.dumps(report, sort_keys=True, indent=2, ensure_ascii=True) + "\n"
	else:
		text = yaml.safe_dump(report, sort_keys=False)
	with open(report_path, "w", encoding="utf-8") as handle:
		handle.write(text)
	return

#============================================

def resolve_settings(config_file: str | None) -> dict:
	"""
	Settings from the config file, the code defaults when none is given.
	"""
	if config_file is None:
		return config.build_settings(config.default_config(), "<code defaults>")
	if not os.path.exists(config_file):
		config.write_config_file(config_file, config.default_config())
		if not utils.is_quiet_mode():
			print(f"Wrote default config: {config_file}")
	data = config.load_config(config_file)
	return config.build_settings(data, config_file)

#============================================

def main() -> None:
	"""
	Main entry point.
	"""
	args = parse_args()
	if args.quiet:
		utils.set_quiet_mode(True)
	if args.write_default_config:
		config_path = args.config_file or DEFAULT_CONFIG_PATH
		if os.path.exists(config_path):
			raise RuntimeError(f"config already exists: {config_path}")
		config.write_config_file(config_path, config.default_config())
		print(f"Wrote default config: {config_path}")
		return
	if args.reference_file is None:
		raise RuntimeError("missing required -r/--reference")
	if len(args.frame_files) == 0:
		raise RuntimeError("missing required -f/--frames")
	if len(args.points) == 0:
		raise RuntimeError("missing required -p/--points")
	if args.output_file is None or str(args.output_file).strip() == "":
		raise RuntimeError("missing required -o/--output")
	points = [utils.parse_point(text) for text in args.points]
	settings = resolve_settings(args.config_file)
	for frame_file in args.frame_files:
		utils.ensure_file_exists(frame_file)
	reference_buffer = pixelbuffer.load_pixel_buffer(args.reference_file)
	reference_mask = None
	if args.mask_file is not None:
		reference_mask = pixelbuffer.load_mask(args.mask_file)
		if reference_mask.shape != (reference_buffer.height, reference_buffer.width):
			raise RuntimeError(f"mask size does not match the reference frame: {args.mask_file}")
	detail_tracker = tracker.DetailTracker(settings, tracer=utils.Tracer(enabled=args.debug))
	detail_tracker.start(reference_buffer, points, reference_mask=reference_mask)
	frame_iter = enumerate(args.frame_files, start=1)
	if not utils.is_quiet_mode():
		frame_iter = tqdm(frame_iter, total=len(args.frame_files))
	results = []
	for frame_number, frame_file in frame_iter:
		frame_buffer = pixelbuffer.load_pixel_buffer(frame_file)
		frame_result = detail_tracker.track(frame_buffer, frame_number)
		frame_data = frame_result.to_dict()
		frame_data["file"] = frame_file
		results.append(frame_data)
	report = {
		config.CONFIG_HEADER_KEY: config.CONFIG_HEADER_VALUE,
		"reference": args.reference_file,
		"mask": args.mask_file,
		"width": reference_buffer.width,
		"height": reference_buffer.height,
		"points": [list(point) for point in points],
		"lost_trace_count": detail_tracker.lost_trace_count,
		"settings": settings,
		"frames": results,
	}
	write_report(args.output_file, report, settings["tracking"]["report_format"])
	if not utils.is_quiet_mode():
		print(f"Wrote report: {args.output_file}")
	return

#============================================

if __name__ == "__main__":
	main()
