#!/usr/bin/env python3

"""
Locate a reference detail in a target buffer.

The search walks offsets (dx, dy) for dx, dy in 0..move_radius and tries
the four symmetric candidates of each offset before moving on. Every
candidate compares the (2r+1) x (2r+1) neighborhood of the reference
coordinate with the neighborhood of the candidate.
"""

# Standard Library
import dataclasses

# PIP3 modules
import numpy

# local repo modules
from detailtracklib import colordiff
from detailtracklib.core import config
from detailtracklib.core import utils
from detailtracklib.core.pixelbuffer import PixelBuffer

#============================================

@dataclasses.dataclass
class LocateResult:
	x: int
	y: int
	avg_colordiff: float = 1.0
	found: bool = False
	pixel_count: int = 0
	attempts: int = 0
	cancelled: int = 0
	finished: bool = False

#============================================

@dataclasses.dataclass
class _SearchState:
	"""Running best-match accumulator owned by one locate() call."""
	best_x: int
	best_y: int
	best_sum: float
	good_sum: float
	best_avg: float
	best_distance: float
	best_count: int = 0
	attempts: int = 0
	cancelled: int = 0
	finished: bool = False

#============================================

def _intersect(x: int, y: int, width: int, height: int, limit_w: int, limit_h: int):
	x0 = max(0, x)
	y0 = max(0, y)
	x1 = min(limit_w, x + width)
	y1 = min(limit_h, y + height)
	if x1 <= x0 or y1 <= y0:
		return None
	return (x0, y0, x1 - x0, y1 - y0)

#============================================

def _comparable(rgba: numpy.ndarray, has_alpha: bool, opacity_level: int) -> numpy.ndarray:
	if not has_alpha:
		return numpy.ones(rgba.shape[:2], dtype=bool)
	return rgba[:, :, 3] >= opacity_level

#============================================

def _attempt_at(state: _SearchState, search: dict, px: int, py: int) -> None:
	ref_buffer = search["ref_buffer"]
	target_buffer = search["target_buffer"]
	ref_x = search["ref_x"]
	ref_y = search["ref_y"]
	ref_rect = search["ref_rect"]
	rx1, ry1, r_width, r_height = ref_rect
	left_radius = ref_x - rx1
	upper_radius = ref_y - ry1
	origin_x = px - left_radius
	origin_y = py - upper_radius
	target_rect = _intersect(origin_x, origin_y, r_width, r_height,
		target_buffer.width, target_buffer.height)
	if target_rect is None:
		return
	tx1, ty1, common_w, common_h = target_rect
	# near borders the common area gets too small for a reliable compare
	if common_w < search["width_required"] or common_h < search["height_required"]:
		return
	state.attempts += 1
	ref_x0 = rx1 + (tx1 - origin_x)
	ref_y0 = ry1 + (ty1 - origin_y)
	ref_block = ref_buffer.rgba[ref_y0:ref_y0 + common_h, ref_x0:ref_x0 + common_w]
	target_block = target_buffer.rgba[ty1:ty1 + common_h, tx1:tx1 + common_w]
	opacity_level = search["opacity_level"]
	mask = _comparable(ref_block, ref_buffer.has_alpha, opacity_level)
	mask &= _comparable(target_block, target_buffer.has_alpha, opacity_level)
	sums = colordiff.area_diff_sums(ref_block, target_block, search["metric"])
	sums = numpy.where(mask, sums, 0.0)
	row_sums = numpy.cumsum(sums.sum(axis=1))
	involved = int(mask.sum())
	# rows are checked in order, the attempt is dropped once it can not win
	over = row_sums > state.good_sum
	if over.any():
		if state.best_count >= search["almost_full_count"]:
			state.cancelled += 1
			return
		if (over & (row_sums >= (state.best_sum + state.best_sum))).any():
			state.cancelled += 1
			return
	sum_diff = float(row_sums[-1])
	if involved < search["required_count"] or sum_diff > state.good_sum:
		return
	avg_diff = (sum_diff / involved) / colordiff.MAX_CHANNEL_SUM
	current_distance = utils.sqr_distance(px, py, ref_x, ref_y)
	better = avg_diff < state.best_avg
	if not better and avg_diff <= state.best_avg and current_distance < state.best_distance:
		better = True
	if not better:
		return
	state.best_sum = sum_diff
	state.best_count = involved
	state.best_x = px
	state.best_y = py
	state.good_sum = sum_diff * search["good_match_factor"]
	state.best_avg = avg_diff
	state.best_distance = current_distance
	search["tracer"].trace(
		f"locate FOUND x:{px} y:{py} sqr_dist:{current_distance} "
		f"sum:{sum_diff} count:{involved} avg:{avg_diff:.5f}"
	)
	if current_distance <= search["finish_sqr_distance"] and sum_diff == 0:
		state.finished = True
	return

#============================================

def locate(ref_buffer: PixelBuffer, ref_x: int, ref_y: int, shape_radius: int,
	target_buffer: PixelBuffer, move_radius: int, offset_x: int = 0, offset_y: int = 0,
	settings: dict | None = None, tracer: utils.Tracer | None = None) -> LocateResult:
	"""
	Find the position in target_buffer that best matches a reference detail.

	Args:
		ref_buffer: Buffer holding the reference detail.
		ref_x: Reference x coordinate.
		ref_y: Reference y coordinate.
		shape_radius: Radius r of the compared (2r+1) square.
		target_buffer: Buffer to search in.
		move_radius: Largest offset tried on each axis.
		offset_x: Start the search at ref_x + offset_x.
		offset_y: Start the search at ref_y + offset_y.
		settings: Normalized settings or the locate section.
		tracer: Debug output sink.

	Returns:
		LocateResult: Best position and its average color difference,
		or the reference coordinate with 1.0 when nothing matched.
	"""
	locate_settings = config.section(settings, "locate")
	tracer = utils.resolve_tracer(tracer)
	result = LocateResult(x=ref_x, y=ref_y)
	diameter = 1 + shape_radius + shape_radius
	full_area_count = diameter * diameter
	ref_rect = _intersect(ref_x - shape_radius, ref_y - shape_radius, diameter, diameter,
		ref_buffer.width, ref_buffer.height)
	if ref_rect is None:
		tracer.trace(f"locate: reference x:{ref_x} y:{ref_y} outside of buffer")
		return result
	max_pixel_count = max(ref_buffer.width, target_buffer.width) * max(ref_buffer.height, target_buffer.height)
	worst_sum = float(max_pixel_count) * colordiff.MAX_CHANNEL_SUM
	finish_radius = locate_settings["finish_radius"]
	search = {
		"ref_buffer": ref_buffer,
		"target_buffer": target_buffer,
		"ref_x": ref_x,
		"ref_y": ref_y,
		"ref_rect": ref_rect,
		"width_required": (diameter * 2) // 3,
		"height_required": (diameter * 2) // 3,
		"required_count": int(full_area_count * locate_settings["required_area_ratio"]),
		"almost_full_count": int(full_area_count * locate_settings["almost_full_ratio"]),
		"finish_sqr_distance": finish_radius * finish_radius,
		"good_match_factor": locate_settings["good_match_factor"],
		"opacity_level": locate_settings["opacity_level"],
		"metric": locate_settings["metric"],
		"tracer": tracer,
	}
	state = _SearchState(
		best_x=ref_x,
		best_y=ref_y,
		best_sum=worst_sum,
		good_sum=worst_sum,
		best_avg=1.0,
		best_distance=float(max_pixel_count),
	)
	base_x = ref_x + offset_x
	base_y = ref_y + offset_y
	for dx in range(move_radius + 1):
		for dy in range(move_radius + 1):
			candidates = [(base_x + dx, base_y + dy)]
			if dx > 0:
				candidates.append((base_x - dx, base_y + dy))
			if dy > 0:
				candidates.append((base_x + dx, base_y - dy))
			if dx > 0 and dy > 0:
				candidates.append((base_x - dx, base_y - dy))
			for px, py in candidates:
				_attempt_at(state, search, px, py)
				if state.finished:
					break
			if state.finished:
				break
		if state.finished:
			break
	result.attempts = state.attempts
	result.cancelled = state.cancelled
	result.finished = state.finished
	if state.best_count > 0:
		result.x = state.best_x
		result.y = state.best_y
		result.found = True
		result.pixel_count = state.best_count
		result.avg_colordiff = (state.best_sum / state.best_count) / colordiff.MAX_CHANNEL_SUM
	tracer.trace(
		f"locate ref x:{ref_x} y:{ref_y} -> x:{result.x} y:{result.y} "
		f"avg:{result.avg_colordiff:.5f} attempts:{state.attempts} cancelled:{state.cancelled}"
	)
	return result

#============================================

def colordiff_opaque_pixels(ref_buffer: PixelBuffer, target_buffer: PixelBuffer,
	required_pixel_count: int, mask: numpy.ndarray | None = None,
	opacity_level: int = 50) -> tuple[float, int]:
	"""
	Average simple RGB difference over pixels opaque in both buffers.

	Args:
		ref_buffer: Reference buffer.
		target_buffer: Buffer compared against the reference.
		required_pixel_count: Minimum number of compared pixels.
		mask: Optional bool array (reference size) restricting the area.
		opacity_level: Alpha below this level is not compared.

	Returns:
		tuple: (avg_colordiff, compared_count); avg_colordiff is 1.0 when
		fewer than required_pixel_count pixels were compared.
	"""
	width = min(ref_buffer.width, target_buffer.width)
	height = min(ref_buffer.height, target_buffer.height)
	ref_block = ref_buffer.rgba[:height, :width]
	target_block = target_buffer.rgba[:height, :width]
	comparable = _comparable(ref_block, ref_buffer.has_alpha, opacity_level)
	comparable &= _comparable(target_block, target_buffer.has_alpha, opacity_level)
	if mask is not None:
		comparable &= numpy.asarray(mask, dtype=bool)[:height, :width]
	compared_count = int(comparable.sum())
	if compared_count < required_pixel_count or compared_count == 0:
		return (1.0, compared_count)
	sums = colordiff.simple_rgb_sums(ref_block, target_block)
	sum_diff = float(sums[comparable].sum())
	return ((sum_diff / compared_count) / colordiff.MAX_CHANNEL_SUM, compared_count)
