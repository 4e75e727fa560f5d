#!/usr/bin/env python3

"""
Near-pixel tuning of located coordinates via color relations.

A color relation array holds, for every pixel of a small square
neighborhood, the R/G/B difference of the neighborhood center pixel to
that pixel. Comparing relations instead of raw colors makes the tuning
insensitive to global brightness drift between frames.
"""

# Standard Library
import dataclasses

# PIP3 modules
import numpy

# local repo modules
from detailtracklib.core import config
from detailtracklib.core import utils
from detailtracklib.core.pixelbuffer import PixelBuffer

#============================================

@dataclasses.dataclass(frozen=True)
class TuneOffset:
	dx: int
	dy: int
	rel_diff: float
	valid: bool = True

#============================================

@dataclasses.dataclass
class RelationArray:
	values: numpy.ndarray
	empty: numpy.ndarray

#============================================

class ColorRelation():
	"""
	Raw colors of a square neighborhood plus its empty-cell mask.

	Cells are indexed [row, col]; cell (center, center) is the fetch
	coordinate. Transparent (alpha 0) and out-of-bounds cells are empty.
	"""
	def __init__(self, colors: numpy.ndarray, empty: numpy.ndarray):
		self.colors = colors
		self.empty = empty
		self.size = int(colors.shape[0])
		self.center = self.size // 2

	#============================
	@classmethod
	def fetch(cls, buffer: PixelBuffer, center_x: int, center_y: int, size: int = 37) -> "ColorRelation":
		center = size // 2
		rgba, inside = buffer.region(center_x - center, center_y - center, size, size)
		empty = ~inside
		if buffer.has_alpha:
			empty |= (rgba[:, :, 3] == 0)
		return cls(rgba[:, :, :3].astype(numpy.int32), empty)

	#============================
	def relation(self, center_col: int, center_row: int) -> RelationArray:
		center_color = self.colors[center_row, center_col]
		values = center_color[numpy.newaxis, numpy.newaxis, :] - self.colors
		values = numpy.where(self.empty[:, :, numpy.newaxis], 0, values)
		return RelationArray(values=values, empty=self.empty)

	#============================
	def pixel_count(self) -> int:
		return int((~self.empty).sum())

#============================================

def required_pixel_count(array_size: int, border: int) -> int:
	inner = array_size - (1 + border + border)
	return inner * inner

#============================================

def relation_difference(ref_relation: RelationArray, target_relation: RelationArray,
	dx: int, dy: int, border: int) -> tuple[float, int]:
	"""
	Mean absolute relation discrepancy over jointly non-empty cells.

	The reference inner square (border trimmed) is compared with the
	target square shifted by (dx, dy).

	Returns:
		tuple: (relative difference normalized by 255*3, compared count)
	"""
	size = ref_relation.values.shape[0]
	lo = border
	hi = size - border
	ref_values = ref_relation.values[lo:hi, lo:hi]
	ref_empty = ref_relation.empty[lo:hi, lo:hi]
	target_values = target_relation.values[lo + dy:hi + dy, lo + dx:hi + dx]
	target_empty = target_relation.empty[lo + dy:hi + dy, lo + dx:hi + dx]
	joint = ~(ref_empty | target_empty)
	count = int(joint.sum())
	if count == 0:
		return (0.0, 0)
	abs_diff = numpy.abs(ref_values - target_values).sum(axis=2)
	total = float(abs_diff[joint].sum())
	return (total / (count * 255 * 3), count)

#============================================

def _trial_offsets(max_offset: int) -> list[int]:
	offsets = [0]
	for step in range(1, max_offset + 1):
		offsets.append(-step)
		offsets.append(step)
	return offsets

#============================================

def find_tune_offsets(ref_buffer: PixelBuffer, target_buffer: PixelBuffer,
	ref_coord: tuple[int, int], target_coord: tuple[int, int],
	q_factor: float | None = None, settings: dict | None = None,
	tracer: utils.Tracer | None = None) -> list[TuneOffset]:
	"""
	Rank the near offsets of a located coordinate by color relation match.

	Args:
		ref_buffer: Buffer with the reference detail.
		target_buffer: Buffer where the detail was located.
		ref_coord: Reference (x, y).
		target_coord: Located (x, y) in the target buffer.
		q_factor: Entries worse than best * q_factor are marked invalid.
		settings: Normalized settings or the tune section.
		tracer: Debug output sink.

	Returns:
		list[TuneOffset]: Ascending by rel_diff, ties in trial order. The
		zero offset is always present.
	"""
	tune_settings = config.section(settings, "tune")
	tracer = utils.resolve_tracer(tracer)
	if q_factor is None:
		q_factor = tune_settings["q_factor"]
	array_size = tune_settings["array_size"]
	border = tune_settings["border"]
	required = required_pixel_count(array_size, border)
	ref_colors = ColorRelation.fetch(ref_buffer, ref_coord[0], ref_coord[1], array_size)
	target_colors = ColorRelation.fetch(target_buffer, target_coord[0], target_coord[1], array_size)
	center = array_size // 2
	ref_relation = ref_colors.relation(center, center)
	trials = []
	offsets = _trial_offsets(tune_settings["max_offset"])
	for dy in offsets:
		for dx in offsets:
			target_relation = target_colors.relation(center + dx, center + dy)
			rel_diff, count = relation_difference(ref_relation, target_relation, dx, dy, border)
			tracer.trace(f"tune dx:{dx} dy:{dy} rel_diff:{rel_diff:.6f} count:{count} required:{required}")
			if count >= required:
				trials.append(TuneOffset(dx=dx, dy=dy, rel_diff=rel_diff))
	# python sorting is stable, equal rel_diff keeps the trial order
	shortlist = sorted(trials, key=lambda elem: elem.rel_diff)
	if not any(elem.dx == 0 and elem.dy == 0 for elem in shortlist):
		shortlist.append(TuneOffset(dx=0, dy=0, rel_diff=1.0))
	best_rel_diff = shortlist[0].rel_diff
	pruned = []
	for elem in shortlist:
		if elem.rel_diff > best_rel_diff * q_factor:
			elem = dataclasses.replace(elem, valid=False)
		pruned.append(elem)
	tracer.trace(
		f"tune ref:{ref_coord} target:{target_coord} candidates:{len(pruned)} "
		f"valid:{count_valid(pruned)} best:({pruned[0].dx},{pruned[0].dy}) {best_rel_diff:.6f}"
	)
	return pruned

#============================================

def count_valid(shortlist: list[TuneOffset]) -> int:
	return sum(1 for elem in shortlist if elem.valid)

#============================================

def valid_offsets(shortlist: list[TuneOffset]) -> list[TuneOffset]:
	return [elem for elem in shortlist if elem.valid]

#============================================

def _truncated_div(value: int, divisor: int) -> int:
	# integer division rounding toward zero
	return int(value / divisor)

#============================================

def shortlist_from_coords(tuned: tuple[int, int], untuned: tuple[int, int]) -> list[TuneOffset]:
	"""
	Offsets on the line from a tuned coordinate toward its untuned origin.

	Returns a single zero offset when both coordinates are equal and up
	to five offsets otherwise, all with rel_diff 0.
	"""
	offset_x = untuned[0] - tuned[0]
	offset_y = untuned[1] - tuned[1]
	max_abs = max(abs(offset_x), abs(offset_y))
	shortlist = [TuneOffset(0, 0, 0.0)]
	if max_abs > 3:
		shortlist.append(TuneOffset(_truncated_div(offset_x, 4), _truncated_div(offset_y, 4), 0.0))
	if max_abs > 1:
		shortlist.append(TuneOffset(_truncated_div(offset_x, 2), _truncated_div(offset_y, 2), 0.0))
	if max_abs == 3:
		shortlist.append(TuneOffset(_truncated_div(offset_x, 3), _truncated_div(offset_y, 3), 0.0))
	if max_abs > 3:
		shortlist.append(TuneOffset(
			_truncated_div(offset_x, 2) + _truncated_div(offset_x, 4),
			_truncated_div(offset_y, 2) + _truncated_div(offset_y, 4),
			0.0,
		))
	if max_abs > 0:
		shortlist.append(TuneOffset(offset_x, offset_y, 0.0))
	return shortlist

#============================================

def merge_shortlists(list_a: list[TuneOffset] | None, list_b: list[TuneOffset] | None) -> list[TuneOffset]:
	"""
	Concatenate two shortlists, invalidating offsets of list_b already
	offered by a valid entry of list_a.
	"""
	if not list_a:
		return list(list_b or [])
	if not list_b:
		return list(list_a)
	taken = set((elem.dx, elem.dy) for elem in list_a if elem.valid)
	merged = list(list_a)
	for elem in list_b:
		if elem.valid and (elem.dx, elem.dy) in taken:
			elem = dataclasses.replace(elem, valid=False)
		merged.append(elem)
	return merged

#============================================

def is_strong_shortlist(shortlist: list[TuneOffset], nearly_same_factor: float,
	strong_rel_diff: float) -> bool:
	"""
	True when the first entry is good enough and clearly ahead of the second.

	The shortlist must already be sorted by ascending rel_diff.
	"""
	if len(shortlist) == 0:
		return False
	first = shortlist[0]
	if first.rel_diff > strong_rel_diff:
		return False
	if len(shortlist) > 1:
		if shortlist[1].rel_diff <= first.rel_diff * nearly_same_factor:
			return False
	return True

#============================================

def filter_shortlist(shortlist: list[TuneOffset], settings: dict | None = None,
	tracer: utils.Tracer | None = None) -> list[TuneOffset]:
	"""
	Reduce a strong shortlist to its winner, cap a weak one.

	Args:
		shortlist: Sorted shortlist.
		settings: Normalized settings or the tune section.
		tracer: Debug output sink.

	Returns:
		list[TuneOffset]: Same entries, surplus ones marked invalid.
	"""
	tune_settings = config.section(settings, "tune")
	tracer = utils.resolve_tracer(tracer)
	strong = is_strong_shortlist(shortlist, tune_settings["nearly_same_factor"],
		tune_settings["strong_rel_diff"])
	keep_count = tune_settings["max_candidates"]
	if strong:
		keep_count = 1
	filtered = []
	valid_count = 0
	for elem in shortlist:
		if elem.valid:
			valid_count += 1
			if valid_count > keep_count:
				elem = dataclasses.replace(elem, valid=False)
		filtered.append(elem)
	label = "weak"
	if strong:
		label = "STRONG"
	tracer.trace(f"filter shortlist {label} valid:{valid_count} remaining:{count_valid(filtered)}")
	return filtered

#============================================

def pick_nearest_to_predicted(shortlist: list[TuneOffset], base_x: int, base_y: int,
	predicted_x: float, predicted_y: float) -> tuple[int, int]:
	"""
	Tuned coordinate closest to a predicted position.

	Returns:
		tuple: (x, y); the base coordinate when no entry is valid.
	"""
	best = (base_x, base_y)
	min_sqr_dist = None
	for elem in shortlist:
		if not elem.valid:
			continue
		tuned_x = base_x + elem.dx
		tuned_y = base_y + elem.dy
		sqr_dist = utils.sqr_distance(tuned_x, tuned_y, predicted_x, predicted_y)
		if min_sqr_dist is None or sqr_dist < min_sqr_dist:
			min_sqr_dist = sqr_dist
			best = (tuned_x, tuned_y)
	return best

#============================================

def best_offset(shortlist: list[TuneOffset]) -> TuneOffset | None:
	for elem in shortlist:
		if elem.valid:
			return elem
	return None

#============================================

def rebase_shortlist(shortlist: list[TuneOffset], dx: int, dy: int) -> list[TuneOffset]:
	"""Same candidates relative to a coordinate already moved by (dx, dy)."""
	return [dataclasses.replace(elem, dx=elem.dx - dx, dy=elem.dy - dy) for elem in shortlist]
