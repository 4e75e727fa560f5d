#!/usr/bin/env python3

"""
Correspondence data model and selection of the best 1, 2 or 4 points.
"""

# Standard Library
import dataclasses

# local repo modules
from detailtracklib.core import config
from detailtracklib.core import utils

#============================================

MAX_CORRESPONDENCES = 4

STATUS_UNSELECTED = "unselected"
STATUS_SELECTED = "selected"
STATUS_UNUSABLE = "unusable"

# frame corner order used by 4 point mode
CORNER_NAMES = ("upper_left", "upper_right", "lower_left", "lower_right")

#============================================

@dataclasses.dataclass
class PixelCoord:
	x: int
	y: int
	valid: bool = True
	colordiff: float = 0.0
	status: str = STATUS_UNSELECTED

	#============================
	def as_tuple(self) -> tuple[int, int]:
		return (self.x, self.y)

#============================================

@dataclasses.dataclass
class Correspondence:
	reference: PixelCoord
	current: PixelCoord
	untuned: PixelCoord | None = None

	#============================
	def is_valid(self) -> bool:
		return self.reference.valid and self.current.valid

	#============================
	def movement(self) -> tuple[int, int]:
		return (self.current.x - self.reference.x, self.current.y - self.reference.y)

	#============================
	def quality(self) -> float:
		return coord_quality(self.reference) * coord_quality(self.current)

#============================================

class CorrespondenceSet():
	"""
	Fixed capacity list of (reference, current, untuned) triples.

	Index order carries no meaning until pick_corners assigns corner roles.
	"""
	def __init__(self, capacity: int = MAX_CORRESPONDENCES):
		self.capacity = capacity
		self.pairs = []

	#============================
	def add(self, reference: PixelCoord, current: PixelCoord,
		untuned: PixelCoord | None = None) -> Correspondence:
		if len(self.pairs) >= self.capacity:
			raise RuntimeError(f"correspondence set is full ({self.capacity} pairs)")
		pair = Correspondence(reference=reference, current=current, untuned=untuned)
		self.pairs.append(pair)
		return pair

	#============================
	def __len__(self) -> int:
		return len(self.pairs)

	#============================
	def __getitem__(self, index: int) -> Correspondence:
		return self.pairs[index]

	#============================
	def __iter__(self):
		return iter(self.pairs)

	#============================
	def valid_count(self) -> int:
		return sum(1 for pair in self.pairs if pair.is_valid())

	#============================
	def reset_status(self) -> None:
		for pair in self.pairs:
			pair.current.status = STATUS_UNSELECTED
		return

#============================================

def coord_quality(coord: PixelCoord) -> float:
	"""
	Quality of one tracked coordinate, 1 - colordiff clamped to [0, 1].

	Invalid coordinates have quality 0.
	"""
	if not coord.valid:
		return 0.0
	return min(1.0, max(0.0, 1.0 - coord.colordiff))

#============================================

def pick_corners(corr_set: CorrespondenceSet, width: int, height: int,
	tracer: utils.Tracer | None = None) -> list[int] | None:
	"""
	Assign each frame corner the point whose reference lies nearest to it.

	Assignment is greedy over all corners at once: every round takes the
	globally smallest remaining point/corner distance, so a point serves
	one corner only. Ties keep the earliest found minimum.

	Args:
		corr_set: Exactly 4 valid correspondences.
		width: Frame width.
		height: Frame height.
		tracer: Debug output sink.

	Returns:
		list[int] | None: Point index per corner in CORNER_NAMES order, or
		None when the set does not hold 4 valid pairs.
	"""
	tracer = utils.resolve_tracer(tracer)
	if len(corr_set) != MAX_CORRESPONDENCES or corr_set.valid_count() != MAX_CORRESPONDENCES:
		tracer.trace(f"pick corners: need 4 valid pairs, got {corr_set.valid_count()} of {len(corr_set)}")
		return None
	corners = [(0, 0), (width, 0), (0, height), (width, height)]
	assignment = [None, None, None, None]
	used_points = set()
	for _round in range(len(corners)):
		min_sqr_dist = (width + height) * (width + height)
		pick = None
		for idx, pair in enumerate(corr_set):
			if idx in used_points:
				continue
			for corner_idx, (corner_x, corner_y) in enumerate(corners):
				if assignment[corner_idx] is not None:
					continue
				sqr_dist = utils.sqr_distance(pair.reference.x, pair.reference.y, corner_x, corner_y)
				if sqr_dist < min_sqr_dist:
					min_sqr_dist = sqr_dist
					pick = (idx, corner_idx)
		if pick is None:
			break
		assignment[pick[1]] = pick[0]
		used_points.add(pick[0])
	if any(idx is None for idx in assignment):
		tracer.trace(f"pick corners: incomplete assignment {assignment}")
		return None
	for corner_idx, idx in enumerate(assignment):
		ref = corr_set[idx].reference
		tracer.trace(f"pick corners: {CORNER_NAMES[corner_idx]} <- point {idx} ref:({ref.x},{ref.y})")
	return assignment

#============================================

def _movement_consensus(corr_set: CorrespondenceSet, move_radius: int,
	select_settings: dict) -> tuple[float, float, int, int]:
	"""
	Average movement vector with extreme movements left out.

	Returns:
		tuple: (avg_x, avg_y, tolerance, count of points in the last average)
	"""
	tolerance = max(select_settings["min_move_tolerance"],
		move_radius // select_settings["move_tolerance_divisor"])
	loops = select_settings["average_loops"]
	movements = [pair.movement() for pair in corr_set if pair.is_valid()]
	avg_x = 0.0
	avg_y = 0.0
	count = 0
	for loop in range(loops):
		sum_x = 0
		sum_y = 0
		count = 0
		for move_x, move_y in movements:
			if loop > 0:
				if abs(move_x - avg_x) >= tolerance or abs(move_y - avg_y) >= tolerance:
					continue
			sum_x += move_x
			sum_y += move_y
			count += 1
		if count > 0:
			avg_x = sum_x / count
			avg_y = sum_y / count
			if loop == 0:
				continue
			if count > 2:
				break
			if loop == loops - 1:
				break
			# too few points agree, widen the tolerance
			tolerance += tolerance // 2
		elif len(movements) > 1:
			tolerance += tolerance // 2
		else:
			break
	return (avg_x, avg_y, tolerance, count)

#============================================

def select_best_pair(corr_set: CorrespondenceSet, move_radius: int, settings: dict | None = None,
	tracer: utils.Tracer | None = None) -> list[int]:
	"""
	Pick the two points best suited for a rotation/scale estimate.

	Points whose movement vector departs from the consensus movement by
	more than the tolerance are outliers. Among the remaining pairs the
	one maximizing squared distance times squared pair quality wins.

	Args:
		corr_set: Correspondences.
		move_radius: Search radius used to locate the points.
		settings: Normalized settings or the select section.
		tracer: Debug output sink.

	Returns:
		list[int]: Two indices, a single index when no pair qualifies,
		or an empty list when no point has quality.
	"""
	select_settings = config.section(settings, "select")
	tracer = utils.resolve_tracer(tracer)
	avg_x, avg_y, tolerance, consensus_count = _movement_consensus(corr_set, move_radius, select_settings)
	tracer.trace(f"select pair: avg move ({avg_x:.2f},{avg_y:.2f}) tolerance:{tolerance} count:{consensus_count}")

	def is_outlier(pair: Correspondence) -> bool:
		if consensus_count <= 1:
			return False
		move_x, move_y = pair.movement()
		return abs(move_x - avg_x) > tolerance or abs(move_y - avg_y) > tolerance

	max_weight = 0.0
	max_solo_quality = 0.0
	best_pair = None
	solo_pick = None
	for idx1, pair1 in enumerate(corr_set):
		solo_quality = pair1.quality()
		if solo_quality <= 0.0:
			continue
		if is_outlier(pair1):
			tracer.trace(f"select pair: point {idx1} movement {pair1.movement()} is an outlier")
			continue
		if solo_quality > max_solo_quality:
			max_solo_quality = solo_quality
			solo_pick = idx1
		for idx2 in range(idx1 + 1, len(corr_set)):
			pair2 = corr_set[idx2]
			if not pair2.current.valid or is_outlier(pair2):
				continue
			quality = solo_quality * pair2.quality()
			sqr_dist = utils.sqr_distance(pair1.current.x, pair1.current.y, pair2.current.x, pair2.current.y)
			# squared distance goes with squared quality
			weight = sqr_dist * quality * quality
			if weight > max_weight:
				max_weight = weight
				best_pair = [idx1, idx2]
	if max_weight > 0.0 and best_pair is not None:
		return best_pair
	if solo_pick is None:
		return []
	return [solo_pick]

#============================================

def select_best_single(corr_set: CorrespondenceSet, previous_index: int | None = None,
	settings: dict | None = None) -> list[int]:
	"""
	Pick the highest quality point, keeping the previous frame's pick when
	it is nearly as good.
	"""
	select_settings = config.section(settings, "select")
	qualities = [pair.quality() for pair in corr_set]
	if len(qualities) == 0:
		return []
	best_quality = max(qualities)
	if best_quality <= 0.0:
		return []
	near_limit = best_quality * (1.0 - select_settings["same_quality_margin"])
	candidates = [idx for idx, quality in enumerate(qualities) if quality >= near_limit]
	if previous_index is not None and previous_index in candidates:
		return [previous_index]
	return [qualities.index(best_quality)]

#============================================

def select_best_points(corr_set: CorrespondenceSet, mode: int, previous_selection: list[int] | None = None,
	width: int | None = None, height: int | None = None, move_radius: int = 70,
	settings: dict | None = None, tracer: utils.Tracer | None = None) -> list[int]:
	"""
	Select the points used for alignment in the given mode.

	Args:
		corr_set: Correspondences of the current frame.
		mode: 4 (perspective), 2 (similarity) or 1 (translation).
		previous_selection: Indices selected for the previous frame.
		width: Frame width, required for mode 4.
		height: Frame height, required for mode 4.
		move_radius: Search radius used to locate the points.
		settings: Normalized settings.
		tracer: Debug output sink.

	Returns:
		list[int]: Selected indices (corner order for mode 4), empty on failure.
	"""
	corr_set.reset_status()
	for pair in corr_set:
		if pair.quality() <= 0.0:
			pair.current.status = STATUS_UNUSABLE
	if mode == 4:
		if width is None or height is None:
			raise RuntimeError("4 point selection needs the frame width and height")
		selection = pick_corners(corr_set, width, height, tracer=tracer) or []
	elif mode == 2:
		selection = select_best_pair(corr_set, move_radius, settings=settings, tracer=tracer)
	elif mode == 1:
		previous_index = None
		if previous_selection:
			previous_index = previous_selection[0]
		selection = select_best_single(corr_set, previous_index=previous_index, settings=settings)
	else:
		raise RuntimeError(f"unsupported selection mode {mode}")
	for idx in selection:
		corr_set[idx].current.status = STATUS_SELECTED
	return selection
