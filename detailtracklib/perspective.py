#!/usr/bin/env python3

"""
Four corner perspective solver.

The solver looks for the new positions of the frame corners such that the
perspective transform they define moves every current point onto its
reference point. A direct estimate built from side lines is refined by
nudging single corners until the worst per-axis discrepancy falls below
the target precision.
"""

# Standard Library
import dataclasses
import heapq
import itertools

# local repo modules
from detailtracklib import geo
from detailtracklib import select
from detailtracklib.core import config
from detailtracklib.core import utils

#============================================

@dataclasses.dataclass
class PerspectiveCorners:
	# upper left, upper right, lower left, lower right
	points: list
	width: int
	height: int
	precision: float = 0.2
	precision_threshold: float = 1.4

	#============================
	@classmethod
	def identity(cls, width: int, height: int, precision: float = 0.2,
		precision_threshold: float = 1.4) -> "PerspectiveCorners":
		points = [(0.0, 0.0), (float(width), 0.0), (0.0, float(height)), (float(width), float(height))]
		return cls(points=points, width=width, height=height,
			precision=precision, precision_threshold=precision_threshold)

	#============================
	def copy(self) -> "PerspectiveCorners":
		return dataclasses.replace(self, points=list(self.points))

	#============================
	def matrix(self):
		return geo.perspective_matrix(self.points, self.width, self.height)

	#============================
	def transform(self, x: float, y: float) -> tuple[float, float]:
		return geo.transform_point(self.matrix(), x, y)

	#============================
	def is_identity(self) -> bool:
		identity = PerspectiveCorners.identity(self.width, self.height)
		return list(self.points) == identity.points

	#============================
	def to_dict(self) -> dict:
		keys = ("upper_left", "upper_right", "lower_left", "lower_right")
		data = {}
		for key, (x, y) in zip(keys, self.points):
			data[key] = [float(x), float(y)]
		return data

#============================================

class AlternateCorners():
	"""
	Bounded store of near-solutions keyed by achieved precision.

	A max-heap on precision (stored negated for heapq) keeps the worst
	entry at the root. When full, a new entry replaces the worst one only
	if it is not worse.
	"""
	def __init__(self, capacity: int = 300):
		self.capacity = capacity
		self._heap = []
		self._counter = itertools.count()

	#============================
	def __len__(self) -> int:
		return len(self._heap)

	#============================
	def push(self, precision: float, points) -> bool:
		if self.capacity <= 0:
			return False
		entry = (-precision, next(self._counter), tuple(points))
		if len(self._heap) < self.capacity:
			heapq.heappush(self._heap, entry)
			return True
		if precision > self.worst_precision():
			return False
		heapq.heapreplace(self._heap, entry)
		return True

	#============================
	def worst_precision(self) -> float | None:
		if len(self._heap) == 0:
			return None
		return -self._heap[0][0]

	#============================
	def ordered(self) -> list[tuple[float, tuple]]:
		"""Entries as (precision, points), best first, ties in insertion order."""
		entries = sorted(self._heap, key=lambda elem: (-elem[0], elem[1]))
		return [(-neg_precision, points) for neg_precision, _seq, points in entries]

#============================================

@dataclasses.dataclass
class SolveResult:
	corners: PerspectiveCorners | None
	success: bool
	alternates: AlternateCorners
	achieved_precision: float | None = None
	iterations: int = 0
	converged: bool = False
	corner_indices: list = dataclasses.field(default_factory=list)

#============================================

def _border_delta(border: geo.Line, ref_line: geo.Line, trk_line: geo.Line, axis: int):
	ref_point = border.intersection(ref_line)
	trk_point = border.intersection(trk_line)
	if ref_point is None or trk_point is None:
		return None
	return (ref_point[axis], ref_point[axis] - trk_point[axis])

#============================================

def estimate_corners(ref_points, cur_points, width: int, height: int) -> PerspectiveCorners | None:
	"""
	Direct corner estimate from the four side lines.

	For each side, the line through two reference points and the line
	through the matching current points are intersected with the two
	crossing frame borders. The displacement at those intersections is
	extrapolated along the side to its corner endpoints.

	Args:
		ref_points: Four reference (x, y) in corner order.
		cur_points: Four current (x, y) in corner order.
		width: Frame width.
		height: Frame height.

	Returns:
		PerspectiveCorners | None: None when a side line is degenerate or
		parallel to a border it has to cross.
	"""
	upper = geo.Line.from_points(0.0, 0.0, width, 0.0)
	lower = geo.Line.from_points(0.0, height, width, height)
	left = geo.Line.from_points(0.0, 0.0, 0.0, height)
	right = geo.Line.from_points(width, 0.0, width, height)

	def side_lines(idx_a: int, idx_b: int) -> tuple[geo.Line, geo.Line]:
		ref_line = geo.Line.from_points(ref_points[idx_a][0], ref_points[idx_a][1],
			ref_points[idx_b][0], ref_points[idx_b][1])
		trk_line = geo.Line.from_points(cur_points[idx_a][0], cur_points[idx_a][1],
			cur_points[idx_b][0], cur_points[idx_b][1])
		return (ref_line, trk_line)

	# vertical sides give x displacements at the upper and lower border
	left_ref, left_trk = side_lines(0, 2)
	right_ref, right_trk = side_lines(1, 3)
	# horizontal sides give y displacements at the left and right border
	top_ref, top_trk = side_lines(0, 1)
	bottom_ref, bottom_trk = side_lines(2, 3)
	samples = [
		_border_delta(upper, left_ref, left_trk, 0),
		_border_delta(lower, left_ref, left_trk, 0),
		_border_delta(upper, right_ref, right_trk, 0),
		_border_delta(lower, right_ref, right_trk, 0),
		_border_delta(left, top_ref, top_trk, 1),
		_border_delta(right, top_ref, top_trk, 1),
		_border_delta(left, bottom_ref, bottom_trk, 1),
		_border_delta(right, bottom_ref, bottom_trk, 1),
	]
	if any(sample is None for sample in samples):
		return None
	(top0_x, d0x), (bot2_x, d2x), (top1_x, d1x), (bot3_x, d3x) = samples[:4]
	(left0_y, d0y), (right1_y, d1y), (left2_y, d2y), (right3_y, d3y) = samples[4:]
	top_ext = geo.Line.from_points(top0_x, d0x, top1_x, d1x)
	bottom_ext = geo.Line.from_points(bot2_x, d2x, bot3_x, d3x)
	left_ext = geo.Line.from_points(left0_y, d0y, left2_y, d2y)
	right_ext = geo.Line.from_points(right1_y, d1y, right3_y, d3y)
	dc0x = top_ext.get_y(0.0)
	dc1x = top_ext.get_y(width)
	dc2x = bottom_ext.get_y(0.0)
	dc3x = bottom_ext.get_y(width)
	dc0y = left_ext.get_y(0.0)
	dc2y = left_ext.get_y(height)
	dc1y = right_ext.get_y(0.0)
	dc3y = right_ext.get_y(height)
	points = [
		(dc0x, dc0y),
		(width + dc1x, dc1y),
		(dc2x, height + dc2y),
		(width + dc3x, height + dc3y),
	]
	return PerspectiveCorners(points=points, width=width, height=height)

#============================================

def discrepancies(corners: PerspectiveCorners, ref_points, cur_points) -> tuple[list[float], list[float]]:
	"""Signed reference minus transformed current, per point and axis."""
	matrix = corners.matrix()
	dif_x = []
	dif_y = []
	for (ref_x, ref_y), (cur_x, cur_y) in zip(ref_points, cur_points):
		out_x, out_y = geo.transform_point(matrix, cur_x, cur_y)
		dif_x.append(ref_x - out_x)
		dif_y.append(ref_y - out_y)
	return (dif_x, dif_y)

#============================================

def _largest(values: list[float]) -> float:
	largest = 0.0
	for value in values:
		if abs(value) > abs(largest):
			largest = value
	return largest

#============================================

def solve_perspective(corr_set: select.CorrespondenceSet, width: int, height: int,
	precision: float | None = None, precision_threshold: float | None = None,
	settings: dict | None = None, tracer: utils.Tracer | None = None) -> SolveResult:
	"""
	Corners of the perspective transform mapping current onto reference.

	Args:
		corr_set: Four valid correspondences.
		width: Frame width.
		height: Frame height.
		precision: Target worst discrepancy in pixels.
		precision_threshold: Worst discrepancy below which intermediate
			solutions are kept as alternates.
		settings: Normalized settings or the perspective section.
		tracer: Debug output sink.

	Returns:
		SolveResult: corners None on insufficient or degenerate input;
		identity corners with success False when the result stays worse
		than the sanity bound.
	"""
	perspective_settings = config.section(settings, "perspective")
	tracer = utils.resolve_tracer(tracer)
	if precision is None:
		precision = perspective_settings["precision"]
	if precision_threshold is None:
		precision_threshold = perspective_settings["precision_threshold"]
	alternates = AlternateCorners(perspective_settings["max_alternates"])
	assignment = select.pick_corners(corr_set, width, height, tracer=tracer)
	if assignment is None:
		return SolveResult(corners=None, success=False, alternates=alternates)
	ref_points = [corr_set[idx].reference.as_tuple() for idx in assignment]
	cur_points = [corr_set[idx].current.as_tuple() for idx in assignment]
	corners = estimate_corners(ref_points, cur_points, width, height)
	if corners is None:
		tracer.trace("solve perspective: degenerate side line")
		return SolveResult(corners=None, success=False, alternates=alternates, corner_indices=assignment)
	corners.precision = precision
	corners.precision_threshold = precision_threshold
	tracer.trace(f"solve perspective: initial estimate {corners.points}")
	step = perspective_settings["step_fraction"]
	achieved = None
	converged = False
	iterations = 0
	for iteration in range(perspective_settings["max_iterations"]):
		iterations = iteration + 1
		dif_x, dif_y = discrepancies(corners, ref_points, cur_points)
		max_dif_x = _largest(dif_x)
		max_dif_y = _largest(dif_y)
		achieved = max(abs(max_dif_x), abs(max_dif_y))
		if achieved < precision_threshold:
			alternates.push(achieved, corners.points)
		if achieved < precision:
			converged = True
			break
		# nudge the corner(s) nearest to the worst point on each axis
		points = list(corners.points)
		for idx in range(4):
			x, y = points[idx]
			if dif_x[idx] == max_dif_x:
				x += dif_x[idx] * step
			if dif_y[idx] == max_dif_y:
				y += dif_y[idx] * step
			points[idx] = (x, y)
		corners.points = points
	if not converged:
		dif_x, dif_y = discrepancies(corners, ref_points, cur_points)
		achieved = max(abs(_largest(dif_x)), abs(_largest(dif_y)))
	tracer.trace(
		f"solve perspective: iterations:{iterations} precision:{achieved:.5f} "
		f"target:{precision} alternates:{len(alternates)} corners:{corners.points}"
	)
	if achieved > perspective_settings["sanity_bound"]:
		tracer.trace(f"solve perspective: failed, {achieved:.3f} pixels off, using identity")
		identity = PerspectiveCorners.identity(width, height, precision, precision_threshold)
		return SolveResult(corners=identity, success=False, alternates=alternates,
			achieved_precision=achieved, iterations=iterations, corner_indices=assignment)
	return SolveResult(corners=corners, success=True, alternates=alternates,
		achieved_precision=achieved, iterations=iterations, converged=converged,
		corner_indices=assignment)
