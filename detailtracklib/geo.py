#!/usr/bin/env python3

"""
Plane geometry helpers: implicit lines, perspective matrices and the
similarity values of two point pairs.
"""

# Standard Library
import dataclasses
import math

# PIP3 modules
import numpy

#============================================

@dataclasses.dataclass(frozen=True)
class Line:
	"""Line in implicit form a*x + b*y = c."""
	a: float
	b: float
	c: float

	#============================
	@classmethod
	def from_points(cls, x1: float, y1: float, x2: float, y2: float) -> "Line":
		return cls(a=y1 - y2, b=x2 - x1, c=(x2 * y1) - (x1 * y2))

	#============================
	def is_degenerate(self) -> bool:
		return self.a == 0 and self.b == 0

	#============================
	def get_x(self, y: float) -> float:
		# undefined for lines parallel to the x axis
		if self.a == 0:
			return 0.0
		return (self.c - (self.b * y)) / self.a

	#============================
	def get_y(self, x: float) -> float:
		# undefined for lines parallel to the y axis
		if self.b == 0:
			return 0.0
		return (self.c - (self.a * x)) / self.b

	#============================
	def intersection(self, other: "Line") -> tuple[float, float] | None:
		"""
		Crossing point with another line, None for parallel or degenerate lines.
		"""
		denominator = (self.a * other.b) - (other.a * self.b)
		if denominator == 0:
			return None
		x = ((self.c * other.b) - (other.c * self.b)) / denominator
		y = ((self.a * other.c) - (other.a * self.c)) / denominator
		return (x, y)

#============================================

@dataclasses.dataclass
class SimilarityTransform:
	angle: float = 0.0
	scale: float = 1.0
	move_x: float = 0.0
	move_y: float = 0.0

	#============================
	def to_dict(self) -> dict:
		return dataclasses.asdict(self)

#============================================

def perspective_matrix(corners, width: float, height: float) -> numpy.ndarray:
	"""
	Matrix mapping the frame rectangle onto four displaced corners.

	Args:
		corners: Four (x, y) pairs ordered upper left, upper right,
			lower left, lower right.
		width: Frame width.
		height: Frame height.

	Returns:
		numpy.ndarray: 3x3 homogeneous matrix.
	"""
	(x1, y1), (x2, y2), (x3, y3), (x4, y4) = [(float(x), float(y)) for x, y in corners]
	scale_x = 1.0
	scale_y = 1.0
	if width > 0:
		scale_x = 1.0 / width
	if height > 0:
		scale_y = 1.0 / height
	scale = numpy.array([
		[scale_x, 0.0, 0.0],
		[0.0, scale_y, 0.0],
		[0.0, 0.0, 1.0],
	])
	# projective map from the unit square to the corners
	dx1 = x2 - x4
	dx2 = x3 - x4
	dx3 = x1 - x2 + x4 - x3
	dy1 = y2 - y4
	dy2 = y3 - y4
	dy3 = y1 - y2 + y4 - y3
	trafo = numpy.identity(3)
	if dx3 == 0.0 and dy3 == 0.0:
		trafo[0] = [x2 - x1, x4 - x2, x1]
		trafo[1] = [y2 - y1, y4 - y2, y1]
		trafo[2] = [0.0, 0.0, 1.0]
	else:
		det2 = dx1 * dy2 - dy1 * dx2
		g = 1.0
		h = 1.0
		if det2 != 0.0:
			g = (dx3 * dy2 - dy3 * dx2) / det2
			h = (dx1 * dy3 - dy1 * dx3) / det2
		trafo[0] = [x2 - x1 + g * x2, x3 - x1 + h * x3, x1]
		trafo[1] = [y2 - y1 + g * y2, y3 - y1 + h * y3, y1]
		trafo[2] = [g, h, 1.0]
	return trafo @ scale

#============================================

def transform_point(matrix: numpy.ndarray, x: float, y: float) -> tuple[float, float]:
	w = matrix[2, 0] * x + matrix[2, 1] * y + matrix[2, 2]
	if w == 0.0:
		w = 1.0
	new_x = (matrix[0, 0] * x + matrix[0, 1] * y + matrix[0, 2]) / w
	new_y = (matrix[1, 0] * x + matrix[1, 1] * y + matrix[1, 2]) / w
	return (float(new_x), float(new_y))

#============================================

def line_angle(ax: float, ay: float, bx: float, by: float) -> float:
	"""
	Direction of the line from a to b in degrees [0, 360), y pointing down.
	"""
	if ax == bx and ay == by:
		return 0.0
	return math.degrees(math.atan2(by - ay, bx - ax)) % 360.0

#============================================

def normalize_angle(angle: float) -> float:
	angle = angle % 360.0
	if angle > 180.0:
		angle -= 360.0
	return angle

#============================================

def similarity_values(ref_a, ref_b, cur_a, cur_b) -> SimilarityTransform:
	"""
	Rotation, scale and move that bring two current points back onto
	their reference points.

	Args:
		ref_a: Reference (x, y) of the first point.
		ref_b: Reference (x, y) of the second point.
		cur_a: Current (x, y) of the first point.
		cur_b: Current (x, y) of the second point.

	Returns:
		SimilarityTransform: angle in degrees, scale factor and the
		average current minus reference displacement.
	"""
	ref_angle = line_angle(ref_a[0], ref_a[1], ref_b[0], ref_b[1])
	cur_angle = line_angle(cur_a[0], cur_a[1], cur_b[0], cur_b[1])
	ref_length = math.hypot(ref_b[0] - ref_a[0], ref_b[1] - ref_a[1])
	cur_length = math.hypot(cur_b[0] - cur_a[0], cur_b[1] - cur_a[1])
	scale = 1.0
	if cur_length > 0:
		scale = ref_length / cur_length
	move_x = ((cur_a[0] - ref_a[0]) + (cur_b[0] - ref_b[0])) / 2.0
	move_y = ((cur_a[1] - ref_a[1]) + (cur_b[1] - ref_b[1])) / 2.0
	return SimilarityTransform(
		angle=normalize_angle(ref_angle - cur_angle),
		scale=scale,
		move_x=move_x,
		move_y=move_y,
	)

#============================================

def translation_values(ref, cur) -> SimilarityTransform:
	return SimilarityTransform(move_x=float(cur[0] - ref[0]), move_y=float(cur[1] - ref[1]))
