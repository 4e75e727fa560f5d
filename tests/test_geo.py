#!/usr/bin/env python3

"""
Unit tests for lines, perspective matrices and similarity values.
"""

# Standard Library
import os
import sys

# PIP3 modules
import numpy
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from detailtracklib import geo

#============================================

def test_line_intersection() -> None:
	"""Crossing lines meet, parallel lines do not."""
	x_axis = geo.Line.from_points(0, 0, 1, 0)
	y_axis = geo.Line.from_points(0, 0, 0, 1)
	assert x_axis.intersection(y_axis) == (0.0, 0.0)
	diagonal = geo.Line.from_points(0, 0, 10, 10)
	anti_diagonal = geo.Line.from_points(0, 10, 10, 0)
	assert diagonal.intersection(anti_diagonal) == pytest.approx((5.0, 5.0))
	parallel = geo.Line.from_points(0, 1, 1, 1)
	assert x_axis.intersection(parallel) is None
	return

#============================================

def test_line_get_x_and_get_y() -> None:
	"""Explicit coordinates follow the implicit form."""
	diagonal = geo.Line.from_points(0, 0, 10, 10)
	assert diagonal.get_y(3) == pytest.approx(3.0)
	assert diagonal.get_x(4) == pytest.approx(4.0)
	assert geo.Line.from_points(0, 5, 10, 5).get_x(5) == 0.0
	assert geo.Line.from_points(2, 2, 2, 2).is_degenerate()
	return

#============================================

def test_identity_corners_give_identity_matrix() -> None:
	"""Undisplaced corners leave every point in place."""
	corners = [(0, 0), (200, 0), (0, 150), (200, 150)]
	matrix = geo.perspective_matrix(corners, 200, 150)
	assert numpy.allclose(matrix, numpy.identity(3))
	return

#============================================

def test_translated_corners_move_points() -> None:
	"""Corners moved by the same vector translate the frame."""
	corners = [(-3, 2), (197, 2), (-3, 152), (197, 152)]
	matrix = geo.perspective_matrix(corners, 200, 150)
	assert geo.transform_point(matrix, 50, 60) == pytest.approx((47.0, 62.0))
	return

#============================================

def test_perspective_matrix_maps_frame_corners() -> None:
	"""A true perspective quad receives the frame corners exactly."""
	corners = [(5, 3), (190, 10), (-4, 140), (210, 160)]
	frame = [(0, 0), (200, 0), (0, 150), (200, 150)]
	matrix = geo.perspective_matrix(corners, 200, 150)
	for (frame_x, frame_y), expected in zip(frame, corners):
		assert geo.transform_point(matrix, frame_x, frame_y) == pytest.approx(expected, abs=1e-9)
	return

#============================================

def test_line_angle_full_quadrant() -> None:
	"""Angles cover the full circle with y pointing down."""
	assert geo.line_angle(0, 0, 10, 0) == 0.0
	assert geo.line_angle(0, 0, 0, 10) == pytest.approx(90.0)
	assert geo.line_angle(0, 0, -10, 0) == pytest.approx(180.0)
	assert geo.line_angle(0, 0, 0, -10) == pytest.approx(270.0)
	assert geo.line_angle(3, 3, 3, 3) == 0.0
	assert geo.normalize_angle(270.0) == -90.0
	assert geo.normalize_angle(180.0) == 180.0
	return

#============================================

def test_similarity_values_rotation() -> None:
	"""A quarter turn of the current pair is undone by -90 degrees."""
	result = geo.similarity_values((0, 0), (10, 0), (0, 0), (0, 10))
	assert result.angle == pytest.approx(-90.0)
	assert result.scale == pytest.approx(1.0)
	assert (result.move_x, result.move_y) == pytest.approx((-5.0, 5.0))
	return

#============================================

def test_similarity_values_scale() -> None:
	"""A current pair twice as far apart is scaled by one half."""
	result = geo.similarity_values((0, 0), (10, 0), (0, 0), (20, 0))
	assert result.angle == pytest.approx(0.0)
	assert result.scale == pytest.approx(0.5)
	collapsed = geo.similarity_values((0, 0), (10, 0), (4, 4), (4, 4))
	assert collapsed.scale == 1.0
	return

#============================================

def test_translation_values() -> None:
	"""One point gives a pure move."""
	result = geo.translation_values((10, 20), (13, 18))
	assert result.to_dict() == {"angle": 0.0, "scale": 1.0, "move_x": 3.0, "move_y": -2.0}
	return
