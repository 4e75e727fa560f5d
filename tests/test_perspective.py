#!/usr/bin/env python3

"""
Unit tests for the four corner perspective solver.
"""

# Standard Library
import os
import sys

# PIP3 modules
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from detailtracklib import perspective
from detailtracklib import select
from detailtracklib.core import config
from detailtracklib.select import PixelCoord

#============================================

WIDTH = 200
HEIGHT = 150
FRAME_CORNERS = [(0, 0), (200, 0), (0, 150), (200, 150)]
DISPLACED_CORNERS = [(3, 2), (203, -1), (-2, 151), (198, 148)]

#============================================

def _build_set(ref_points: list, cur_points: list, valid: list | None = None) -> select.CorrespondenceSet:
	corr_set = select.CorrespondenceSet()
	if valid is None:
		valid = [True] * len(ref_points)
	for ref_xy, cur_xy, is_valid in zip(ref_points, cur_points, valid):
		corr_set.add(PixelCoord(ref_xy[0], ref_xy[1]), PixelCoord(cur_xy[0], cur_xy[1], valid=is_valid))
	return corr_set

#============================================

def test_translation_is_solved_exactly() -> None:
	"""Points all moved by (3, -2) need corners moved by (-3, 2)."""
	ref_points = [(20, 20), (180, 20), (20, 130), (180, 130)]
	cur_points = [(x + 3, y - 2) for x, y in ref_points]
	result = perspective.solve_perspective(_build_set(ref_points, cur_points), WIDTH, HEIGHT)
	assert result.success
	assert result.converged
	expected = [(-3, 2), (197, 2), (-3, 152), (197, 152)]
	for point, wanted in zip(result.corners.points, expected):
		assert point == pytest.approx(wanted, abs=1e-6)
	return

#============================================

def test_displaced_corners_round_trip() -> None:
	"""Current points on the frame corners map back onto their references."""
	corr_set = _build_set(DISPLACED_CORNERS, FRAME_CORNERS)
	result = perspective.solve_perspective(corr_set, WIDTH, HEIGHT)
	assert result.success
	assert result.converged
	assert result.achieved_precision < 0.2
	assert result.corner_indices == [0, 1, 2, 3]
	for point, wanted in zip(result.corners.points, DISPLACED_CORNERS):
		assert point == pytest.approx(wanted, abs=0.2)
	for (cur_x, cur_y), (ref_x, ref_y) in zip(FRAME_CORNERS, DISPLACED_CORNERS):
		out_x, out_y = result.corners.transform(cur_x, cur_y)
		assert abs(out_x - ref_x) < 0.2
		assert abs(out_y - ref_y) < 0.2
	assert len(result.alternates) >= 1
	return

#============================================

def test_duplicate_points_are_degenerate() -> None:
	"""Two identical points cannot define a side line."""
	ref_points = [(20, 20), (180, 20), (20, 130), (20, 130)]
	cur_points = [(x + 1, y + 1) for x, y in ref_points]
	result = perspective.solve_perspective(_build_set(ref_points, cur_points), WIDTH, HEIGHT)
	assert result.corners is None
	assert not result.success
	return

#============================================

def test_three_valid_points_are_not_enough() -> None:
	"""An invalid fourth point leaves nothing to solve."""
	ref_points = [(20, 20), (180, 20), (20, 130), (180, 130)]
	corr_set = _build_set(ref_points, ref_points, valid=[True, True, True, False])
	result = perspective.solve_perspective(corr_set, WIDTH, HEIGHT)
	assert result.corners is None
	assert not result.success
	return

#============================================

def test_unreachable_precision_falls_back_to_identity() -> None:
	"""A result outside the sanity bound is replaced by the identity."""
	data = config.default_config()
	data["settings"]["perspective"].update({
		"max_iterations": 1,
		"precision": 0.005,
		"precision_threshold": 0.005,
		"sanity_bound": 0.01,
	})
	settings = config.build_settings(data, "<test>")
	corr_set = _build_set(DISPLACED_CORNERS, FRAME_CORNERS)
	result = perspective.solve_perspective(corr_set, WIDTH, HEIGHT, settings=settings)
	assert not result.success
	assert result.corners.is_identity()
	assert result.achieved_precision > 0.01
	return

#============================================

def test_alternate_store_keeps_best_entries() -> None:
	"""A full store drops its worst entry for anything not worse."""
	store = perspective.AlternateCorners(capacity=2)
	assert store.push(1.0, ((0, 0),))
	assert store.push(0.5, ((1, 1),))
	assert not store.push(2.0, ((2, 2),))
	assert store.push(0.8, ((3, 3),))
	assert store.worst_precision() == 0.8
	assert store.ordered() == [(0.5, ((1, 1),)), (0.8, ((3, 3),))]
	assert store.push(0.8, ((4, 4),))
	assert store.ordered() == [(0.5, ((1, 1),)), (0.8, ((4, 4),))]
	return

#============================================

def test_solver_without_alternate_store() -> None:
	"""A zero capacity store keeps nothing and the solve still succeeds."""
	store = perspective.AlternateCorners(capacity=0)
	assert not store.push(0.5, ((1, 1),))
	assert len(store) == 0
	assert store.worst_precision() is None
	data = config.default_config()
	data["settings"]["perspective"]["max_alternates"] = 0
	settings = config.build_settings(data, "<test>")
	ref_points = [(20, 20), (180, 20), (20, 130), (180, 130)]
	cur_points = [(x + 3, y - 2) for x, y in ref_points]
	result = perspective.solve_perspective(_build_set(ref_points, cur_points), WIDTH, HEIGHT,
		settings=settings)
	assert result.success
	assert result.converged
	assert len(result.alternates) == 0
	assert result.corners.points[0] == pytest.approx((-3, 2), abs=1e-6)
	return

#============================================

def test_corners_to_dict_and_identity() -> None:
	"""Corners serialize by name, identity corners are recognized."""
	corners = perspective.PerspectiveCorners.identity(WIDTH, HEIGHT)
	assert corners.is_identity()
	assert corners.to_dict() == {
		"upper_left": [0.0, 0.0],
		"upper_right": [200.0, 0.0],
		"lower_left": [0.0, 150.0],
		"lower_right": [200.0, 150.0],
	}
	moved = corners.copy()
	moved.points[0] = (1.0, 0.0)
	assert not moved.is_identity()
	assert corners.is_identity()
	return
