#!/usr/bin/env python3

"""
Unit tests for the area locator.
"""

# Standard Library
import io
import os
import sys

# PIP3 modules
import numpy
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# tests helpers
TESTS_DIR = os.path.abspath(os.path.dirname(__file__))
if TESTS_DIR not in sys.path:
	sys.path.insert(0, TESTS_DIR)
from frame_utils import shifted
from frame_utils import textured_rgb

# local repo modules
from detailtracklib import locate
from detailtracklib.core import utils
from detailtracklib.core.pixelbuffer import PixelBuffer

#============================================

def test_identical_buffer_finishes_after_one_attempt() -> None:
	"""A byte identical target is matched in place on the first compare."""
	pixels = textured_rgb(200, 200)
	ref_buffer = PixelBuffer(pixels)
	target_buffer = PixelBuffer(pixels.copy())
	result = locate.locate(ref_buffer, 100, 100, 15, target_buffer, 10)
	assert (result.x, result.y) == (100, 100)
	assert result.avg_colordiff == 0.0
	assert result.found
	assert result.finished
	assert result.attempts == 1
	return

#============================================

def test_shifted_target_is_found() -> None:
	"""Content moved by (+3, -2) is located at (103, 98) without difference."""
	pixels = textured_rgb(200, 200)
	ref_buffer = PixelBuffer(pixels)
	target_buffer = PixelBuffer(shifted(pixels, 3, -2))
	result = locate.locate(ref_buffer, 100, 100, 15, target_buffer, 5)
	assert (result.x, result.y) == (103, 98)
	assert result.avg_colordiff == 0.0
	return

#============================================

def test_start_offset_resumes_near_prediction() -> None:
	"""A start offset lets a small radius reach a large movement."""
	pixels = textured_rgb(200, 200)
	ref_buffer = PixelBuffer(pixels)
	target_buffer = PixelBuffer(shifted(pixels, 20, 12))
	result = locate.locate(ref_buffer, 90, 90, 10, target_buffer, 3, offset_x=19, offset_y=13)
	assert (result.x, result.y) == (110, 102)
	assert result.avg_colordiff == 0.0
	return

#============================================

def _noisy(pixels: numpy.ndarray, seed: int = 11) -> numpy.ndarray:
	rng = numpy.random.default_rng(seed)
	noise = rng.integers(-2, 3, size=pixels.shape)
	return numpy.clip(pixels.astype(int) + noise, 0, 255).astype(numpy.uint8)

#============================================

def _paste(target: numpy.ndarray, patch: numpy.ndarray, center_x: int, center_y: int) -> None:
	radius = patch.shape[0] // 2
	target[center_y - radius:center_y + radius + 1, center_x - radius:center_x + radius + 1] = patch
	return

#============================================

def test_good_match_prune_cancels_later_attempts() -> None:
	"""Once the noisy match is known, every weaker full area attempt is dropped."""
	pixels = textured_rgb(200, 200)
	ref_buffer = PixelBuffer(pixels)
	target_buffer = PixelBuffer(_noisy(shifted(pixels, 3, -2)))
	result = locate.locate(ref_buffer, 100, 100, 15, target_buffer, 5)
	assert (result.x, result.y) == (103, 98)
	assert 0.0 < result.avg_colordiff < 0.01
	assert result.pixel_count == 31 * 31
	assert not result.finished
	# 121 candidates, 57 of them are visited after the match
	assert result.attempts == 121
	assert result.cancelled >= 57
	return

#============================================

def test_double_sum_prune_on_partial_coverage() -> None:
	"""Below 90% coverage attempts are dropped at twice the best sum."""
	pixels = textured_rgb(200, 200)
	rgba = numpy.zeros((200, 200, 4), dtype=numpy.uint8)
	rgba[:, :, :3] = pixels
	# only columns 97..115 of the 85..115 window stay opaque
	rgba[:, 97:, 3] = 255
	ref_buffer = PixelBuffer(rgba)
	target_buffer = PixelBuffer(_noisy(shifted(pixels, 3, -2)))
	result = locate.locate(ref_buffer, 100, 100, 15, target_buffer, 5)
	assert (result.x, result.y) == (103, 98)
	assert result.pixel_count == 19 * 31
	assert result.cancelled >= 57
	return

#============================================

def test_required_area_ratio_boundary() -> None:
	"""Matches need 30% of the compared square opaque."""
	pixels = textured_rgb(200, 200)
	target_buffer = PixelBuffer(pixels.copy())
	# 31 x 31 square needs int(961 * 0.3) = 288 opaque pixels
	for opaque_radius, expect_found in ((7, False), (8, True)):
		rgba = numpy.zeros((200, 200, 4), dtype=numpy.uint8)
		rgba[:, :, :3] = pixels
		low = 100 - opaque_radius
		high = 100 + opaque_radius + 1
		rgba[low:high, low:high, 3] = 255
		result = locate.locate(PixelBuffer(rgba), 100, 100, 15, target_buffer, 2)
		assert result.found == expect_found
		if expect_found:
			assert (result.x, result.y) == (100, 100)
			assert result.pixel_count == 17 * 17
			assert result.finished
		else:
			assert result.avg_colordiff == 1.0
	return

#============================================

def test_border_candidates_need_two_thirds_width() -> None:
	"""Near the left border a match with less than 2/3 of the width is skipped."""
	pixels = textured_rgb(200, 200)
	ref_buffer = PixelBuffer(pixels)
	# the 26 column reference area at x=10 keeps 21 columns when moved by 5
	result = locate.locate(ref_buffer, 10, 100, 15, PixelBuffer(shifted(pixels, -5, 0)), 8)
	assert (result.x, result.y) == (5, 100)
	assert result.avg_colordiff == 0.0
	# moved by 8 only 18 columns are left, below the required 20
	result = locate.locate(ref_buffer, 10, 100, 15, PixelBuffer(shifted(pixels, -8, 0)), 8)
	assert (result.x, result.y) != (2, 100)
	assert result.avg_colordiff > 0.0
	# 289 candidates, 34 of them at x=3 or x=2
	assert result.attempts == 255
	return

#============================================

def test_equal_matches_prefer_the_nearer_one() -> None:
	"""Two identical matches resolve to the one closer to the reference."""
	pixels = textured_rgb(200, 200)
	ref_buffer = PixelBuffer(pixels)
	patch = pixels[97:104, 97:104]
	# the far copy is visited first (dx 3) and the near one later (dx 4)
	target = textured_rgb(200, 200, seed=3)
	_paste(target, patch, 103, 108)
	_paste(target, patch, 104, 100)
	result = locate.locate(ref_buffer, 100, 100, 3, PixelBuffer(target), 8)
	assert (result.x, result.y) == (104, 100)
	assert result.avg_colordiff == 0.0
	# the near copy is visited first and the far one does not replace it
	target = textured_rgb(200, 200, seed=3)
	_paste(target, patch, 103, 100)
	_paste(target, patch, 104, 108)
	result = locate.locate(ref_buffer, 100, 100, 3, PixelBuffer(target), 8)
	assert (result.x, result.y) == (103, 100)
	assert result.avg_colordiff == 0.0
	return

#============================================

def test_reference_outside_buffer_reports_sentinel() -> None:
	"""Nothing usable gives back the reference coordinate and 1.0."""
	pixels = textured_rgb(50, 50)
	buffer = PixelBuffer(pixels)
	result = locate.locate(buffer, 500, 500, 5, buffer, 3)
	assert (result.x, result.y) == (500, 500)
	assert result.avg_colordiff == 1.0
	assert not result.found
	return

#============================================

def test_transparent_reference_is_not_comparable() -> None:
	"""Fully transparent details never reach the required overlap."""
	rgba = numpy.zeros((60, 60, 4), dtype=numpy.uint8)
	rgba[:, :, :3] = textured_rgb(60, 60)
	ref_buffer = PixelBuffer(rgba)
	target_buffer = PixelBuffer(textured_rgb(60, 60, seed=3))
	result = locate.locate(ref_buffer, 30, 30, 5, target_buffer, 2)
	assert not result.found
	assert result.avg_colordiff == 1.0
	return

#============================================

def test_locate_tracer_reports_found_positions() -> None:
	"""An enabled tracer receives the search progress."""
	pixels = textured_rgb(80, 80)
	buffer = PixelBuffer(pixels)
	tracer = utils.Tracer(enabled=True, stream=io.StringIO())
	locate.locate(buffer, 40, 40, 5, buffer, 2, tracer=tracer)
	assert "FOUND" in tracer.stream.getvalue()
	assert tracer.count >= 2
	return

#============================================

def test_colordiff_opaque_pixels() -> None:
	"""Whole buffer compare honors the mask and the required count."""
	pixels = textured_rgb(40, 30)
	ref_buffer = PixelBuffer(pixels)
	other = pixels.copy()
	other[:, :20] = 0
	target_buffer = PixelBuffer(other)
	mask = numpy.zeros((30, 40), dtype=bool)
	mask[:, 20:] = True
	avg, count = locate.colordiff_opaque_pixels(ref_buffer, target_buffer, 10, mask=mask)
	assert count == 600
	assert avg == 0.0
	avg, count = locate.colordiff_opaque_pixels(ref_buffer, target_buffer, 1000, mask=mask)
	assert avg == 1.0
	assert count == 600
	avg, count = locate.colordiff_opaque_pixels(ref_buffer, target_buffer, 10)
	assert count == 1200
	assert avg == pytest.approx(0.5 * (float(pixels[:, :20, :].astype(int).sum()) / 600.0) / 765.0)
	return
