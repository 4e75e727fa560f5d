#!/usr/bin/env python3

"""
Unit tests for the read-only pixel accessor.
"""

# Standard Library
import os
import sys

# PIP3 modules
import numpy
import pytest
from PIL import Image

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from detailtracklib.core import pixelbuffer
from detailtracklib.core.pixelbuffer import PixelBuffer

#============================================

def test_out_of_bounds_is_reported_apart_from_transparent() -> None:
	"""Transparent pixels are in bounds, reads past the edge are not."""
	rgba = numpy.zeros((4, 5, 4), dtype=numpy.uint8)
	rgba[1, 2] = (10, 20, 30, 0)
	buffer = PixelBuffer(rgba)
	assert buffer.dimensions() == (5, 4, True)
	assert buffer.get_pixel(2, 1) == (10, 20, 30, 0, True)
	assert buffer.get_pixel(5, 0) == (0, 0, 0, 0, False)
	assert buffer.get_pixel(-1, 0) == (0, 0, 0, 0, False)
	return

#============================================

def test_rgb_input_is_opaque_and_copied() -> None:
	"""RGB arrays get an opaque alpha and later edits do not leak in."""
	pixels = numpy.full((3, 3, 3), 7, dtype=numpy.uint8)
	buffer = PixelBuffer(pixels)
	pixels[0, 0] = 99
	assert buffer.get_pixel(0, 0) == (7, 7, 7, 255, True)
	assert not buffer.has_alpha
	assert buffer.opaque_mask().all()
	with pytest.raises(ValueError):
		buffer.rgba[0, 0, 0] = 1
	with pytest.raises(RuntimeError):
		PixelBuffer(numpy.zeros((3, 3, 2), dtype=numpy.uint8))
	return

#============================================

def test_region_pads_outside_cells() -> None:
	"""Cells past the edge are zero and flagged as outside."""
	pixels = numpy.arange(2 * 3 * 3, dtype=numpy.uint8).reshape((2, 3, 3))
	buffer = PixelBuffer(pixels)
	rgba, inside = buffer.region(-1, 0, 3, 3)
	assert rgba.shape == (3, 3, 4)
	assert inside.tolist() == [[False, True, True], [False, True, True], [False, False, False]]
	assert rgba[0, 1, :3].tolist() == pixels[0, 0].tolist()
	assert rgba[2, 2].tolist() == [0, 0, 0, 0]
	return

#============================================

def test_load_pixel_buffer_reads_png(tmp_path) -> None:
	"""PNG files with and without alpha load through Pillow."""
	rgb_path = str(tmp_path / "rgb.png")
	Image.fromarray(numpy.full((6, 8, 3), 200, dtype=numpy.uint8)).save(rgb_path)
	buffer = pixelbuffer.load_pixel_buffer(rgb_path)
	assert buffer.dimensions() == (8, 6, False)
	rgba_path = str(tmp_path / "rgba.png")
	Image.fromarray(numpy.zeros((6, 8, 4), dtype=numpy.uint8)).save(rgba_path)
	buffer = pixelbuffer.load_pixel_buffer(rgba_path)
	assert buffer.has_alpha
	assert not buffer.opaque_mask(50).any()
	with pytest.raises(RuntimeError):
		pixelbuffer.load_pixel_buffer(str(tmp_path / "missing.png"))
	return

#============================================

def test_load_mask_uses_gray_level_and_alpha(tmp_path) -> None:
	"""White pixels are masked, transparent white pixels are not."""
	gray = numpy.zeros((6, 8), dtype=numpy.uint8)
	gray[:, :3] = 255
	gray_path = str(tmp_path / "mask.png")
	Image.fromarray(gray).save(gray_path)
	mask = pixelbuffer.load_mask(gray_path)
	assert mask.shape == (6, 8)
	assert mask.dtype == bool
	assert mask[:, :3].all()
	assert not mask[:, 3:].any()
	rgba = numpy.full((6, 8, 4), 255, dtype=numpy.uint8)
	rgba[:2, :, 3] = 0
	rgba_path = str(tmp_path / "mask_rgba.png")
	Image.fromarray(rgba).save(rgba_path)
	mask = pixelbuffer.load_mask(rgba_path)
	assert int(mask.sum()) == 4 * 8
	assert not mask[:2].any()
	return
