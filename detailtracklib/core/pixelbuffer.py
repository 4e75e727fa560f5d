#!/usr/bin/env python3

"""
Read-only pixel access for the tracking engine.

The engine never touches image files or layers directly, it reads RGBA
samples through this accessor. Out-of-bounds reads are reported apart
from in-bounds transparent reads.
"""

# PIP3 modules
import numpy
from PIL import Image

# local repo modules
from detailtracklib.core import utils

#============================================

class PixelBuffer():
	def __init__(self, pixels: numpy.ndarray, has_alpha: bool | None = None):
		array = numpy.asarray(pixels)
		if array.ndim == 2:
			array = numpy.stack([array, array, array], axis=2)
		if array.ndim != 3 or array.shape[2] not in (3, 4):
			raise RuntimeError("pixel array must have shape (height, width, 3 or 4)")
		array = numpy.array(array, dtype=numpy.uint8)
		channels = array.shape[2]
		if has_alpha is None:
			has_alpha = (channels == 4)
		if channels == 3:
			alpha = numpy.full(array.shape[:2] + (1,), 255, dtype=numpy.uint8)
			array = numpy.concatenate([array, alpha], axis=2)
		self.rgba = array
		self.rgba.setflags(write=False)
		self.height = int(array.shape[0])
		self.width = int(array.shape[1])
		self.has_alpha = bool(has_alpha)

	#============================
	@classmethod
	def from_image(cls, image: Image.Image) -> "PixelBuffer":
		has_alpha = image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info
		if has_alpha:
			converted = image.convert("RGBA")
		else:
			converted = image.convert("RGB")
		return cls(numpy.asarray(converted), has_alpha=has_alpha)

	#============================
	def dimensions(self) -> tuple[int, int, bool]:
		return (self.width, self.height, self.has_alpha)

	#============================
	def in_bounds(self, x: int, y: int) -> bool:
		return (0 <= x < self.width) and (0 <= y < self.height)

	#============================
	def get_pixel(self, x: int, y: int) -> tuple[int, int, int, int, bool]:
		"""
		Sample one pixel.

		Returns:
			tuple: (r, g, b, a, in_bounds); out-of-bounds reads give
			(0, 0, 0, 0, False).
		"""
		if not self.in_bounds(x, y):
			return (0, 0, 0, 0, False)
		r, g, b, a = self.rgba[y, x]
		return (int(r), int(g), int(b), int(a), True)

	#============================
	def region(self, x: int, y: int, width: int, height: int) -> tuple[numpy.ndarray, numpy.ndarray]:
		"""
		Copy a rectangle, padding the parts outside the buffer.

		Args:
			x: Left column (may be negative).
			y: Top row (may be negative).
			width: Region width.
			height: Region height.

		Returns:
			tuple: (rgba int32 array of shape (height, width, 4),
			bool array marking in-bounds cells).
		"""
		rgba = numpy.zeros((height, width, 4), dtype=numpy.int32)
		inside = numpy.zeros((height, width), dtype=bool)
		x0 = max(0, x)
		y0 = max(0, y)
		x1 = min(self.width, x + width)
		y1 = min(self.height, y + height)
		if x1 <= x0 or y1 <= y0:
			return (rgba, inside)
		rgba[y0 - y:y1 - y, x0 - x:x1 - x] = self.rgba[y0:y1, x0:x1]
		inside[y0 - y:y1 - y, x0 - x:x1 - x] = True
		return (rgba, inside)

	#============================
	def opaque_mask(self, opacity_level: int = 1) -> numpy.ndarray:
		if not self.has_alpha:
			return numpy.ones((self.height, self.width), dtype=bool)
		return self.rgba[:, :, 3] >= opacity_level

#============================================

def load_pixel_buffer(filepath: str) -> PixelBuffer:
	utils.ensure_file_exists(filepath)
	with Image.open(filepath) as image:
		image.load()
		return PixelBuffer.from_image(image)

#============================================

def load_mask(filepath: str, threshold: int = 128) -> numpy.ndarray:
	"""
	Background mask image as a bool array.

	Pixels whose gray level (alpha included, when present) reaches the
	threshold are part of the mask.

	Args:
		filepath: Mask image path.
		threshold: Gray level that counts as masked.

	Returns:
		numpy.ndarray: Bool array of shape (height, width).
	"""
	utils.ensure_file_exists(filepath)
	with Image.open(filepath) as image:
		image.load()
		buffer = PixelBuffer.from_image(image)
	gray = buffer.rgba[:, :, :3].astype(numpy.int32).sum(axis=2) // 3
	mask = gray >= threshold
	if buffer.has_alpha:
		mask &= buffer.rgba[:, :, 3] >= threshold
	return mask
