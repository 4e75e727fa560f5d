#!/usr/bin/env python3

"""
Probe refinement of a perspective solution.

Near-equivalent corner sets (the solver's alternates plus direct
estimates from tuned point variants) are each scored by the residual
color difference they leave over a masked reference region. The lowest
residual wins.
"""

# Standard Library
import dataclasses
import itertools
import math

# PIP3 modules
import numpy

# local repo modules
from detailtracklib import locate
from detailtracklib import perspective
from detailtracklib import select
from detailtracklib import tune
from detailtracklib.core import config
from detailtracklib.core import utils
from detailtracklib.core.pixelbuffer import PixelBuffer

#============================================

@dataclasses.dataclass
class RefineResult:
	corners: perspective.PerspectiveCorners
	refined: bool = False
	best_avg_colordiff: float | None = None
	attempts: int = 0
	truncated: int = 0
	picked_index: int | None = None

#============================================

class MaskedRegionComparer():
	"""
	Scores a corner set by warping the target buffer into reference space
	and comparing the masked reference pixels.

	Args:
		ref_buffer: Reference frame buffer.
		target_buffer: Current frame buffer.
		mask: Bool array (reference size) of known background pixels;
			defaults to the opaque reference pixels.
		opacity_level: Alpha below this level is not compared.
	"""
	def __init__(self, ref_buffer: PixelBuffer, target_buffer: PixelBuffer,
		mask: numpy.ndarray | None = None, opacity_level: int = 50):
		self.ref_buffer = ref_buffer
		self.target_buffer = target_buffer
		self.opacity_level = opacity_level
		if mask is None:
			mask = ref_buffer.opaque_mask(opacity_level)
		mask = numpy.asarray(mask, dtype=bool)
		if mask.shape != (ref_buffer.height, ref_buffer.width):
			raise RuntimeError("reference mask must match the reference buffer size")
		self.mask = mask

	#============================
	def comparable_count(self) -> int:
		# the mask compared with itself
		return locate.colordiff_opaque_pixels(self.ref_buffer, self.ref_buffer, 0,
			mask=self.mask, opacity_level=self.opacity_level)[1]

	#============================
	def warp(self, corners: perspective.PerspectiveCorners) -> PixelBuffer | None:
		"""
		Target pixels moved to reference positions, nearest neighbor, for
		the masked pixels only. Unmapped pixels are transparent.
		"""
		try:
			inverse = numpy.linalg.inv(corners.matrix())
		except numpy.linalg.LinAlgError:
			return None
		ys, xs = numpy.nonzero(self.mask)
		points = numpy.vstack([xs, ys, numpy.ones_like(xs)]).astype(numpy.float64)
		source = inverse @ points
		scale = source[2]
		scale[scale == 0.0] = 1.0
		src_x = numpy.rint(source[0] / scale).astype(numpy.int64)
		src_y = numpy.rint(source[1] / scale).astype(numpy.int64)
		inside = (src_x >= 0) & (src_x < self.target_buffer.width)
		inside &= (src_y >= 0) & (src_y < self.target_buffer.height)
		warped = numpy.zeros((self.ref_buffer.height, self.ref_buffer.width, 4), dtype=numpy.uint8)
		warped[ys[inside], xs[inside]] = self.target_buffer.rgba[src_y[inside], src_x[inside]]
		if not self.target_buffer.has_alpha:
			warped[ys[inside], xs[inside], 3] = 255
		return PixelBuffer(warped, has_alpha=True)

	#============================
	def compare(self, corners: perspective.PerspectiveCorners, required_pixel_count: int) -> tuple[float, int]:
		warped = self.warp(corners)
		if warped is None:
			return (1.0, 0)
		return locate.colordiff_opaque_pixels(self.ref_buffer, warped, required_pixel_count,
			mask=self.mask, opacity_level=self.opacity_level)

#============================================

class ProbeRefiner():
	def __init__(self, settings: dict | None = None, tracer: utils.Tracer | None = None):
		self.settings = config.section(settings, "probe")
		self.tracer = utils.resolve_tracer(tracer)

	#============================
	def variants(self, corners: perspective.PerspectiveCorners, alternates: perspective.AlternateCorners | None,
		tune_candidates: list | None, corr_set: select.CorrespondenceSet) -> tuple[list, int]:
		"""
		Candidate corner sets to probe.

		The primary solution comes first, then the alternates best first,
		then one direct estimate per combination of valid tune offsets.

		Args:
			corners: Primary solver result.
			alternates: Near-solutions recorded by the solver.
			tune_candidates: Tune shortlist per correspondence index.
			corr_set: Correspondences the solution was built from.

		Returns:
			tuple: (list of PerspectiveCorners, count of truncated combinations)
		"""
		width = corners.width
		height = corners.height
		candidates = [corners.copy()]
		if alternates is not None:
			for _precision, points in alternates.ordered():
				candidates.append(dataclasses.replace(corners, points=list(points)))
		if not tune_candidates:
			return (candidates, 0)
		assignment = select.pick_corners(corr_set, width, height)
		if assignment is None:
			return (candidates, 0)
		offset_lists = []
		for idx in assignment:
			shortlist = []
			if idx < len(tune_candidates) and tune_candidates[idx]:
				shortlist = tune.valid_offsets(tune_candidates[idx])
			if len(shortlist) == 0:
				shortlist = [tune.TuneOffset(0, 0, 0.0)]
			offset_lists.append(shortlist)
		ref_points = [corr_set[idx].reference.as_tuple() for idx in assignment]
		cur_points = [corr_set[idx].current.as_tuple() for idx in assignment]
		max_attempts = self.settings["max_attempts"]
		total = math.prod(len(elem) for elem in offset_lists)
		examined = min(total, max_attempts)
		for combination in itertools.islice(itertools.product(*offset_lists), examined):
			tuned_points = []
			for (cur_x, cur_y), offset in zip(cur_points, combination):
				tuned_points.append((cur_x + offset.dx, cur_y + offset.dy))
			estimate = perspective.estimate_corners(ref_points, tuned_points, width, height)
			if estimate is None:
				continue
			estimate.precision = corners.precision
			estimate.precision_threshold = corners.precision_threshold
			candidates.append(estimate)
		truncated = total - examined
		self.tracer.trace(f"probe variants: combinations:{total} examined:{examined} truncated:{truncated}")
		return (candidates, truncated)

	#============================
	def refine(self, corners: perspective.PerspectiveCorners, alternates: perspective.AlternateCorners | None,
		tune_candidates: list | None, corr_set: select.CorrespondenceSet, comparer) -> RefineResult:
		"""
		Pick the candidate corner set with the lowest masked residual.

		The comparer provides comparable_count() and
		compare(corners, required_pixel_count) -> (avg_colordiff, count).
		The unrefined corners are returned when the mask is too small or
		no candidate could be compared.
		"""
		comparable = comparer.comparable_count()
		if comparable < self.settings["min_mask_pixels"]:
			self.tracer.trace(f"probe refine: skipped, only {comparable} comparable mask pixels")
			return RefineResult(corners=corners)
		required = min(self.settings["required_cap"], int(comparable * self.settings["required_ratio"]))
		candidates, truncated = self.variants(corners, alternates, tune_candidates, corr_set)
		best_avg = 1.1
		best_idx = None
		for idx, candidate in enumerate(candidates):
			avg, count = comparer.compare(candidate, required)
			if count < required:
				continue
			if avg < best_avg:
				best_avg = avg
				best_idx = idx
		if best_idx is None:
			self.tracer.trace("probe refine: no candidate could be compared")
			return RefineResult(corners=corners, attempts=len(candidates), truncated=truncated)
		self.tracer.trace(
			f"probe refine: picked {best_idx} of {len(candidates)} avg:{best_avg:.6f} "
			f"corners:{candidates[best_idx].points}"
		)
		return RefineResult(
			corners=candidates[best_idx],
			refined=True,
			best_avg_colordiff=best_avg,
			attempts=len(candidates),
			truncated=truncated,
			picked_index=best_idx,
		)

#============================================

def refine(corners: perspective.PerspectiveCorners, alternates: perspective.AlternateCorners | None,
	tune_candidates: list | None, corr_set: select.CorrespondenceSet, comparer,
	settings: dict | None = None, tracer: utils.Tracer | None = None) -> RefineResult:
	refiner = ProbeRefiner(settings=settings, tracer=tracer)
	return refiner.refine(corners, alternates, tune_candidates, corr_set, comparer)
