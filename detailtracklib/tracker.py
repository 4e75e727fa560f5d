#!/usr/bin/env python3

"""
Frame to frame detail tracking.

DetailTracker owns the state that lives across frames (start and
previous coordinates, the previous selection, the lost trace counter)
and runs locate, tune, select and solve for every new frame.
"""

# Standard Library
import dataclasses

# PIP3 modules
import numpy

# local repo modules
from detailtracklib import geo
from detailtracklib import locate
from detailtracklib import perspective
from detailtracklib import probe
from detailtracklib import select
from detailtracklib import tune
from detailtracklib.core import config
from detailtracklib.core import utils
from detailtracklib.core.pixelbuffer import PixelBuffer

#============================================

MODE_NONE = 0

#============================================

@dataclasses.dataclass
class FrameResult:
	frame_number: int
	mode: int = MODE_NONE
	selected: list = dataclasses.field(default_factory=list)
	points: list = dataclasses.field(default_factory=list)
	corners: dict | None = None
	similarity: dict | None = None
	translation: dict | None = None
	solver_success: bool | None = None
	achieved_precision: float | None = None
	probe_refined: bool | None = None

	#============================
	def to_dict(self) -> dict:
		data = {
			"frame_number": self.frame_number,
			"mode": self.mode,
			"selected": list(self.selected),
			"points": list(self.points),
		}
		for key in ("corners", "similarity", "translation", "solver_success",
			"achieved_precision", "probe_refined"):
			value = getattr(self, key)
			if value is not None:
				data[key] = value
		return data

#============================================

class DetailTracker():
	"""
	Track up to four details through a sequence of frames.

	Args:
		settings: Normalized settings (see config.build_settings).
		tracer: Debug output sink.
	"""
	def __init__(self, settings: dict | None = None, tracer: utils.Tracer | None = None):
		if settings is None:
			settings = config.default_settings()
		self.settings = settings
		self.tracer = utils.resolve_tracer(tracer)
		self.reference_buffer = None
		self.previous_buffer = None
		self.reference_mask = None
		self.start_coords = []
		self.previous_coords = []
		self.previous_selection = []
		self.lost_trace_count = 0
		self.frames_tracked = 0

	#============================
	def start(self, reference_buffer: PixelBuffer, points: list,
		reference_mask: numpy.ndarray | None = None) -> None:
		"""
		Capture the start coordinates on the reference frame.

		Args:
			reference_buffer: First frame.
			points: Up to four (x, y) detail coordinates.
			reference_mask: Optional background mask for probe refinement.
		"""
		if len(points) == 0:
			raise RuntimeError("need at least one point to track")
		if len(points) > select.MAX_CORRESPONDENCES:
			raise RuntimeError(f"can track at most {select.MAX_CORRESPONDENCES} points")
		self.reference_buffer = reference_buffer
		self.previous_buffer = reference_buffer
		self.reference_mask = reference_mask
		self.start_coords = []
		for x, y in points:
			valid = reference_buffer.in_bounds(int(x), int(y))
			if not valid:
				self.tracer.trace(f"start point ({x},{y}) is outside the reference frame")
			self.start_coords.append(select.PixelCoord(int(x), int(y), valid=valid))
		self.previous_coords = [dataclasses.replace(coord) for coord in self.start_coords]
		self.previous_selection = []
		self.lost_trace_count = 0
		self.frames_tracked = 0
		return

	#============================
	def locate_offsets(self) -> list[tuple[int, int]]:
		"""
		Start offset per point for the next locate run.

		Points valid in the previous frame continue from their last
		displacement, lost points use the average displacement of the
		valid ones.
		"""
		offsets = []
		sum_x = 0
		sum_y = 0
		count = 0
		for start, previous in zip(self.start_coords, self.previous_coords):
			if previous.valid and start.valid:
				offset = (previous.x - start.x, previous.y - start.y)
				sum_x += offset[0]
				sum_y += offset[1]
				count += 1
				offsets.append(offset)
			else:
				offsets.append(None)
		avg_offset = (0, 0)
		if count > 0:
			avg_offset = (int(sum_x / count), int(sum_y / count))
		return [offset if offset is not None else avg_offset for offset in offsets]

	#============================
	def _locate_point(self, idx: int, frame_buffer: PixelBuffer, offset: tuple[int, int]):
		locate_settings = self.settings["locate"]
		# lost points go back to the first frame in either reference mode
		if self.settings["tracking"]["reference"] == "previous" and self.previous_coords[idx].valid:
			ref_buffer = self.previous_buffer
			ref_coord = self.previous_coords[idx]
			offset = (0, 0)
		else:
			ref_buffer = self.reference_buffer
			ref_coord = self.start_coords[idx]
		result = locate.locate(ref_buffer, ref_coord.x, ref_coord.y, locate_settings["shape_radius"],
			frame_buffer, locate_settings["move_radius"], offset[0], offset[1],
			settings=self.settings, tracer=self.tracer)
		valid = ref_coord.valid and result.found and result.avg_colordiff < locate_settings["colordiff_threshold"]
		untuned = select.PixelCoord(result.x, result.y, valid=valid, colordiff=result.avg_colordiff)
		current = dataclasses.replace(untuned)
		shortlist = None
		if valid and self.settings["tune"]["enabled"]:
			shortlist = tune.find_tune_offsets(ref_buffer, frame_buffer, ref_coord.as_tuple(),
				untuned.as_tuple(), settings=self.settings, tracer=self.tracer)
			shortlist = tune.filter_shortlist(shortlist, settings=self.settings, tracer=self.tracer)
			best = tune.best_offset(shortlist)
			if best is not None:
				current.x += best.dx
				current.y += best.dy
				shortlist = tune.rebase_shortlist(shortlist, best.dx, best.dy)
		return (current, untuned, shortlist)

	#============================
	def track(self, frame_buffer: PixelBuffer, frame_number: int) -> FrameResult:
		"""
		Track all points into a new frame and compute its alignment.

		Args:
			frame_buffer: Frame to align onto the reference frame.
			frame_number: Frame number, reported back in the result.

		Returns:
			FrameResult: Mode used, selected indices and the transform.
		"""
		if self.reference_buffer is None:
			raise RuntimeError("call start() before track()")
		offsets = self.locate_offsets()
		corr_set = select.CorrespondenceSet()
		shortlists = []
		for idx, start in enumerate(self.start_coords):
			current, untuned, shortlist = self._locate_point(idx, frame_buffer, offsets[idx])
			reference = select.PixelCoord(start.x, start.y, valid=start.valid)
			corr_set.add(reference, current, untuned)
			shortlists.append(shortlist)
		result = FrameResult(frame_number=frame_number)
		tracked = corr_set.valid_count()
		wanted = min(self.settings["select"]["num_points"], len(self.start_coords))
		mode = min(wanted, tracked)
		if mode == 3:
			mode = 2
		if mode == 4:
			if not self._solve_four(corr_set, frame_buffer, shortlists, result):
				mode = 2
		if mode == 2:
			if not self._solve_two(corr_set, result):
				mode = 1
		if mode == 1:
			if not self._solve_one(corr_set, result):
				mode = MODE_NONE
		result.mode = mode
		if mode == MODE_NONE:
			result.selected = []
			result.translation = geo.SimilarityTransform().to_dict()
		for idx, pair in enumerate(corr_set):
			result.points.append({
				"index": idx,
				"reference": list(pair.reference.as_tuple()),
				"current": list(pair.current.as_tuple()),
				"untuned": list(pair.untuned.as_tuple()),
				"valid": pair.current.valid,
				"quality": round(pair.quality(), 6),
				"status": pair.current.status,
			})
		self._record_trace_state(tracked, wanted, frame_number)
		for idx, pair in enumerate(corr_set):
			if pair.current.valid:
				self.previous_coords[idx] = dataclasses.replace(pair.current)
			else:
				self.previous_coords[idx] = dataclasses.replace(self.previous_coords[idx], valid=False)
		self.previous_buffer = frame_buffer
		self.previous_selection = list(result.selected)
		self.frames_tracked += 1
		return result

	#============================
	def _record_trace_state(self, tracked: int, wanted: int, frame_number: int) -> None:
		if tracked >= wanted:
			self.lost_trace_count = 0
			return
		self.lost_trace_count += 1
		if self.lost_trace_count == 1 and not utils.is_quiet_mode():
			print(f"WARNING: frame {frame_number} lost track of {wanted - tracked} of {wanted} points")
		return

	#============================
	def _solve_four(self, corr_set: select.CorrespondenceSet, frame_buffer: PixelBuffer,
		shortlists: list, result: FrameResult) -> bool:
		width = self.reference_buffer.width
		height = self.reference_buffer.height
		selection = select.select_best_points(corr_set, 4, self.previous_selection, width, height,
			settings=self.settings, tracer=self.tracer)
		if len(selection) != 4:
			return False
		solved = perspective.solve_perspective(corr_set, width, height,
			settings=self.settings, tracer=self.tracer)
		result.solver_success = solved.success
		result.achieved_precision = solved.achieved_precision
		if solved.corners is None or not solved.success:
			self.tracer.trace(f"frame {result.frame_number}: perspective solve failed")
			return False
		corners = solved.corners
		result.probe_refined = False
		if self.settings["probe"]["enabled"]:
			comparer = probe.MaskedRegionComparer(self.reference_buffer, frame_buffer,
				mask=self.reference_mask, opacity_level=self.settings["locate"]["opacity_level"])
			refined = probe.refine(corners, solved.alternates, shortlists, corr_set, comparer,
				settings=self.settings, tracer=self.tracer)
			corners = refined.corners
			result.probe_refined = refined.refined
		result.selected = selection
		result.corners = corners.to_dict()
		return True

	#============================
	def _solve_two(self, corr_set: select.CorrespondenceSet, result: FrameResult) -> bool:
		selection = select.select_best_points(corr_set, 2, self.previous_selection,
			move_radius=self.settings["locate"]["move_radius"], settings=self.settings, tracer=self.tracer)
		if len(selection) != 2:
			return False
		pair_a = corr_set[selection[0]]
		pair_b = corr_set[selection[1]]
		similarity = geo.similarity_values(pair_a.reference.as_tuple(), pair_b.reference.as_tuple(),
			pair_a.current.as_tuple(), pair_b.current.as_tuple())
		result.selected = selection
		result.similarity = similarity.to_dict()
		return True

	#============================
	def _solve_one(self, corr_set: select.CorrespondenceSet, result: FrameResult) -> bool:
		selection = select.select_best_points(corr_set, 1, self.previous_selection,
			settings=self.settings, tracer=self.tracer)
		if len(selection) != 1:
			return False
		pair = corr_set[selection[0]]
		result.selected = selection
		result.translation = geo.translation_values(pair.reference.as_tuple(), pair.current.as_tuple()).to_dict()
		return True
