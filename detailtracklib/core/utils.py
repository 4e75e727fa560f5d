#!/usr/bin/env python3

import os
import sys

#============================================

QUIET_ENV_VAR = "DETAILTRACK_QUIET"
_QUIET_MODE = None

#============================================

def set_quiet_mode(quiet: bool) -> None:
	global _QUIET_MODE
	_QUIET_MODE = bool(quiet)
	return

#============================================

def is_quiet_mode() -> bool:
	if _QUIET_MODE is not None:
		return _QUIET_MODE
	value = os.environ.get(QUIET_ENV_VAR, "")
	return value.strip().lower() in ("1", "true", "yes")

#============================================

class Tracer():
	"""
	Debug output sink handed to the engine functions.

	A disabled tracer swallows every message, so callers never need
	a global debug switch.
	"""
	def __init__(self, enabled: bool = False, stream=None):
		self.enabled = enabled
		self.stream = stream
		self.count = 0

	#============================
	def trace(self, message: str) -> None:
		if not self.enabled:
			return
		self.count += 1
		stream = self.stream
		if stream is None:
			stream = sys.stderr
		print(message, file=stream)

#============================================

def resolve_tracer(tracer: Tracer | None) -> Tracer:
	if tracer is None:
		return Tracer(enabled=False)
	return tracer

#============================================

def ensure_file_exists(filepath: str) -> None:
	if not os.path.isfile(filepath):
		raise RuntimeError(f"file not found: {filepath}")
	return

#============================================

def sqr_distance(ax: float, ay: float, bx: float, by: float) -> float:
	dx = ax - bx
	dy = ay - by
	return (dx * dx) + (dy * dy)

#============================================

def parse_point(text: str) -> tuple[int, int]:
	"""
	Parse an "x,y" command line value into integer coordinates.
	"""
	parts = str(text).replace(" ", "").split(",")
	if len(parts) != 2:
		raise RuntimeError(f"point must be x,y: {text}")
	try:
		return (int(float(parts[0])), int(float(parts[1])))
	except ValueError as error:
		raise RuntimeError(f"point must be numeric x,y: {text}") from error
