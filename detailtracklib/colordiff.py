#!/usr/bin/env python3

"""
Color difference metrics.

All metrics take two pixel samples (sequences whose first three items are
8-bit R, G, B values) and return a difference where 0.0 is an exact match
and 1.0 the maximal difference. The Lab based metrics can exceed 1.0 for
extreme inputs; callers clamp with clamp_unit().
"""

# Standard Library
import colorsys
import math

# PIP3 modules
import numpy

#============================================

MAX_CHANNEL_SUM = 765.0

# D65 reference white, 2 degree observer
WHITE_X = 95.047
WHITE_Y = 100.0
WHITE_Z = 108.883
XYZ_EPSILON = 0.008856
XYZ_KAPPA = 903.3
POW_25_7 = 6103515625.0

#============================================

def clamp_unit(value: float) -> float:
	return min(1.0, max(0.0, value))

#============================================

def simple_rgb_diff(pixel_a, pixel_b) -> float:
	"""
	Sum of absolute channel differences divided by 765.
	"""
	r_dif = abs(int(pixel_a[0]) - int(pixel_b[0]))
	g_dif = abs(int(pixel_a[1]) - int(pixel_b[1]))
	b_dif = abs(int(pixel_a[2]) - int(pixel_b[2]))
	return float(r_dif + g_dif + b_dif) / MAX_CHANNEL_SUM

#============================================

def simple_rgb_sums(rgba_a: numpy.ndarray, rgba_b: numpy.ndarray) -> numpy.ndarray:
	"""
	Per-pixel channel difference sums (0..765) for two equally shaped arrays.
	"""
	diff = numpy.abs(rgba_a[..., :3].astype(numpy.int32) - rgba_b[..., :3].astype(numpy.int32))
	return diff.sum(axis=-1)

#============================================

def rgb_to_hsv(pixel) -> tuple[float, float, float]:
	return colorsys.rgb_to_hsv(int(pixel[0]) / 255.0, int(pixel[1]) / 255.0, int(pixel[2]) / 255.0)

#============================================

def _hue_diff(hue_a: float, hue_b: float) -> float:
	# hue is an angle, 0.5 is 180 degree; result 1.0 means opposite hues
	h_dif = abs(hue_a - hue_b)
	if h_dif > 0.5:
		return (1.0 - h_dif) * 2.0
	return h_dif * 2.0

#============================================

def hsv_weighted_diff(pixel_a, pixel_b, sensitivity: float = 1.0) -> float:
	"""
	HSV based difference with de-weighted hue for dark or gray colors.

	Args:
		pixel_a: First RGB sample.
		pixel_b: Second RGB sample.
		sensitivity: Exponent applied to each channel difference.

	Returns:
		float: 1 - product of (1 - diff ** sensitivity) over h, s, v.
	"""
	if sensitivity <= 0:
		raise RuntimeError("sensitivity must be positive")
	hue_a, sat_a, val_a = rgb_to_hsv(pixel_a)
	hue_b, sat_b, val_b = rgb_to_hsv(pixel_b)
	h_dif = _hue_diff(hue_a, hue_b)
	s_dif = abs(sat_a - sat_b)
	v_dif = abs(val_a - val_b)
	v_max = max(val_a, val_b)
	s_max = max(sat_a, sat_b)
	weight = 1.0
	if v_max <= 0.25:
		# hue and saturation are unstable for dark colors
		weight = (v_max / 0.25) ** 3
	elif s_max <= 0.25:
		# same for near gray colors
		weight = (s_max / 0.25) ** 3
	keep = (1.0 - (h_dif * weight) ** sensitivity)
	keep *= (1.0 - (s_dif * weight) ** sensitivity)
	keep *= (1.0 - v_dif ** sensitivity)
	return 1.0 - keep

#============================================

def hsv_max_diff(pixel_a, pixel_b) -> float:
	"""
	Largest of the hue, saturation and value differences after shaping.

	Hue weight grows with saturation, value is squared and
	saturation cubed.
	"""
	hue_a, sat_a, val_a = rgb_to_hsv(pixel_a)
	hue_b, sat_b, val_b = rgb_to_hsv(pixel_b)
	h_dif = _hue_diff(hue_a, hue_b)
	s_dif = abs(sat_a - sat_b)
	v_dif = abs(val_a - val_b)
	s_max = max(sat_a, sat_b)
	h2_dif = min(1.0, (4.0 * s_max) * h_dif)
	v2_dif = v_dif * v_dif
	s2_dif = s_dif * s_dif * s_dif
	return max(h2_dif, v2_dif, s2_dif)

#============================================

def _pivot_rgb(value: float) -> float:
	if value > 0.04045:
		value = ((value + 0.055) / 1.055) ** 2.4
	else:
		value = value / 12.92
	return value * 100.0

#============================================

def _pivot_xyz(value: float) -> float:
	if value > XYZ_EPSILON:
		return value ** (1.0 / 3.0)
	return (XYZ_KAPPA * value + 16.0) / 116.0

#============================================

def rgb_to_lab(pixel) -> tuple[float, float, float]:
	"""
	Convert an 8-bit sRGB sample to CIE L*a*b* (D65).

	Returns:
		tuple: (L, a, b)
	"""
	red = _pivot_rgb(int(pixel[0]) / 255.0)
	green = _pivot_rgb(int(pixel[1]) / 255.0)
	blue = _pivot_rgb(int(pixel[2]) / 255.0)
	xyz_x = red * 0.4124 + green * 0.3576 + blue * 0.1805
	xyz_y = red * 0.2126 + green * 0.7152 + blue * 0.0722
	xyz_z = red * 0.0193 + green * 0.1192 + blue * 0.9505
	x = _pivot_xyz(xyz_x / WHITE_X)
	y = _pivot_xyz(xyz_y / WHITE_Y)
	z = _pivot_xyz(xyz_z / WHITE_Z)
	lightness = max(0.0, 116.0 * y - 16.0)
	return (lightness, 500.0 * (x - y), 200.0 * (y - z))

#============================================

def _hue_degree(b_value: float, a_prime: float) -> float:
	# whole degrees, matching the published reference calculator
	return float(int(round(math.degrees(math.atan2(b_value, a_prime)) + 360.0)) % 360)

#============================================

def ciede2000_diff(pixel_a, pixel_b) -> float:
	"""
	CIEDE2000 delta E scaled from 0..100 down to 0..1.
	"""
	l_1, a_1, b_1 = rgb_to_lab(pixel_a)
	l_2, a_2, b_2 = rgb_to_lab(pixel_b)
	c_star_1 = math.sqrt(a_1 * a_1 + b_1 * b_1)
	c_star_2 = math.sqrt(a_2 * a_2 + b_2 * b_2)
	c_star_avg_pow7 = ((c_star_1 + c_star_2) / 2.0) ** 7
	g_factor = 0.5 * (1.0 - math.sqrt(c_star_avg_pow7 / (c_star_avg_pow7 + POW_25_7)))
	a_prime_1 = (1.0 + g_factor) * a_1
	a_prime_2 = (1.0 + g_factor) * a_2
	c_prime_1 = math.sqrt(a_prime_1 * a_prime_1 + b_1 * b_1)
	c_prime_2 = math.sqrt(a_prime_2 * a_prime_2 + b_2 * b_2)
	h_prime_1 = _hue_degree(b_1, a_prime_1)
	h_prime_2 = _hue_degree(b_2, a_prime_2)
	delta_l_prime = l_2 - l_1
	delta_c_prime = c_prime_2 - c_prime_1
	h_bar = abs(h_prime_1 - h_prime_2)
	if c_prime_1 * c_prime_2 == 0:
		delta_h_prime = 0.0
		h_prime_avg = 0.0
	else:
		if h_bar <= 180.0:
			delta_h_prime = h_prime_2 - h_prime_1
			h_prime_avg = (h_prime_1 + h_prime_2) / 2.0
		else:
			if h_prime_2 <= h_prime_1:
				delta_h_prime = h_prime_2 - h_prime_1 + 360.0
			else:
				delta_h_prime = h_prime_2 - h_prime_1 - 360.0
			if (h_prime_1 + h_prime_2) < 360.0:
				h_prime_avg = (h_prime_1 + h_prime_2 + 360.0) / 2.0
			else:
				h_prime_avg = (h_prime_1 + h_prime_2 - 360.0) / 2.0
	delta_big_h_prime = 2.0 * math.sqrt(c_prime_1 * c_prime_2) * math.sin(math.radians(delta_h_prime / 2.0))
	l_prime_avg = (l_1 + l_2) / 2.0
	c_prime_avg = (c_prime_1 + c_prime_2) / 2.0
	l_minus_50_sqr = (l_prime_avg - 50.0) ** 2
	s_l = 1.0 + ((0.015 * l_minus_50_sqr) / math.sqrt(20.0 + l_minus_50_sqr))
	s_c = 1.0 + 0.045 * c_prime_avg
	t_factor = (1.0
		- 0.17 * math.cos(math.radians(h_prime_avg - 30.0))
		+ 0.24 * math.cos(math.radians(h_prime_avg * 2.0))
		+ 0.32 * math.cos(math.radians(h_prime_avg * 3.0 + 6.0))
		- 0.20 * math.cos(math.radians(h_prime_avg * 4.0 - 63.0)))
	s_h = 1.0 + 0.015 * t_factor * c_prime_avg
	delta_theta = 30.0 * math.exp(-(((h_prime_avg - 275.0) / 25.0) ** 2))
	c_prime_avg_pow7 = c_prime_avg ** 7
	r_c = 2.0 * math.sqrt(c_prime_avg_pow7 / (c_prime_avg_pow7 + POW_25_7))
	r_t = -math.sin(math.radians(2.0 * delta_theta)) * r_c
	term_l = delta_l_prime / s_l
	term_c = delta_c_prime / s_c
	term_h = delta_big_h_prime / s_h
	total = term_l * term_l + term_c * term_c + term_h * term_h + r_t * term_c * term_h
	return math.sqrt(max(0.0, total)) / 100.0

#============================================

def cie94_diff(pixel_a, pixel_b) -> float:
	"""
	CIE94 delta E (graphic arts weights) scaled down to 0..1.

	The chroma weights use the first sample, so the metric is not
	symmetric.
	"""
	l_a, a_a, b_a = rgb_to_lab(pixel_a)
	l_b, a_b, b_b = rgb_to_lab(pixel_b)
	delta_l = l_a - l_b
	delta_a = a_a - a_b
	delta_b = b_a - b_b
	c_1 = math.sqrt(a_a * a_a + b_a * b_a)
	c_2 = math.sqrt(a_b * a_b + b_b * b_b)
	delta_c = c_1 - c_2
	delta_h_sqr = delta_a * delta_a + delta_b * delta_b - delta_c * delta_c
	delta_h = 0.0
	if delta_h_sqr > 0:
		delta_h = math.sqrt(delta_h_sqr)
	s_c = 1.0 + 0.045 * c_1
	s_h = 1.0 + 0.015 * c_1
	term_c = delta_c / s_c
	term_h = delta_h / s_h
	total = delta_l * delta_l + term_c * term_c + term_h * term_h
	return math.sqrt(max(0.0, total)) / 100.0

#============================================

METRICS = {
	"simple_rgb": simple_rgb_diff,
	"hsv": hsv_weighted_diff,
	"hsv_max": hsv_max_diff,
	"ciede2000": ciede2000_diff,
	"cie94": cie94_diff,
}

#============================================

def get_metric(name: str):
	metric = METRICS.get(name)
	if metric is None:
		raise RuntimeError(f"unknown color metric: {name}")
	return metric

#============================================

def area_diff_sums(rgba_a: numpy.ndarray, rgba_b: numpy.ndarray, metric: str = "simple_rgb") -> numpy.ndarray:
	"""
	Per-pixel differences of two areas on the 0..765 scale.

	simple_rgb is vectorized; the other metrics are evaluated pixel by
	pixel and scaled by 765 so area sums stay comparable.
	"""
	if metric == "simple_rgb":
		return simple_rgb_sums(rgba_a, rgba_b).astype(numpy.float64)
	func = get_metric(metric)
	height, width = rgba_a.shape[:2]
	sums = numpy.zeros((height, width), dtype=numpy.float64)
	for row in range(height):
		for col in range(width):
			value = clamp_unit(func(rgba_a[row, col], rgba_b[row, col]))
			sums[row, col] = value * MAX_CHANNEL_SUM
	return sums
