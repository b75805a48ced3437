"""
Offline approximate geocoding from French postal codes.

Used when the geocoding service is unavailable: a postal code is mapped to
the coordinates of its département prefecture. Precision is a few tens of
kilometres, which is enough for the 100 km validity threshold.
"""

import re
import unicodedata
from typing import Optional

from movematch.app.services.geo import Coordinates


# Département prefix -> prefecture coordinates
DEPARTEMENT_CENTROIDS = {
    "01": (46.205, 5.225), "02": (49.564, 3.620), "03": (46.565, 3.333),
    "04": (44.092, 6.236), "05": (44.559, 6.079), "06": (43.710, 7.262),
    "07": (44.735, 4.599), "08": (49.762, 4.726), "09": (42.965, 1.607),
    "10": (48.297, 4.074), "11": (43.213, 2.349), "12": (44.350, 2.575),
    "13": (43.296, 5.370), "14": (49.182, -0.370), "15": (44.926, 2.440),
    "16": (45.648, 0.156), "17": (46.160, -1.151), "18": (47.081, 2.399),
    "19": (45.267, 1.770), "20": (42.306, 9.150), "21": (47.322, 5.041),
    "22": (48.514, -2.765), "23": (46.171, 1.872), "24": (45.184, 0.721),
    "25": (47.238, 6.024), "26": (44.933, 4.892), "27": (49.024, 1.151),
    "28": (48.446, 1.489), "29": (47.996, -4.102), "30": (43.837, 4.360),
    "31": (43.605, 1.444), "32": (43.646, 0.586), "33": (44.838, -0.579),
    "34": (43.611, 3.877), "35": (48.117, -1.678), "36": (46.811, 1.691),
    "37": (47.394, 0.685), "38": (45.188, 5.724), "39": (46.675, 5.556),
    "40": (43.894, -0.500), "41": (47.586, 1.336), "42": (45.440, 4.387),
    "43": (45.043, 3.885), "44": (47.218, -1.554), "45": (47.903, 1.909),
    "46": (44.448, 1.441), "47": (44.203, 0.616), "48": (44.518, 3.501),
    "49": (47.478, -0.563), "50": (49.116, -1.091), "51": (48.957, 4.363),
    "52": (48.111, 5.139), "53": (48.073, -0.770), "54": (48.692, 6.184),
    "55": (48.772, 5.160), "56": (47.658, -2.760), "57": (49.120, 6.176),
    "58": (46.990, 3.159), "59": (50.629, 3.057), "60": (49.430, 2.081),
    "61": (48.432, 0.091), "62": (50.291, 2.777), "63": (45.778, 3.087),
    "64": (43.295, -0.371), "65": (43.233, 0.078), "66": (42.699, 2.895),
    "67": (48.573, 7.752), "68": (48.079, 7.358), "69": (45.764, 4.836),
    "70": (47.620, 6.155), "71": (46.307, 4.828), "72": (48.006, 0.199),
    "73": (45.564, 5.918), "74": (45.899, 6.129), "75": (48.857, 2.352),
    "76": (49.443, 1.100), "77": (48.540, 2.660), "78": (48.805, 2.130),
    "79": (46.323, -0.465), "80": (49.894, 2.296), "81": (43.928, 2.148),
    "82": (44.018, 1.355), "83": (43.124, 5.928), "84": (43.949, 4.806),
    "85": (46.671, -1.426), "86": (46.580, 0.340), "87": (45.834, 1.261),
    "88": (48.172, 6.449), "89": (47.798, 3.567), "90": (47.640, 6.863),
    "91": (48.629, 2.441), "92": (48.892, 2.207), "93": (48.908, 2.440),
    "94": (48.790, 2.455), "95": (49.036, 2.076),
    # Overseas départements and Monaco use three-digit prefixes
    "971": (15.998, -61.726), "972": (14.616, -61.059), "973": (4.922, -52.313),
    "974": (-20.882, 55.450), "976": (-12.781, 45.228), "980": (43.738, 7.424),
}

FRENCH_COUNTRY_NAMES = {"", "france", "fr", "fra", "monaco", "mc"}

_POSTAL_RE = re.compile(r"^\d{5}$")


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, strip accents and collapse whitespace."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.casefold().split())


def locate_postal_code(postal_code: Optional[str], country: Optional[str] = None) -> Optional[Coordinates]:
    """
    Approximate coordinates of a French postal code, or None when the code
    is missing, malformed, foreign or unknown.
    """
    if normalize_text(country) not in FRENCH_COUNTRY_NAMES:
        return None

    code = (postal_code or "").replace(" ", "")
    if not _POSTAL_RE.match(code):
        return None

    centroid = DEPARTEMENT_CENTROIDS.get(code[:3]) if code.startswith(("97", "98")) else None
    if centroid is None:
        centroid = DEPARTEMENT_CENTROIDS.get(code[:2])
    if centroid is None:
        return None
    return Coordinates(*centroid)
