"""
Record mapping, fingerprinting and classification parsing.
"""

from .bdns import map_convocatoria
from .fingerprint import fingerprint_convocatoria, get_change_detector

__all__ = ['map_convocatoria', 'fingerprint_convocatoria', 'get_change_detector']
