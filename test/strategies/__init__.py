from .core import gpts, sampling, energy, sensible_floats
from .potentials import potential_array
from .scan import custom_scan, grid_scan
