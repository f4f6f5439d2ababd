import hypothesis.strategies as st
from hypothesis.extra import numpy as numpy_st

from slicestem.scan import CustomScan, GridScan

from .core import sensible_floats


@st.composite
def custom_scan(draw, max_value=10.0):
    n = draw(st.integers(1, 10))
    positions = numpy_st.arrays(
        dtype=float,
        shape=(n, 2),
        elements=sensible_floats(min_value=0, max_value=max_value),
    )
    return CustomScan(draw(positions))


@st.composite
def grid_scan(draw):
    extent = draw(
        st.tuples(st.floats(min_value=1.0, max_value=5.0), st.floats(min_value=1.0, max_value=5.0))
    )
    step = draw(
        st.tuples(st.floats(min_value=0.2, max_value=1.0), st.floats(min_value=0.2, max_value=1.0))
    )
    start_x = draw(st.floats(min_value=0.0, max_value=0.5))
    start_y = draw(st.floats(min_value=0.0, max_value=0.5))
    return GridScan(
        extent, step=step, window_x=(start_x, 1.0), window_y=(start_y, 1.0)
    )
