import hypothesis.strategies as st
import numpy as np
from hypothesis.extra import numpy as numpy_st

from slicestem.potentials import PotentialArray

from . import core as core_st


@st.composite
def potential_array(
    draw, min_slices=1, max_slices=4, min_gpts=8, max_gpts=24, max_value=50.0
):
    num_slices = draw(st.integers(min_value=min_slices, max_value=max_slices))
    gpts = draw(core_st.gpts(min_value=min_gpts, max_value=max_gpts))
    sampling = draw(core_st.sampling())
    slice_thickness = draw(st.floats(min_value=0.5, max_value=2.0))

    array = draw(
        numpy_st.arrays(
            dtype=np.float32,
            shape=(num_slices, gpts[1], gpts[0]),
            elements=st.floats(min_value=0.0, max_value=max_value, width=32),
        )
    )
    return PotentialArray(array, sampling=sampling, slice_thickness=slice_thickness)
