from typing import Tuple
import numpy as np
import numpy.typing as npt
from typing import TypeVar, Annotated, Literal, Dict, Callable

hsv_t = Tuple[int, int, int]
bgr_t = Tuple[int, int, int]

# float statistics per H, S, V channel
hsv_stats_t = Tuple[float, float, float]

point_t = Tuple[float, float]


Dtype = TypeVar('Dtype', bound=np.generic)


array_NxNx3_t = Annotated[npt.NDArray[Dtype], Literal['N', 'N', 3]]
array_NxNx2_t = Annotated[npt.NDArray[Dtype], Literal['N', 'N', 2]]
array_NxNx1_t = Annotated[npt.NDArray[Dtype], Literal['N', 'N', 1]]

img_t = array_NxNx3_t

img_hsv_t = array_NxNx3_t

img_bgr_t = array_NxNx3_t

img_gray_t = array_NxNx1_t

# dense optical flow, (dx, dy) per pixel, float32
flow_t = array_NxNx2_t

# (prev_gray, cur_gray) -> flow
flow_estimator_t = Callable[[img_gray_t, img_gray_t], flow_t]

VizResults = Dict[str, img_t | img_gray_t]
