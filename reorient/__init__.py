# -*- coding: utf-8 -*-

# Transform base class and core subclasses
from .core import Transform, Identity, Inverse, Composition

# Grids and images
from .geometry import Geometry, split_region
from .image import VectorImage

# Interpolation, local Jacobians, rotation extraction
from .helpers import (LinearInterpolator, NearestInterpolator,
                      local_jacobian, neighbour_indices, extract_rotation)

# Supplied transforms
from .basic import Linear, Scale, Rotation, Offset, Displacement, Function

# Model families
from .models import (WorkerContext, ModelFamily, VectorModel, TensorModel,
                     vector_to_tensor, tensor_to_vector, ppd_rotation)

# The resampler itself
from .resample import OrientedModelResampler, ConfigurationError

from .io import read_fits, write_fits

__version__ = "0.1.0"
