# -*- coding: utf-8 -*-
"""
Oriented-model resampling

OrientedModelResampler resamples a vector-valued model image (diffusion
tensors, direction fields, ...) through a spatial Transform onto an output
grid, and reorients every resampled model value by the local rotation (or
local linear map) of the Transform.

Two paths are taken depending on the Transform:

    - linear: the Transform's matrix is the Jacobian everywhere, so one
      reorientation map serves every voxel.

    - nonlinear: the Jacobian is estimated at each voxel by finite
      differences over the output grid (see helpers.local_jacobian).

The output volume is cut into disjoint regions, one per worker thread.
Each worker gets its own WorkerContext, and writes only its own region.
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .core import Transform
from .geometry import split_region
from .helpers import LinearInterpolator, extract_rotation, local_jacobian
from .image import VectorImage
from .models import VectorModel, WorkerContext

logger = logging.getLogger(__name__)

FINITE_STRAIN_DEFAULT = True
CHUNK_DEFAULT = 32768


class ConfigurationError(ValueError):
    '''
    The resampler is not set up well enough to run (e.g. no transform).
    Raised before any output is allocated or any worker starts.
    '''


class OrientedModelResampler:
    '''
    reorient.OrientedModelResampler - resample and reorient model images

    For every output voxel, the voxel's physical point is pushed through
    the transform and converted to a continuous index in the input grid.
    Inside the input, the model value is interpolated there; outside, it is
    the zero model.  Non-zero values are then reoriented by the local map of
    the transform; zero values are written unmodified (the zero model is
    assumed to be invariant under reorientation).

    Parameters
    ----------
    transform : Transform
        Maps output physical points to input physical points.  Required
        by the time resample() is called.

    interpolator : interpolator or None
        Any object with bind(), is_inside() and evaluate() (see
        reorient.helpers).  Defaults to a LinearInterpolator that ignores
        zero-model neighbours.

    geometry : Geometry or None
        The output grid.  Defaults to the input image's grid.

    finite_strain : Boolean (default True)
        If set, Jacobians are reduced to their rotational part before
        reorientation (finite-strain reorientation).  If clear, the raw
        Jacobian is handed to the model family.

    model : ModelFamily or None
        How to reorient the values.  Defaults to VectorModel().

    workers : int or None
        Number of worker threads.  Defaults to the CPU count.

    chunk : int or None
        Largest number of voxels a worker processes at once.  Each worker
        walks its region in slabs of whole outermost-axis slices, as many
        as fit in the chunk (at least one).  Defaults to CHUNK_DEFAULT.

    Examples
    --------

        import reorient as r
        rs = r.OrientedModelResampler( transform=r.Rotation(euler=[0,0,30], u='deg'),
                                       model=r.TensorModel() )
        out = rs.resample(tensor_image)
    '''
    def __init__(self, transform=None, interpolator=None, geometry=None,
                 finite_strain=FINITE_STRAIN_DEFAULT, model=None, workers=None,
                 chunk=None):
        self.transform = transform
        self.interpolator = interpolator
        self.geometry = geometry
        self.finite_strain = finite_strain
        self.model = VectorModel() if model is None else model
        self.workers = workers
        self.chunk = chunk

        # the interpolator actually bound for the current pass
        self._interpolator = None

        self.image = None
        self.output = None
        self.start_index = None
        self.end_index = None
        self.start_def = None
        self.end_def = None

    def get_output_vector_length(self):
        '''
        get_output_vector_length - components per voxel of the output

        This is the component count of the bound input image, or 0 if no
        input is bound yet.
        '''
        if( self.image is None ):
            return 0
        return self.image.components

    @property
    def is_linear(self):
        return bool(self.transform is not None and self.transform.linear)

    def bind(self, image):
        '''
        bind - set the input image
        '''
        if( not isinstance(image, VectorImage) ):
            raise ConfigurationError(
                f"OrientedModelResampler: input must be a VectorImage, not {image.__class__.__name__}"
                )
        self.image = image
        return self

    def resample(self, image=None):
        '''
        resample - run one resampling pass

        Parameters
        ----------
        image : VectorImage or None
            The input model image.  If omitted, the image given to bind()
            is used.

        Raises
        ------
        ConfigurationError
            No input, no transform, or inconsistent dimensions.  Raised
            before any output is allocated.

        Returns
        -------
        VectorImage
            The resampled, reoriented image on the output geometry, with the
            input's component count.
        '''
        if( image is not None ):
            self.bind(image)

        self._before_threaded()

        g = self.output.geometry
        nworkers = self.workers if self.workers is not None else (os.cpu_count() or 1)
        regions = split_region( g.start, g.size, max(int(nworkers), 1) )
        logger.info( "Resampling %s -> %s with %s (%s path, finite strain %s) on %d region(s)",
                     self.image.geometry.size.tolist(), g.size.tolist(), self.transform,
                     "linear" if self.is_linear else "nonlinear",
                     self.finite_strain, len(regions) )

        if( len(regions) <= 1 ):
            counts = [ self._threaded_generate(start, size, WorkerContext(ii))
                       for ii, (start, size) in enumerate(regions) ]
        else:
            with ThreadPoolExecutor(max_workers=len(regions)) as pool:
                futures = [ pool.submit( self._threaded_generate, start, size, WorkerContext(ii) )
                            for ii, (start, size) in enumerate(regions) ]
                # result() re-raises anything that went wrong in a worker
                counts = [ f.result() for f in futures ]

        bad = sum(counts)
        if( bad ):
            logger.warning( "%d voxel(s) got a non-finite reorientation map "
                            "(singular finite-difference Jacobian)", bad )
        return self.output

    def local_jacobian(self, index):
        '''
        local_jacobian - finite-difference Jacobian at output voxel(s)

        Uses the definition domain captured at setup, so it is only valid
        after resample() (or _before_threaded()) on the nonlinear path.
        '''
        if( self.start_def is None ):
            raise ConfigurationError("local_jacobian: no definition domain; resample first")
        return local_jacobian( index, self.output.geometry, self.transform,
                               self.start_def, self.end_def )

    ##########
    # Setup, single-threaded

    def _before_threaded(self):
        if( self.image is None ):
            raise ConfigurationError("OrientedModelResampler: no input image")

        ig = self.image.geometry
        self.start_index = ig.start.copy()
        self.end_index = ig.end

        if( self.transform is None ):
            raise ConfigurationError("OrientedModelResampler: no valid transformation")
        if( not isinstance(self.transform, Transform) ):
            raise ConfigurationError("OrientedModelResampler: transform must be a reorient.Transform")

        og = ig if self.geometry is None else self.geometry
        if( og.ndim != ig.ndim ):
            raise ConfigurationError(
                f"OrientedModelResampler: output grid is {og.ndim}-D but input is {ig.ndim}-D"
                )
        if( self.transform.idim > og.ndim or self.transform.odim > ig.ndim ):
            raise ConfigurationError(
                f"OrientedModelResampler: {self.transform} does not fit a {og.ndim}-D grid"
                )
        try:
            self.model.check_components( self.image.components, ig.ndim )
        except ValueError as err:
            raise ConfigurationError(str(err)) from err

        if( self.chunk is not None and int(self.chunk) < 1 ):
            raise ConfigurationError("OrientedModelResampler: chunk must be at least 1 voxel")

        # A default interpolator follows the current model, so it is made
        # afresh on every pass.
        if( self.interpolator is None ):
            self._interpolator = LinearInterpolator(model=self.model)
        else:
            self._interpolator = self.interpolator
        self._interpolator.bind(self.image)

        self.output = VectorImage.allocate( og, self.get_output_vector_length() )

        if( not self.is_linear ):
            self.start_def = og.start.copy()
            self.end_def = og.end

    ##########
    # Per-region work

    def _chunks(self, start, size):
        '''
        Walk a region in slabs of whole slices of its outermost axis.
        '''
        limit = CHUNK_DEFAULT if self.chunk is None else int(self.chunk)
        axis = len(size) - 1
        per_slice = int(np.prod(size[:axis]))
        step = max( limit // max(per_slice, 1), 1 )
        for lo in range( int(start[axis]), int(start[axis] + size[axis]), step ):
            cstart = start.copy()
            csize = size.copy()
            cstart[axis] = lo
            csize[axis] = min( step, int(start[axis] + size[axis]) - lo )
            yield cstart, csize

    def _threaded_generate(self, start, size, worker):
        '''
        Resample one region of the output.  Returns the number of voxels
        whose reorientation map came out non-finite.
        '''
        logger.debug( "worker %d: region start %s size %s",
                      worker.worker_id, start.tolist(), size.tolist() )
        if( self.is_linear ):
            # One map serves the whole region
            worker.scratch['linear_map'] = extract_rotation(
                self.transform.matrix(self.output.geometry.ndim),
                self.finite_strain, worker ).copy()
            generate = self._linear_generate
        else:
            generate = self._nonlinear_generate

        bad = 0
        for cstart, csize in self._chunks(start, size):
            bad += generate(cstart, csize, worker)
        return bad

    def _sample(self, index, linear, worker):
        ig = self.image.geometry
        og = self.output.geometry
        n = og.ndim

        points = self.transform.apply( og.index_to_point(index) )[..., 0:n]
        cindex = ig.point_to_continuous_index(points)

        # A single-slice input can't be missed by rounding error along its
        # last axis.
        if( linear and ig.size[n-1] <= 1 ):
            cindex[..., n-1] = ig.start[n-1]

        values = worker.buffer( 'values', index.shape[:-1] + (self.get_output_vector_length(),) )
        values[...] = 0
        inside = self._interpolator.is_inside(cindex)
        if( np.any(inside) ):
            values[inside] = self._interpolator.evaluate( cindex[inside] )
        return values

    def _linear_generate(self, start, size, worker):
        og = self.output.geometry
        index = og.indices(start, size)
        values = self._sample(index, True, worker)
        rotation = worker.scratch['linear_map']

        nonzero = ~self.model.is_zero(values)
        if( np.any(nonzero) ):
            values[nonzero] = self.model.reorient( values[nonzero], rotation, worker )

        self.output.region_view(start, size)[...] = values
        return 0 if np.all(np.isfinite(rotation)) else int(np.count_nonzero(nonzero))

    def _nonlinear_generate(self, start, size, worker):
        og = self.output.geometry
        index = og.indices(start, size)
        values = self._sample(index, False, worker)

        bad = 0
        nonzero = ~self.model.is_zero(values)
        if( np.any(nonzero) ):
            jac = local_jacobian( index[nonzero], og, self.transform,
                                  self.start_def, self.end_def )
            rotation = extract_rotation( jac, self.finite_strain, worker )
            bad = int(np.count_nonzero( ~np.all(np.isfinite(rotation), axis=(-2, -1)) ))
            values[nonzero] = self.model.reorient( values[nonzero], rotation, worker )

        self.output.region_view(start, size)[...] = values
        return bad
