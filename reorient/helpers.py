# -*- coding: utf-8 -*-
"""
Helper routines for the oriented-model resampler

These are the numerical pieces the resampler drives at every voxel:

    - interpolators that evaluate a vector image at continuous indices,
      with a half-open inside-buffer test;

    - the finite-difference estimator of a transform's local Jacobian, with
      clamping at the edges of the definition domain;

    - extraction of the rotational part of a Jacobian by finite-strain
      (polar) decomposition.

Every routine broadcasts over leading axes, with vectors (or matrices) in
the trailing axis (axes).
"""
import itertools
import logging

import numpy as np

logger = logging.getLogger(__name__)


class _Interpolator:
    '''
    Base for the continuous-index interpolators.  Subclasses overload
    evaluate().  The interpolator must be bound to an image before use.
    '''
    def __init__(self):
        self.image = None

    def bind(self, image):
        '''
        bind - attach the interpolator to a VectorImage
        '''
        self.image = image
        return self

    def _check_bound(self):
        if( self.image is None ):
            raise ValueError(f"{self.__class__.__name__}: no image bound")

    def is_inside(self, cindex):
        '''
        is_inside - half-open test: start-0.5 <= cindex < start+size-0.5
        '''
        self._check_bound()
        return self.image.geometry.is_inside(cindex)

    def _lookup(self, offsets):
        # offsets are (X,Y,Z) array offsets; data are (...,Z,Y,X,C)
        return self.image.data[ tuple( offsets[..., i]
                                       for i in range(offsets.shape[-1]-1, -1, -1) ) ]

    def evaluate(self, cindex):
        raise AssertionError(
            "_Interpolator.evaluate should always be overloaded by a subclass."
            )


class NearestInterpolator(_Interpolator):
    '''
    reorient.NearestInterpolator - nearest-voxel lookup

    Continuous indices are rounded to the nearest voxel (halves round up),
    then clamped into the buffer.
    '''
    def evaluate(self, cindex):
        self._check_bound()
        g = self.image.geometry
        off = np.floor( np.asarray(cindex, dtype=float) - g.start + 0.5 ).astype(int)
        off = np.clip( off, 0, g.size - 1 )
        return np.array( self._lookup(off), dtype=float )


class LinearInterpolator(_Interpolator):
    '''
    reorient.LinearInterpolator - N-linear interpolation of vector images

    The 2^N hypercube of voxels around each continuous index is sampled and
    weighted by the usual alpha/beta products.  Corner indices beyond the
    buffer are clamped onto its edge, so that points in the outer half-voxel
    (still inside by the half-open test) take the boundary voxel's value.

    Parameters
    ----------
    model : ModelFamily or None
        The model family of the image, used for zero-model detection.

    ignore_zero : Boolean (default True)
        If set (and a model is given), corners holding the zero model get
        no weight, and the remaining weights are renormalised.  That keeps
        background voxels from dragging down model values at the edge of
        the data.  If all corners are zero the result is the zero model.
        At integer indices the result is exactly the voxel's value either
        way.
    '''
    def __init__(self, model=None, ignore_zero=True):
        super().__init__()
        self.model = model
        self.ignore_zero = ignore_zero

    def evaluate(self, cindex):
        self._check_bound()
        g = self.image.geometry
        cindex = np.asarray(cindex, dtype=float)
        n = cindex.shape[-1]

        off = cindex - g.start
        fl = np.floor(off)
        alpha = off - fl
        fl = fl.astype(int)
        hi = g.size - 1

        skip_zero = self.ignore_zero and self.model is not None
        acc = None
        wsum = None
        for corner in itertools.product( (0, 1), repeat=n ):
            corner = np.array(corner)
            weight = np.where( corner, alpha, 1 - alpha ).prod( axis=-1 )
            values = self._lookup( np.clip( fl + corner, 0, hi ) )
            if( skip_zero ):
                weight = np.where( self.model.is_zero(values), 0, weight )
            term = values * weight[..., np.newaxis]
            if( acc is None ):
                acc = term
                wsum = weight
            else:
                acc = acc + term
                wsum = wsum + weight

        if( not skip_zero ):
            return acc

        # Nothing but zero models around the point: zero out.
        good = wsum > 0
        norm = np.where( good, wsum, 1 )[..., np.newaxis]
        return np.where( good[..., np.newaxis], acc / norm, 0 )


######################################################################
# Local Jacobian estimation

def neighbour_indices(index, axis, start_def, end_def):
    '''
    neighbour_indices - clamped finite-difference neighbours along an axis

    Parameters
    ----------
    index : array of int, vectors in the final axis
    axis : int
        The axis along which to step.
    start_def, end_def : N-vectors of int
        The definition domain [start_def, end_def).

    Returns
    -------
    (before, after) : arrays like index, one step down and up along the
        axis, clamped to start_def and end_def-1 respectively.
    '''
    index = np.asarray(index, dtype=int)
    before = index.copy()
    after = index.copy()
    before[..., axis] = np.maximum( before[..., axis] - 1, start_def[axis] )
    after[..., axis] = np.minimum( after[..., axis] + 1, end_def[axis] - 1 )
    return before, after


def _safe_inverse(delta):
    '''
    Invert a stack of matrices; singular members come back as NaN.
    '''
    try:
        return np.linalg.inv(delta)
    except np.linalg.LinAlgError:
        pass
    flat = delta.reshape( (-1,) + delta.shape[-2:] )
    out = np.full( flat.shape, np.nan )
    for ii in range(flat.shape[0]):
        try:
            out[ii] = np.linalg.inv(flat[ii])
        except np.linalg.LinAlgError:
            logger.debug("local_jacobian: singular finite-difference matrix")
    return out.reshape(delta.shape)


def local_jacobian(index, geometry, transform, start_def, end_def):
    '''
    local_jacobian - finite-difference Jacobian of a transform at voxels

    For each axis i, the neighbours one step before and after the voxel are
    taken (clamped to the definition domain), mapped to physical points in
    the output geometry, and pushed through the transform.  The rows

        delta[i] = p_after - p_before
        diff[i]  = T(p_after) - T(p_before)

    relate output-space steps to input-space steps, so the Jacobian is

        J = ( inverse(delta) x diff )^T

    Where an axis is a single voxel thick the two neighbours coincide;
    that axis contributes delta[i,i] = 1 and no difference.  When the last
    axis of a 3-D (or higher) definition domain is a single slice, the
    corresponding diagonal element of J is forced to 1.

    A singular delta does not raise: the Jacobian of that voxel is NaN.

    Parameters
    ----------
    index : array of int
        Voxel index (X,Y,Z,...) in the final axis; other axes broadcast.
    geometry : Geometry
        The output grid (where the indices live).
    transform : Transform
        The output-to-input point mapping.
    start_def, end_def : N-vectors of int
        The definition domain.

    Returns
    -------
    numpy.ndarray
        Jacobians, shape index.shape + (N,).  J[...,j,i] is the derivative
        of output component j along input-point axis i.
    '''
    index = np.asarray(index, dtype=int)
    start_def = np.asarray(start_def, dtype=int)
    end_def = np.asarray(end_def, dtype=int)
    n = index.shape[-1]

    delta = np.zeros( index.shape + (n,) )
    diff = np.zeros( index.shape + (n,) )

    for ii in range(n):
        before, after = neighbour_indices(index, ii, start_def, end_def)
        flat = ( before[..., ii] == after[..., ii] )[..., np.newaxis]

        pb = geometry.index_to_point(before)
        pa = geometry.index_to_point(after)
        step = np.where( flat, 0.0, pa - pb )
        step[..., ii] = np.where( flat[..., 0], 1.0, step[..., ii] )
        delta[..., ii, :] = step

        if( np.all(flat) ):
            continue
        moved = transform.apply(pa)[..., 0:n] - transform.apply(pb)[..., 0:n]
        diff[..., ii, :] = np.where( flat, 0.0, moved )

    jac = np.swapaxes( np.matmul( _safe_inverse(delta), diff ), -1, -2 )

    if( n >= 3 and start_def[n-1] == end_def[n-1] - 1 ):
        jac[..., n-1, n-1] = 1.0

    return jac


######################################################################
# Rotation extraction

def extract_rotation(jacobian, finite_strain=True, worker=None):
    '''
    extract_rotation - reduce a Jacobian to the map used for reorientation

    With finite-strain reorientation the Jacobian is factored by polar
    decomposition, J = R S, with R orthonormal and S symmetric positive
    semi-definite, and R is returned: local rotation without the stretch
    and shear.  R comes from the singular value decomposition
    J = U s V^T as R = U V^T.  Without finite strain, the Jacobian is
    returned unchanged.

    Parameters
    ----------
    jacobian : numpy.ndarray (...,N,N)
    finite_strain : Boolean (default True)
    worker : WorkerContext or None
        If given, its scratch storage receives the result.

    Returns
    -------
    numpy.ndarray (...,N,N).  Non-finite Jacobians give NaN rotations.
    '''
    jacobian = np.asarray(jacobian, dtype=float)
    if( not finite_strain ):
        return jacobian

    finite = np.all( np.isfinite(jacobian), axis=(-2, -1) )
    if( worker is not None ):
        out = worker.buffer('rotation', jacobian.shape)
    else:
        out = np.empty(jacobian.shape)

    if( np.all(finite) ):
        u, s, vt = np.linalg.svd(jacobian)
        out[...] = np.matmul(u, vt)
        return out

    out[...] = np.nan
    if( np.any(finite) ):
        u, s, vt = np.linalg.svd(jacobian[finite])
        out[finite] = np.matmul(u, vt)
    return out
