# -*- coding: utf-8 -*-
"""
Model families: how a per-voxel model value is reoriented by a linear map

The resampler knows nothing about what the components of a voxel mean.  It
hands each non-zero interpolated value to a ModelFamily together with the
local linear map (a rotation when finite-strain reorientation is on, the
raw Jacobian otherwise) and a WorkerContext identifying the calling worker.

Two families are supplied:

    - VectorModel: the value is an N-vector (a direction or displacement)
      and is simply multiplied by the map.

    - TensorModel: the value is a 3-D symmetric tensor (e.g. a diffusion
      tensor) stored as its 6-element lower triangle.  Rotations are applied
      as R D R^T; general maps go through the preservation-of-principal-
      direction (PPD) construction first.

All methods broadcast over the leading axes of the values.
"""
import numpy as np


class WorkerContext:
    '''
    reorient.WorkerContext - per-worker token and scratch storage

    One WorkerContext exists per concurrent worker during a resampling
    pass.  Model families may keep scratch arrays in it so that the hot loop
    does not reallocate; no two workers ever share a context.

    Parameters
    ----------
    worker_id : int
        The worker's number (0 for single-threaded operation).
    '''
    def __init__(self, worker_id=0):
        self.worker_id = worker_id
        self.scratch = {}

    def buffer(self, name, shape, dtype=float):
        '''
        buffer - get a named scratch array, reusing the last one if possible

        The contents are undefined on return.
        '''
        shape = tuple(shape)
        buf = self.scratch.get(name)
        if( buf is None or buf.shape != shape or buf.dtype != np.dtype(dtype) ):
            buf = np.empty(shape, dtype=dtype)
            self.scratch[name] = buf
        return buf

    def __repr__(self):
        return f"WorkerContext({self.worker_id})"


class ModelFamily:
    '''
    reorient.ModelFamily - base class for reorientable model values

    Subclasses overload reorient(), and usually check_components().

    Parameters
    ----------
    tolerance : float (default 0)
        Absolute tolerance for the zero-model test.  With the default, only
        values whose components are all exactly zero are zero models.
    '''
    name = "generic"

    def __init__(self, tolerance=0.0):
        if( tolerance < 0 ):
            raise ValueError("ModelFamily: tolerance must be non-negative")
        self.tolerance = tolerance

    def is_zero(self, values):
        '''
        is_zero - test for the zero (background) model

        Returns
        -------
        numpy.ndarray of bool, with the component axis collapsed
        '''
        values = np.asarray(values)
        return np.all( np.abs(values) <= self.tolerance, axis=-1 )

    def zero(self, components, shape=()):
        return np.zeros( tuple(shape) + (int(components),) )

    def check_components(self, components, ndim):
        '''
        check_components - validate the per-voxel length for this family

        Raises
        ------
        ValueError
            The component count can't hold a model of this family.
        '''
        if( components < 1 ):
            raise ValueError(f"{self.name} model: need at least one component")

    def reorient(self, values, matrix, worker=None):
        '''
        reorient - apply a linear map to model values

        Parameters
        ----------
        values : numpy.ndarray
            Model values, components in the final axis.

        matrix : numpy.ndarray
            NxN map, or a stack of them broadcasting against values' leading
            axes.

        worker : WorkerContext or None
            Token of the calling worker, for scratch storage.

        Returns
        -------
        numpy.ndarray
            The reoriented values, same shape as values.
        '''
        raise AssertionError(
            "ModelFamily.reorient should always be overloaded by a subclass."
            )

    def __str__(self):
        return f"{self.__class__.__name__}"


class VectorModel(ModelFamily):
    '''
    reorient.VectorModel - N-vector model values

    Values are column vectors multiplied by the map: v' = M v.

    Parameters
    ----------
    normalize : Boolean (default False)
        If set, reoriented vectors are rescaled to their original length.
        That suits direction fields (e.g. principal diffusion directions)
        reoriented by a raw Jacobian.

    tolerance : float (default 0)
        Zero-model tolerance (see ModelFamily).
    '''
    name = "vector"

    def __init__(self, normalize=False, tolerance=0.0):
        super().__init__(tolerance=tolerance)
        self.normalize = normalize

    def check_components(self, components, ndim):
        if( components != ndim ):
            raise ValueError(
                f"vector model: need {ndim} components for a {ndim}-D grid; got {components}"
                )

    def reorient(self, values, matrix, worker=None):
        values = np.asarray(values, dtype=float)
        out = np.matmul( matrix, values[..., np.newaxis] )[..., 0]
        if( self.normalize ):
            old = np.linalg.norm(values, axis=-1, keepdims=True)
            new = np.linalg.norm(out, axis=-1, keepdims=True)
            out = np.where( new > 0, out * old / np.where(new > 0, new, 1), out )
        return out


##########
# Symmetric tensors: 6-vector layout is the lower triangle, row by row:
#   xx, xy, yy, xz, yz, zz

_TRIL = ( np.array([0, 1, 1, 2, 2, 2]), np.array([0, 0, 1, 0, 1, 2]) )


def vector_to_tensor(values, out=None):
    '''
    vector_to_tensor - expand 6-vectors into full symmetric 3x3 matrices

    Parameters
    ----------
    values : numpy.ndarray
        Lower-triangle tensor components (xx, xy, yy, xz, yz, zz) in the
        final axis.

    out : numpy.ndarray or None
        Optional destination with shape values.shape[:-1] + (3,3).
    '''
    values = np.asarray(values, dtype=float)
    if( values.shape[-1] != 6 ):
        raise ValueError("vector_to_tensor: need 6 components")
    if( out is None ):
        out = np.empty( values.shape[:-1] + (3, 3) )
    out[..., _TRIL[0], _TRIL[1]] = values
    out[..., _TRIL[1], _TRIL[0]] = values
    return out


def tensor_to_vector(tensors):
    '''
    tensor_to_vector - collapse symmetric 3x3 matrices to 6-vectors
    '''
    tensors = np.asarray(tensors, dtype=float)
    return tensors[..., _TRIL[0], _TRIL[1]]


def ppd_rotation(tensors, matrix):
    '''
    ppd_rotation - rotation that preserves a tensor's principal directions

    The preservation-of-principal-direction construction (Alexander et al.
    2001) finds the rotation taking the tensor's first eigenvector e1 to the
    direction of M e1, and its second eigenvector e2 into the plane spanned
    by M e1 and M e2.

    Parameters
    ----------
    tensors : numpy.ndarray (...,3,3)
    matrix : numpy.ndarray (3,3) or (...,3,3)

    Returns
    -------
    numpy.ndarray (...,3,3) of rotations
    '''
    w, v = np.linalg.eigh(tensors)
    # eigh sorts eigenvalues ascending
    e1 = v[..., :, 2]
    e2 = v[..., :, 1]
    e3 = np.cross(e1, e2)

    n1 = np.matmul( matrix, e1[..., np.newaxis] )[..., 0]
    n1 = n1 / np.linalg.norm(n1, axis=-1, keepdims=True)
    m2 = np.matmul( matrix, e2[..., np.newaxis] )[..., 0]
    n2 = m2 - (n1 * m2).sum(axis=-1, keepdims=True) * n1
    n2 = n2 / np.linalg.norm(n2, axis=-1, keepdims=True)
    n3 = np.cross(n1, n2)

    new = np.stack( (n1, n2, n3), axis=-1 )
    old = np.stack( (e1, e2, e3), axis=-1 )
    return np.matmul( new, np.swapaxes(old, -1, -2) )


class TensorModel(ModelFamily):
    '''
    reorient.TensorModel - 3-D symmetric tensor model values

    Values are 6-vectors (xx, xy, yy, xz, yz, zz).  An orthonormal map R
    reorients a tensor D as R D R^T.  Any other map M (e.g. a raw Jacobian,
    when finite-strain reorientation is off) is first turned into a rotation
    with the PPD construction (see ppd_rotation).

    Reorientation by a rotation preserves eigenvalues, and maps the zero
    tensor to itself.
    '''
    name = "tensor"

    def check_components(self, components, ndim):
        if( ndim != 3 or components != 6 ):
            raise ValueError(
                f"tensor model: need 6 components on a 3-D grid; got {components} on {ndim}-D"
                )

    def reorient(self, values, matrix, worker=None):
        values = np.asarray(values, dtype=float)
        matrix = np.asarray(matrix, dtype=float)

        shape = values.shape[:-1] + (3, 3)
        if( worker is not None ):
            tens = vector_to_tensor( values, out=worker.buffer('tensor', shape) )
        else:
            tens = vector_to_tensor( values )

        rtr = np.matmul( matrix, np.swapaxes(matrix, -1, -2) )
        orthonormal = np.all( np.isclose(rtr, np.eye(3), atol=1e-6), axis=(-2, -1) )

        if( np.all(orthonormal) ):
            rot = matrix
        else:
            rot = np.where( np.asarray(orthonormal)[..., np.newaxis, np.newaxis],
                            matrix,
                            ppd_rotation(tens, matrix) )

        out = np.matmul( np.matmul(rot, tens), np.swapaxes(rot, -1, -2) )
        return tensor_to_vector(out)
