#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Transform subclasses for basic spatial transforms

Linear transforms (Linear, Scale, Rotation, Offset) expose a constant
matrix, so the resampler reorients with a single map for the whole volume.
Displacement and Function are nonlinear: the resampler estimates their
Jacobian at every voxel.
"""
import math

import numpy as np

from .core import Transform
from .helpers import LinearInterpolator


class Linear(Transform):
    '''
    reorient.Linear - linear (affine) transforms

    A linear transformation is a matrix operation plus an offset.  Two
    separate offsets are tracked for convenience:

        data_out = (post) + (matrix x (data + pre))

    Pre offsets work in the input (pre-matrix) coordinate system; post
    offsets work in the output (post-matrix) system.  The offsets do not
    enter the Jacobian, which is the matrix itself.

    The inverse transform is valid if and only if the matrix is invertible.

    Parameters
    ----------
    *pre : numpy.ndarray (optional; default = 0)
        Offset vector added to the input before hitting with the matrix

    *post : numpy.ndarray (optional; default = 0)
        Offset vector added to the result after hitting with the matrix

    *matrix : numpy.ndarray (optional; default = identity)
        Square 2-D array, addressed in (row,column) format.
    '''
    linear = True

    def __init__(self, *, pre=None, post=None, matrix=None):
        dim = None

        if( matrix is not None ):
            matrix = np.asarray(matrix, dtype=float)
            if( len(matrix.shape) != 2 or matrix.shape[0] != matrix.shape[1] ):
                raise ValueError("Linear: matrix must be a square 2-D array")
            dim = matrix.shape[0]

        dim = self._parse_prepost( dim, pre,  'Linear', 'Pre-offset',  'dim' )
        dim = self._parse_prepost( dim, post, 'Linear', 'Post-offset', 'dim' )

        ### If no dimension came from anywhere, default to 3 (volumes)
        if( dim is None ):
            dim = 3

        matinv = None
        if( matrix is not None ):
            try:
                matinv = np.linalg.inv(matrix)
            except np.linalg.LinAlgError:
                matinv = None

        self._setup( dim, pre, post, matrix, matinv,
                     no_reverse=(matrix is not None and matinv is None) )

    def _setup(self, dim, pre, post, matrix, matinv, no_reverse=False):
        self.idim       = int(dim)
        self.odim       = int(dim)
        self.no_forward = False
        self.no_reverse = no_reverse
        self.params = {
            'pre'    : None if pre  is None else np.asarray(pre, dtype=float),
            'post'   : None if post is None else np.asarray(post, dtype=float),
            'matrix' : matrix,
            'matinv' : matinv,
            }

    def __str__(self):
        if(not hasattr(self, '_strtmp')):
            self._strtmp = 'Linear'
        return super().__str__()

    def _matrix(self):
        m = self.params['matrix']
        if( m is None ):
            return np.eye(self.idim)
        return m

    def _forward(self, data: np.ndarray):
        if( self.params['pre'] is not None ):
            data = data + self.params['pre']

        m = self.params['matrix']
        if( m is not None ):
            data = np.matmul( m, data[..., np.newaxis] )[..., 0]

        if( self.params['post'] is not None ):
            data = data + self.params['post']

        return( data )

    def _reverse(self, data: np.ndarray):
        if( self.params['post'] is not None ):
            data = data - self.params['post']

        m = self.params['matinv']
        if( m is not None ):
            data = np.matmul( m, data[..., np.newaxis] )[..., 0]

        if( self.params['pre'] is not None ):
            data = data - self.params['pre']

        return( data )

    def _parse_prepost(self, dimspec, vec, objname, prepostname, dimname):
        '''
        _parse_prepost - check a pre- or post-offset vector against the
        dimension found so far, and return the dimension.
        '''
        if( vec is not None ):
            if( not isinstance(vec, (np.ndarray, list, tuple)) ):
                raise ValueError(f"{objname}: {prepostname} must be a 1-D vector or None")
            if( len(np.shape(vec)) != 1 ):
                raise ValueError(f"{objname}: {prepostname} must be a 1-D vector")
            if( dimspec is not None and dimspec != np.shape(vec)[0] ):
                raise ValueError(f"{objname}: {prepostname} size must match {dimname}")
            dimspec = np.shape(vec)[0]
        return dimspec


##########
# Subclasses of Linear

class Scale(Linear):
    '''
    reorient.Scale - linear transform that just stretches vectors

        data_out = (post) + (diag(scale) x (data + pre))

    Parameters
    ----------
    scale : scalar or vector
        Scale along each axis, or a single uniform scale.

    dim : int (optional)
        Dimension, needed if scale is a scalar and no offset is given.
        Defaults to 3.

    /pre, /post : numpy.ndarray (optional)
        Offsets as for Linear.
    '''
    def __init__(self, scale, dim=None, *, post=None, pre=None):
        dim = self._parse_prepost( dim, pre,  'Scale', 'Pre-offset',  'dim' )
        dim = self._parse_prepost( dim, post, 'Scale', 'Post-offset', 'dim' )

        scale = np.array(scale, dtype=float).reshape(-1)
        if( dim is not None ):
            if( scale.shape[0] != dim and scale.shape[0] != 1 ):
                raise ValueError('Scale: dim must agree with size of scale vector')
            scale = scale + np.zeros(dim)
        elif( scale.shape[0] == 1 ):
            dim = 3
            scale = scale + np.zeros(dim)
        else:
            dim = scale.shape[0]

        m = np.diag(scale)
        invertible = bool(np.all(scale != 0))
        m1 = np.diag(1.0 / scale) if invertible else None

        self._setup( dim, pre, post, m, m1, no_reverse=not invertible )

    def __str__(self):
        self._strtmp = "Linear/Scale"
        return super().__str__()


class Rotation(Linear):
    '''
    reorient.Rotation - linear transform that just rotates vectors

        data_out = (post) + (rmatrix x (data + pre))

    You specify the rotation angles between pairs of axes, or Euler angles
    in 3-D.

    Examples
    --------

        a = r.Rotation(43, u='deg')              # 2-D, 43 degrees CCW
        a = r.Rotation( euler=[10,20,30], u='deg') # 3-D axial vector
        a = r.Rotation( [[0,1,30],[2,0,20]], u='deg' )

    Parameters
    ----------
    rot : scalar or list of 3-vectors or None
        A scalar is a rotation from axis 0 toward axis 1 (2-D).  Otherwise
        each 3-vector is (from-axis, toward-axis, angle).  Rotations in a
        list are applied in reverse order (like function composition).

    /euler : 3-vector or None
        Euler angles applied in dimension order: X (1->2), Y (2->0),
        Z (0->1).

    /u : string (default 'rad')
        Angular unit, 'rad' or 'deg'.  Only the first character is checked.

    /pre, /post : offsets as for Linear.
    '''
    def __init__(self, rot=None, *, post=None, pre=None, euler=None, u='rad'):
        d_offs = self._parse_prepost( None,   pre,  'Rotation', 'Pre-offset',  'd' )
        d_offs = self._parse_prepost( d_offs, post, 'Rotation', 'Post-offset', 'd' )

        if( rot is None ):
            if( euler is None ):
                raise ValueError("Rotation: either rot or euler angles must be specified")
            if( len(euler) != 3 ):
                raise ValueError("Rotation: euler angles must have 3 components (axial vector)")
            rot = np.array( [ [0, 1, euler[2]], [2, 0, euler[1]], [1, 2, euler[0]] ] )
        else:
            if( euler is not None ):
                raise ValueError("Rotation: must specify only one of rot and euler angles")
            rot = np.array(rot, dtype=float)

        if( rot.size == 1 ):
            rot = np.array( [ [0, 1, rot.reshape(-1)[0]] ] )
        if( len(rot.shape) == 1 ):
            rot = np.expand_dims(rot, 0)
        if( len(rot.shape) != 2 or rot.shape[1] != 3 ):
            raise ValueError("Rotation: rot parameter must be a collection of 3-vectors")

        fr_axes = rot[:, 0].astype(int)
        to_axes = rot[:, 1].astype(int)
        angs    = rot[:, 2].astype(float)

        if( np.any(fr_axes == to_axes) ):
            raise ValueError('Rotation: invalid axis-to-self rotation is not allowed')

        if( u[0] == 'd' ):
            angs = angs * math.pi / 180
        elif( u[0] != 'r' ):
            raise ValueError("Rotation: unit must be 'rad' or 'deg'")

        d = int( max( np.amax(fr_axes), np.amax(to_axes) ) + 1 )
        if( d_offs is not None ):
            if( d_offs < d ):
                raise ValueError('Rotation: offset vectors must have at least the dims of the rotation')
            d = d_offs

        out = np.eye(d)
        for i in range(fr_axes.shape[0])[::-1]:
            m = np.eye(d)
            c = np.cos(angs[i])
            s = np.sin(angs[i])
            m[fr_axes[i], fr_axes[i]] = c
            m[to_axes[i], to_axes[i]] = c
            m[to_axes[i], fr_axes[i]] = s
            m[fr_axes[i], to_axes[i]] = -s
            out = np.matmul(m, out)

        # rotations are always invertible
        self._setup( d, pre, post, out, out.transpose() )

    def __str__(self):
        self._strtmp = "Linear/Rotation"
        return super().__str__()


class Offset(Linear):
    '''
    reorient.Offset - linear transform that just displaces vectors

        data_out = data + offset

    Its matrix is the identity.
    '''
    def __init__(self, offset):
        offset = np.array(offset, dtype=float)
        if( len(offset.shape) != 1 ):
            raise ValueError("Offset: input must be a vector")
        self._setup( offset.shape[0], offset, None, None, None )

    def __str__(self):
        self._strtmp = "Linear/Offset"
        return super().__str__()


##########
# Nonlinear transforms

class Displacement(Transform):
    '''
    reorient.Displacement - dense displacement field transform

    The transform adds a displacement vector, linearly interpolated from a
    field sampled on a regular grid, to each point:

        data_out = data + d(data)

    Points outside the field's grid are not displaced.  This is the usual
    output of nonlinear registration, expressed as a map from output
    (fixed) space to input (moving) space.  It has no closed-form inverse.

    Parameters
    ----------
    field : VectorImage
        Displacement vectors in physical units, one component per grid
        dimension.
    '''
    def __init__(self, field):
        n = field.geometry.ndim
        if( field.components != n ):
            raise ValueError(
                f"Displacement: field needs {n} components on a {n}-D grid; got {field.components}"
                )
        self.idim = n
        self.odim = n
        self.no_forward = False
        self.no_reverse = True
        self.params = {
            'field': field,
            'interpolator': LinearInterpolator(ignore_zero=False).bind(field),
            }

    def _forward(self, data: np.ndarray):
        data = np.asarray(data, dtype=float)
        interp = self.params['interpolator']
        cindex = self.params['field'].geometry.point_to_continuous_index(data)
        inside = interp.is_inside(cindex)
        disp = interp.evaluate(cindex)
        return data + np.where( inside[..., np.newaxis], disp, 0.0 )

    def __str__(self):
        self._strtmp = "Displacement"
        return super().__str__()


class Function(Transform):
    '''
    reorient.Function - wrap Python callables as a Transform

    The callables receive and return arrays of points with the vector in the
    final axis (other axes broadcast).  A Function is treated as nonlinear
    even if the callable happens to be affine.

    Parameters
    ----------
    forward : callable
        The forward mapping.

    reverse : callable or None
        The inverse mapping, if there is one.

    dim : int (default 3)
        Point dimension.

    name : str (default "Function")
        Used in the string form.
    '''
    def __init__(self, forward, reverse=None, dim=3, name="Function"):
        if( not callable(forward) ):
            raise ValueError("Function: forward must be callable")
        if( reverse is not None and not callable(reverse) ):
            raise ValueError("Function: reverse must be callable or None")
        self.idim = dim
        self.odim = dim
        self.no_forward = False
        self.no_reverse = reverse is None
        self.params = {
            'forward': forward,
            'reverse': reverse,
            'name': name,
            }

    def _forward(self, data):
        return np.asarray( self.params['forward'](data), dtype=float )

    def _reverse(self, data):
        return np.asarray( self.params['reverse'](data), dtype=float )

    def __str__(self):
        self._strtmp = self.params['name']
        return super().__str__()
