# -*- coding: utf-8 -*-

import copy
import numpy as np


class Transform:
    '''Transform - spatial transforms acting on physical points

    The Transform object represents an N-dimensional mathematical coordinate
    transformation between two physical spaces.  In this package the main
    consumer is the oriented-model resampler, which maps each output voxel's
    physical point through a Transform to find where to sample the input
    image, and which needs to know whether the Transform has a constant
    linear part (so that one reorientation matrix serves the whole volume)
    or not (so that a local Jacobian must be estimated at every voxel).

    The "apply" method accepts an array whose final axis is the vector
    (point) axis; prior axes are broadcast.  Points are in natural
    (X,Y,Z,...) order.

    Linear transforms
    -----------------

    Every Transform has a "linear" attribute.  When it is True, the
    "matrix" method returns the constant NxN matrix of the transform (the
    Jacobian of the mapping, which is the same everywhere).  When it is
    False, the only capability of the transform is point-to-point mapping,
    and the resampler falls back to finite differences.

    Built-in Subclasses
    -------------------

        - Identity: the identity transform (linear)

        - Inverse: the inverse of any Transform.  You probably want the
          'inverse' method, which unwraps double inversions.

        - Composition: groups several Transforms into one.  A composition
          is linear if all of its members are.

    The reorient.basic module adds Linear (with Scale, Rotation and Offset),
    Displacement (dense displacement fields) and Function (wrapped callables).
    '''
    linear = False

    def __init__(self):
        raise AssertionError(
            "generic transforms must be subclassed (e.g. reorient.Identity)"
            )

    def __str__(self):
        '''
        __str__ - stringify a generic transform

        Subclasses store their specific description in self._strtmp and then
        call super().__str__(), which wraps it.  Subclasses that stringify
        embedded Transforms (Inverse and Composition) set _str_not_top_tmp on
        those, to get the terse form without the "Transform( )" wrapper.
        '''
        try:
            s = self._strtmp
        except AttributeError:
            return "Generic Transform stringifier - you should never see this"
        del self._strtmp

        flag = getattr(self, '_str_not_top_tmp', False)
        if(hasattr(self, '_str_not_top_tmp')):
            del self._str_not_top_tmp
        if(flag):
            return s

        return f"Transform( {s} )"

    def apply(self, data, invert=False):
        '''
        apply - apply the transform to a set of N-vectors (points)

        Parameters
        ----------
        data : ndarray
          Points to transform, with the final axis running across vector
          dimension.  Earlier axes are broadcast.  If the final axis is
          larger than the transform dimension, the extra components are
          passed through unchanged.

        invert : Boolean (default False)
          If set, apply the inverse transform instead.

        Raises
        ------
        ValueError
          The data have fewer components than the transform needs.

        AssertionError
          The transform is not valid in the requested direction.

        Returns
        -------
        numpy.ndarray
            The transformed points.
        '''
        if( not isinstance(data, np.ndarray) ):
            data = np.array(data, dtype=float)

        if(invert):
            if(self.no_reverse):
                raise AssertionError(f"This {self} is invalid in the reverse direction")
            dim, method = self.odim, self._reverse
        else:
            if(self.no_forward):
                raise AssertionError(f"This {self} is invalid in the forward direction")
            dim, method = self.idim, self._forward

        if( data.shape[-1] < dim ):
            raise ValueError(f"This {self} requires {dim} dimensions; data have {data.shape[-1]}")

        if( dim > 0 and data.shape[-1] > dim ):
            data0 = method(data[..., 0:dim])
            return np.append(data0, data[..., dim:], axis=-1)

        return method(data)

    def invert(self, data, invert=False):
        '''
        invert - syntactic sugar to apply the inverse of a transform (see apply)
        '''
        return self.apply(data, invert=not(invert))

    def composition(self, target=None):
        '''
        composition - generate the composition of this Transform with another

        Equivalent to Composition([self, target]) or, for a list,
        Composition([self, *target]).  The target is applied first.
        '''
        if( isinstance(target, (list, tuple)) ):
            lst = list(target)
            lst.insert(0, self)
            return Composition(lst)
        return Composition([self, target])

    def inverse(self):
        '''
        inverse - generate the functional inverse of a Transform
        '''
        return Inverse(self)

    def matrix(self, dim=None):
        '''
        matrix - return the constant Jacobian matrix of a linear Transform

        Parameters
        ----------
        dim : int or None
            If present, the matrix is padded with identity rows and columns
            up to dim x dim.  This matches apply(), which passes extra vector
            components through unchanged.

        Raises
        ------
        AssertionError
            The transform is not linear.

        Returns
        -------
        numpy.ndarray
            The dim x dim matrix (as floats).
        '''
        if(not self.linear):
            raise AssertionError(f"{self} is not linear and has no constant matrix")
        m = self._matrix()
        n = m.shape[0] if dim is None else dim
        if( m.shape[0] > n ):
            raise ValueError(f"matrix: {self} has {m.shape[0]} dims; {n} requested")
        out = np.eye(n)
        out[0:m.shape[0], 0:m.shape[1]] = m
        return out

    def _matrix(self):
        raise AssertionError(
            "Transform._matrix should be overloaded by linear subclasses."
            )

    def _forward(self, data):
        raise AssertionError(
            "Transform._forward should always be overloaded by a subclass."
            )

    def _reverse(self, data):
        raise AssertionError(
            "Transform._reverse should always be overloaded by a subclass."
            )


###################################
###
### Subclasses - core transforms
###
#   - Identity     - linear, idempotent
#   - Inverse      - inverse of any transform
#   - Composition  - compose a list of transforms

class Identity(Transform):
    '''
    reorient.Identity -- identity transform

    Identity() maps every point to itself.  It is linear (its matrix is
    the identity of whatever dimension is requested) and idempotent.
    '''
    linear = True

    def __init__(self):
        self.idim = 0
        self.odim = 0
        self.no_forward = False
        self.no_reverse = False
        self.params = {}

    def _forward(self, data):
        return(data)

    def _reverse(self, data):
        return(data)

    def matrix(self, dim=None):
        # No intrinsic dimension: the caller says how big.
        if( dim is None ):
            raise ValueError("Identity.matrix: dim is required")
        return np.eye(dim)

    def __str__(self):
        self._strtmp = "Identity"
        return super().__str__()

    def inverse(self):
        return(self)


class Inverse(Transform):
    '''
    reorient.Inverse -- invert a Transform

    Wraps the supplied Transform and reverses its direction of execution.
    The inverse of a linear transform is linear, with the inverse matrix.

    Parameters
    ----------
    t : Transform
        The Transform to invert.
    '''
    def __init__(self, t):
        self.idim       = t.odim
        self.odim       = t.idim
        self.no_forward = t.no_reverse
        self.no_reverse = t.no_forward
        self.linear     = t.linear and not t.no_reverse
        self.params     = {'transform': copy.copy(t)}

    def _forward(self, data):
        return(self.params['transform'].apply(data, invert=True))

    def _reverse(self, data):
        return(self.params['transform'].apply(data, invert=False))

    def matrix(self, dim=None):
        if(not self.linear):
            raise AssertionError(f"{self} is not linear and has no constant matrix")
        return np.linalg.inv(self.params['transform'].matrix(dim))

    def __str__(self):
        self.params['transform']._str_not_top_tmp = True
        s = self.params['transform'].__str__()
        self._strtmp = "Inverse " + s
        return(super().__str__())

    def inverse(self):
        return(self.params['transform'])


class Composition(Transform):
    '''
    reorient.Composition -- compose a list of one or more Transforms

    The Transforms are composed in mathematical order: the last one in the
    list is applied first.  Nested Compositions are flattened.  The
    composition is linear if every member is, and its matrix is the
    product of the member matrices.

    Parameters
    ----------
    translist : list of Transform
    '''
    def __init__(self, translist):
        if(not isinstance(translist, list)):
            raise ValueError("Composition requires a list of Transforms")

        if(len(translist) < 1):
            raise ValueError("Composition requires at least one Transform")

        complist = []
        idim = 0
        odim = 0
        for trans in translist:
            if(not isinstance(trans, Transform)):
                raise AssertionError("reorient.Composition: got something that's not a Transform")
            ### Keep the first nonzero dim in either direction
            if( idim == 0 ):
                idim = trans.idim
            if( trans.odim != 0 ):
                odim = trans.odim
            if( isinstance(trans, Composition) ):
                complist.extend(copy.copy(trans.params['list']))
            else:
                complist.append(copy.copy(trans))

        self.idim       = idim
        self.odim       = odim
        self.no_forward = any(xf.no_forward for xf in complist)
        self.no_reverse = any(xf.no_reverse for xf in complist)
        self.linear     = all(xf.linear for xf in complist)
        self.params     = {'list': complist}

    def _forward(self, data):
        for xf in self.params['list'][::-1]:
            data = xf.apply(data)
        return data

    def _reverse(self, data):
        for xf in self.params['list']:
            data = xf.invert(data)
        return data

    def matrix(self, dim=None):
        if(not self.linear):
            raise AssertionError(f"{self} is not linear and has no constant matrix")
        if( dim is None ):
            dim = max([self.idim, self.odim, 1])
        m = np.eye(dim)
        for xf in self.params['list']:
            m = m @ xf.matrix(dim)
        return m

    def __str__(self):
        strings = []
        for xf in self.params['list']:
            xf._str_not_top_tmp = True
            strings.append(xf.__str__())

        self._strtmp = '( (' + ') o ('.join( strings ) + ') )'
        return (super().__str__())
