# -*- coding: utf-8 -*-
"""
Grid geometry: the mapping between voxel indices and physical points

A Geometry describes a regular grid in physical space, the way medical
image formats do: a voxel spacing, the physical origin (the location of
index 0), an orthonormal direction matrix whose columns are the physical
directions of the index axes, and a region (start index and size).

Index and point vectors are in natural (X,Y,Z,...) order.  The NumPy shape
of an array laid out on the grid is the reverse of the size, (...,Z,Y,X).
"""
import numpy as np
import astropy.wcs


class Geometry:
    '''
    reorient.Geometry - index <-> physical point mapping for a regular grid

    The forward mapping is

        point = origin + direction x (spacing * index)

    and point_to_continuous_index is its exact inverse.  Because direction
    is orthonormal, its inverse is its transpose.

    Parameters
    ----------
    size : list or array of int
        Number of voxels along each axis, (X,Y,Z,...) order.  The length of
        size sets the dimensionality of the grid.

    spacing : scalar or N-vector (default 1)
        Voxel spacing along each index axis.  Must be positive.

    origin : scalar or N-vector (default 0)
        Physical location of index 0.

    direction : NxN array (default identity)
        Orthonormal matrix; column j is the physical direction of index
        axis j.

    start : scalar or N-vector of int (default 0)
        First index of the region.
    '''
    def __init__(self, size, spacing=1.0, origin=0.0, direction=None, start=0):
        size = np.array(size, dtype=int).reshape(-1)
        n = size.shape[0]
        if( n < 1 ):
            raise ValueError("Geometry: size must have at least one element")
        if( np.any(size < 0) ):
            raise ValueError("Geometry: size components must be non-negative")

        spacing = np.array(spacing, dtype=float) + np.zeros(n)
        if( spacing.shape != (n,) ):
            raise ValueError("Geometry: spacing must be a scalar or match size")
        if( np.any(spacing <= 0) ):
            raise ValueError("Geometry: spacing must be positive")

        origin = np.array(origin, dtype=float) + np.zeros(n)
        if( origin.shape != (n,) ):
            raise ValueError("Geometry: origin must be a scalar or match size")

        if( direction is None ):
            direction = np.eye(n)
        direction = np.array(direction, dtype=float)
        if( direction.shape != (n, n) ):
            raise ValueError(f"Geometry: direction must be {n}x{n}")
        if( not np.allclose(direction.T @ direction, np.eye(n), atol=1e-6) ):
            raise ValueError("Geometry: direction must be orthonormal")

        start = np.array(start, dtype=int) + np.zeros(n, dtype=int)
        if( start.shape != (n,) ):
            raise ValueError("Geometry: start must be a scalar or match size")

        self.size = size
        self.spacing = spacing
        self.origin = origin
        self.direction = direction
        self.start = start
        self._index_to_point = direction * spacing
        self._point_to_index = np.linalg.inv(self._index_to_point)

    @property
    def ndim(self):
        return self.size.shape[0]

    @property
    def end(self):
        '''One past the last valid index along each axis'''
        return self.start + self.size

    @property
    def shape(self):
        '''NumPy array shape of the region, in (...,Z,Y,X) order'''
        return tuple(int(s) for s in self.size[::-1])

    def copy(self, **changes):
        '''
        copy - return a new Geometry with some fields replaced
        '''
        kw = {
            'size': self.size,
            'spacing': self.spacing,
            'origin': self.origin,
            'direction': self.direction,
            'start': self.start,
            }
        kw.update(changes)
        return Geometry(**kw)

    def __eq__(self, other):
        if( not isinstance(other, Geometry) ):
            return NotImplemented
        return ( self.ndim == other.ndim and
                 np.array_equal(self.size, other.size) and
                 np.array_equal(self.start, other.start) and
                 np.allclose(self.spacing, other.spacing) and
                 np.allclose(self.origin, other.origin) and
                 np.allclose(self.direction, other.direction) )

    def __repr__(self):
        return ( f"Geometry(size={self.size.tolist()}, "
                 f"spacing={self.spacing.tolist()}, "
                 f"origin={self.origin.tolist()}, "
                 f"start={self.start.tolist()})" )

    def index_to_point(self, index):
        '''
        index_to_point - convert (continuous or integer) indices to points

        Parameters
        ----------
        index : array
            Index vectors in the final axis; earlier axes are broadcast.

        Returns
        -------
        numpy.ndarray
            Physical points with the same shape as index.
        '''
        index = np.asarray(index, dtype=float)
        return self.origin + index @ self._index_to_point.T

    def point_to_continuous_index(self, point):
        '''
        point_to_continuous_index - convert physical points to real indices
        '''
        point = np.asarray(point, dtype=float)
        return (point - self.origin) @ self._point_to_index.T

    def is_inside(self, cindex):
        '''
        is_inside - half-open bounds test of continuous indices

        A continuous index is inside the grid if, along every axis,
        start - 0.5 <= cindex < start + size - 0.5, i.e. it rounds to a
        valid voxel.

        Returns
        -------
        numpy.ndarray of bool, with the vector axis collapsed
        '''
        cindex = np.asarray(cindex, dtype=float)
        lo = self.start - 0.5
        hi = self.end - 0.5
        return np.all( (cindex >= lo) & (cindex < hi), axis=-1 )

    def indices(self, start=None, size=None):
        '''
        indices - enumerate every index of a sub-region

        Parameters
        ----------
        start, size : N-vectors or None
            The sub-region to enumerate.  Default is the whole region.

        Returns
        -------
        numpy.ndarray
            Integer array of shape (...,Z,Y,X,N) in which the final axis
            holds the (X,Y,Z,...) index of each element.
        '''
        start = self.start if start is None else np.asarray(start, dtype=int)
        size = self.size if size is None else np.asarray(size, dtype=int)
        # mgrid over reversed axes gives (...,Z,Y,X) layout; reverse the
        # vector afterward to get (X,Y,Z,...) components.
        grid = np.mgrid[ tuple( slice(int(start[i]), int(start[i] + size[i]))
                                for i in range(len(size)-1, -1, -1) ) ]
        grid = np.moveaxis(grid, 0, -1)
        return grid[..., ::-1]

    ##########
    # WCS conversion.  Only the linear part of a WCS (CRPIX, CRVAL, CDELT
    # and PC/CD) has a Geometry equivalent.

    @classmethod
    def from_wcs(cls, wcs, size=None, start=0):
        '''
        from_wcs - build a Geometry from the linear part of an astropy WCS

        Parameters
        ----------
        wcs : astropy.wcs.WCS
            The WCS object.  Its pixel-to-world mapping at pixel 0 locates the
            first voxel of the region, and its pixel scale matrix (CDELT x PC) is factored into
            spacing and direction.

        size : N-vector or None
            Grid size in (X,Y,...) order.  If omitted, the WCS pixel_shape
            is used.

        start : scalar or N-vector of int (default 0)
            First index of the region.  Pixel 0 of the WCS is taken to be
            this index, as written by to_wcs.

        Raises
        ------
        ValueError
            No size could be found, or the pixel scale matrix is not a
            scaled orthonormal matrix.
        '''
        n = wcs.wcs.naxis
        if( size is None ):
            if( wcs.pixel_shape is None ):
                raise ValueError("Geometry.from_wcs: WCS has no pixel_shape; supply size")
            size = list(wcs.pixel_shape)

        cd = np.array(wcs.pixel_scale_matrix, dtype=float)
        spacing = np.sqrt( (cd**2).sum(axis=0) )
        if( np.any(spacing <= 0) ):
            raise ValueError("Geometry.from_wcs: degenerate pixel scale matrix")
        direction = cd / spacing

        start = np.array(start, dtype=int) + np.zeros(n, dtype=int)
        first = wcs.wcs_pix2world( np.zeros([1, n]), 0 )[0]
        origin = first - cd @ start
        return cls(size, spacing=spacing, origin=origin, direction=direction, start=start)

    def to_wcs(self):
        '''
        to_wcs - express this Geometry as a linear astropy WCS

        The region start is folded into CRVAL, so that pixel 0 of the WCS
        is the first voxel of the region.  The start itself is not part of
        a WCS; pass it back to from_wcs.
        '''
        w = astropy.wcs.WCS(naxis=self.ndim)
        # FITS pixels are 1-based
        w.wcs.crpix = [1.0] * self.ndim
        w.wcs.crval = self.index_to_point(self.start)
        # CDELT scales world rows, spacing scales index columns: carry the
        # whole scale matrix in PC.
        w.wcs.cdelt = [1.0] * self.ndim
        w.wcs.pc = self._index_to_point
        w.pixel_shape = [ int(s) for s in self.size ]
        return w


def split_region(start, size, parts):
    '''
    split_region - partition an index region into contiguous blocks

    The region is cut along a single axis into at most "parts" slabs.  The
    axis is the outermost one (last in (X,Y,Z) order) that has at least
    "parts" voxels; if none does, the largest axis is used.  Slab sizes
    differ by at most one; the leftover voxels go one each to the first
    slabs.  The blocks exactly cover the region without overlap.

    Parameters
    ----------
    start : N-vector of int
    size : N-vector of int
    parts : int
        Requested number of blocks (typically the worker count).

    Returns
    -------
    list of (start, size) tuples of numpy int arrays.  An empty region
    returns an empty list.
    '''
    start = np.array(start, dtype=int)
    size = np.array(size, dtype=int)
    if( parts < 1 ):
        raise ValueError("split_region: parts must be at least 1")
    if( np.any(size == 0) ):
        return []

    axis = None
    for ii in range(len(size)-1, -1, -1):
        if( size[ii] >= parts ):
            axis = ii
            break
    if( axis is None ):
        axis = int(np.argmax(size))

    n = int(min(parts, size[axis]))
    base, extra = divmod(int(size[axis]), n)

    blocks = []
    offset = int(start[axis])
    for ii in range(n):
        length = base + (1 if ii < extra else 0)
        bstart = start.copy()
        bsize = size.copy()
        bstart[axis] = offset
        bsize[axis] = length
        blocks.append( (bstart, bsize) )
        offset += length
    return blocks
