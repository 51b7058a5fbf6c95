# -*- coding: utf-8 -*-
"""
Vector-valued images: a NumPy array laid out on a Geometry
"""
import numpy as np

from .geometry import Geometry


class VectorImage:
    '''
    reorient.VectorImage - a multi-component image on a regular grid

    The data array has shape geometry.shape + (C,), i.e. (...,Z,Y,X,C) with
    the per-voxel model components in the final axis.  Voxels are addressed
    by (X,Y,Z,...) index vectors within the geometry's region.

    Parameters
    ----------
    data : numpy.ndarray
        The voxel data.  An array with exactly geometry.ndim axes is taken
        as a scalar image and gets a component axis of size 1.

    geometry : Geometry or None
        The grid.  If omitted, a unit-spacing Geometry at the origin is
        built from the array shape (all axes but the last are spatial).
    '''
    def __init__(self, data, geometry=None):
        data = np.asarray(data)
        if( geometry is None ):
            if( data.ndim < 2 ):
                raise ValueError("VectorImage: data need a spatial and a component axis")
            geometry = Geometry(list(data.shape[-2::-1]))

        if( data.ndim == geometry.ndim ):
            data = data[..., np.newaxis]

        if( tuple(data.shape[:-1]) != geometry.shape ):
            raise ValueError(
                f"VectorImage: data shape {data.shape} does not match "
                f"geometry shape {geometry.shape} + (components,)"
                )
        self.data = data
        self.geometry = geometry

    @classmethod
    def allocate(cls, geometry, components, dtype=float):
        '''
        allocate - make a zero-filled image with the given grid and length
        '''
        return cls( np.zeros(geometry.shape + (int(components),), dtype=dtype),
                    geometry )

    @property
    def components(self):
        '''Number of model components per voxel'''
        return self.data.shape[-1]

    def _offset(self, index):
        index = np.asarray(index, dtype=int) - self.geometry.start
        return tuple( index[..., i] for i in range(index.shape[-1]-1, -1, -1) )

    def get(self, index):
        '''
        get - model value(s) at integer (X,Y,Z,...) index vector(s)
        '''
        return self.data[ self._offset(index) ]

    def set(self, index, value):
        self.data[ self._offset(index) ] = value

    def region_view(self, start, size):
        '''
        region_view - writable view of the data in a sub-region

        Returns
        -------
        numpy.ndarray
            A view (not a copy) with shape size[::-1] + (C,).
        '''
        lo = np.asarray(start, dtype=int) - self.geometry.start
        hi = lo + np.asarray(size, dtype=int)
        sl = tuple( slice(int(lo[i]), int(hi[i]))
                    for i in range(len(lo)-1, -1, -1) )
        return self.data[sl]

    def __repr__(self):
        return f"VectorImage({self.geometry!r}, components={self.components})"
