# -*- coding: utf-8 -*-
"""
FITS input and output for vector images

A vector image is stored as a single FITS image whose first NSPATIAL axes
are the spatial grid (FITS axis 1 is X) and whose last axis, if present,
holds the model components.  The grid geometry is carried by the linear
WCS keywords (CRPIX, CRVAL, CDELT, PC) of those spatial axes.  The first
index of the region along each spatial axis is kept in ISTART1, ISTART2,
...; it defaults to 0.
"""
import logging
import os

import numpy as np
import astropy.io.fits
import astropy.wcs

from .geometry import Geometry
from .image import VectorImage

logger = logging.getLogger(__name__)
ap = astropy


def read_fits(source, ndim=None):
    '''
    read_fits - load a VectorImage from FITS

    Parameters
    ----------
    source : str, os.PathLike, HDUList, PrimaryHDU or ImageHDU
        Where to read from.  For an HDUList the primary HDU is used.

    ndim : int or None
        Number of spatial axes.  If omitted, the NSPATIAL header keyword is
        used if present; otherwise all axes but the last are spatial when
        there are 4 or more, and all axes are spatial when there are fewer
        (a scalar image with one component).

    Returns
    -------
    VectorImage
    '''
    if( isinstance(source, (str, os.PathLike)) ):
        with ap.io.fits.open(source) as hdul:
            logger.info("reading %s", source)
            return read_fits(hdul[0], ndim=ndim)

    if( isinstance(source, ap.io.fits.HDUList) ):
        source = source[0]

    if( not isinstance(source, (ap.io.fits.PrimaryHDU, ap.io.fits.ImageHDU)) ):
        raise ValueError(f"read_fits: can't read a {source.__class__.__name__}")

    header = source.header
    data = source.data
    if( data is None ):
        raise ValueError("read_fits: HDU has no data")
    data = np.array(data, dtype=float)
    naxis = data.ndim

    if( ndim is None ):
        if( 'NSPATIAL' in header ):
            ndim = int(header['NSPATIAL'])
        else:
            ndim = naxis - 1 if naxis >= 4 else naxis
    if( ndim < 1 or ndim > naxis or naxis - ndim > 1 ):
        raise ValueError(f"read_fits: can't take {ndim} spatial axes from a {naxis}-axis image")

    if( naxis > ndim ):
        # FITS's last axis is NumPy's first
        data = np.moveaxis(data, 0, -1)
    else:
        data = data[..., np.newaxis]

    wcs = ap.wcs.WCS(header, naxis=ndim)
    size = list(data.shape[-2::-1])
    start = [ int(header.get(f'ISTART{ii+1}', 0)) for ii in range(ndim) ]
    return VectorImage( data, Geometry.from_wcs(wcs, size=size, start=start) )


def write_fits(image, path=None, overwrite=False):
    '''
    write_fits - express a VectorImage as a FITS PrimaryHDU

    Parameters
    ----------
    image : VectorImage

    path : str, os.PathLike or None
        If present, the HDU is also written there.

    overwrite : Boolean (default False)
        Passed to astropy's writeto.

    Returns
    -------
    astropy.io.fits.PrimaryHDU
    '''
    if( not isinstance(image, VectorImage) ):
        raise ValueError("write_fits: need a VectorImage")

    header = image.geometry.to_wcs().to_header()
    header['NSPATIAL'] = ( image.geometry.ndim, 'number of spatial axes' )
    for ii, s in enumerate(image.geometry.start):
        header[f'ISTART{ii+1}'] = ( int(s), f'first index of the region along axis {ii+1}' )

    if( image.components > 1 ):
        data = np.moveaxis(image.data, -1, 0)
    else:
        data = image.data[..., 0]

    hdu = ap.io.fits.PrimaryHDU( data=np.ascontiguousarray(data), header=header )
    if( path is not None ):
        logger.info("writing %s", path)
        hdu.writeto(path, overwrite=overwrite)
    return hdu
