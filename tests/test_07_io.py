# -*- coding: utf-8 -*-
"""
pytest test suite for FITS input and output
"""

import numpy as np
import pytest
import astropy.io.fits

import reorient as r


def tensor_image():
    direction = r.Rotation( euler=[0, 0, 20], u='deg' ).matrix()
    g = r.Geometry( [5, 4, 3], spacing=[1., 2., 2.5], origin=[-1., 0., 7.],
                    direction=direction )
    data = np.arange( np.prod(g.shape) * 6, dtype=float ).reshape( g.shape + (6,) )
    return r.VectorImage( data, g )


def test_001_hdu_round_trip():
    img = tensor_image()
    hdu = r.write_fits(img)
    assert isinstance(hdu, astropy.io.fits.PrimaryHDU)
    assert hdu.header['NSPATIAL'] == 3
    assert hdu.header['NAXIS'] == 4
    # FITS axis 1 is X
    assert hdu.header['NAXIS1'] == 5
    assert hdu.header['NAXIS4'] == 6

    back = r.read_fits(hdu)
    assert back.geometry == img.geometry
    assert np.all( back.data == img.data )


def test_002_file_round_trip(tmp_path):
    img = tensor_image()
    path = tmp_path / "tensors.fits"
    r.write_fits( img, path )
    back = r.read_fits( str(path) )
    assert back.geometry == img.geometry
    assert np.all( back.data == img.data )

    # HDULists work too
    with astropy.io.fits.open(path) as hdul:
        back = r.read_fits(hdul)
    assert back.components == 6

    with pytest.raises(OSError):
        r.write_fits( img, path )
    r.write_fits( img, path, overwrite=True )


def test_003_scalar_image():
    g = r.Geometry( [4, 3], spacing=0.5 )
    img = r.VectorImage( np.ones(g.shape), g )
    hdu = r.write_fits(img)
    assert hdu.header['NAXIS'] == 2

    back = r.read_fits(hdu)
    assert back.components == 1
    assert back.geometry == g

    # Without NSPATIAL, small images are taken as scalar
    del hdu.header['NSPATIAL']
    back = r.read_fits(hdu)
    assert back.components == 1
    assert back.geometry.ndim == 2


def test_004_read_errors():
    hdu = r.write_fits( tensor_image() )
    with pytest.raises(ValueError):
        r.read_fits( hdu, ndim=1 )
    with pytest.raises(ValueError):
        r.read_fits( hdu, ndim=5 )
    with pytest.raises(ValueError):
        r.read_fits( astropy.io.fits.PrimaryHDU() )
    with pytest.raises(ValueError):
        r.read_fits( astropy.io.fits.BinTableHDU() )
    with pytest.raises(ValueError):
        r.write_fits( np.zeros([3, 3, 3]) )


def test_005_resampled_output_writes():
    img = tensor_image()
    out = r.OrientedModelResampler( transform=r.Identity(), model=r.TensorModel(),
                                    workers=1 ).resample(img)
    back = r.read_fits( r.write_fits(out) )
    assert np.allclose( back.data, img.data )


def test_006_region_start_round_trip(tmp_path):
    g = r.Geometry( [4, 3, 2], spacing=[1., 2., 3.], origin=[1., 2., 3.], start=[2, 0, 1] )
    data = np.arange( np.prod(g.shape) * 3, dtype=float ).reshape( g.shape + (3,) )
    img = r.VectorImage(data, g)

    hdu = r.write_fits(img)
    assert [ hdu.header[f'ISTART{i}'] for i in (1, 2, 3) ] == [2, 0, 1]

    back = r.read_fits(hdu)
    assert np.all( back.geometry.start == [2, 0, 1] )
    assert back.geometry == g
    assert np.allclose( back.geometry.index_to_point([2, 0, 1]), [3., 2., 6.] )
    assert np.all( back.get([3, 2, 2]) == img.get([3, 2, 2]) )

    path = tmp_path / "offset.fits"
    r.write_fits( img, path )
    assert r.read_fits(path).geometry == g

    # Files without ISTART keywords start at 0
    for i in (1, 2, 3):
        del hdu.header[f'ISTART{i}']
    assert np.all( r.read_fits(hdu).geometry.start == 0 )
