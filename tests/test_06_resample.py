# -*- coding: utf-8 -*-
"""
pytest test suite for OrientedModelResampler
"""
import logging

import numpy as np
import pytest

import reorient as r


def constant_image(size, value, **kw):
    g = r.Geometry( size, **kw )
    data = np.zeros( g.shape + (len(value),) ) + np.array(value, dtype=float)
    return r.VectorImage( data, g )


def random_image(size, seed=0):
    rng = np.random.default_rng(seed)
    g = r.Geometry( size )
    return r.VectorImage( rng.uniform(0.5, 2.0, g.shape + (3,)), g )


def test_001_configuration_errors():
    img = constant_image( [4, 4, 4], [1., 0., 0.] )

    rs = r.OrientedModelResampler()
    with pytest.raises(r.ConfigurationError):
        rs.resample()
    with pytest.raises(r.ConfigurationError):
        rs.resample(img)
    assert rs.output is None

    with pytest.raises(r.ConfigurationError):
        r.OrientedModelResampler( transform=r.Identity() ).bind( np.zeros([4, 4, 4, 3]) )
    with pytest.raises(r.ConfigurationError):
        r.OrientedModelResampler( transform="not a transform" ).resample(img)
    with pytest.raises(r.ConfigurationError):
        r.OrientedModelResampler( transform=r.Identity(),
                                  geometry=r.Geometry([4, 4]) ).resample(img)
    with pytest.raises(r.ConfigurationError):
        r.OrientedModelResampler( transform=r.Scale(2, dim=4) ).resample(img)

    rs = r.OrientedModelResampler( transform=r.Identity(), model=r.TensorModel() )
    with pytest.raises(r.ConfigurationError):
        rs.resample(img)
    assert rs.output is None

    # it's a ValueError too
    with pytest.raises(ValueError):
        r.OrientedModelResampler().resample(img)


def test_002_output_vector_length():
    rs = r.OrientedModelResampler( transform=r.Identity() )
    assert rs.get_output_vector_length() == 0
    rs.bind( constant_image( [3, 3, 3], [1., 2., 3.] ) )
    assert rs.get_output_vector_length() == 3
    out = rs.resample()
    assert out.components == 3


def test_003_identity_is_invariant():
    img = random_image( [6, 5, 4] )
    img.data[0, 0, 0] = 0
    rs = r.OrientedModelResampler( transform=r.Identity(), workers=2 )
    out = rs.resample(img)
    assert out.geometry == img.geometry
    assert out is not img
    assert np.allclose( out.data, img.data )
    assert np.all( out.data[0, 0, 0] == 0 )
    assert rs.is_linear
    assert rs.start_def is None


def test_004_outside_is_zero():
    img = constant_image( [4, 4, 4], [1., 1., 1.] )
    rs = r.OrientedModelResampler( transform=r.Offset([100., 0., 0.]) )
    out = rs.resample(img)
    assert np.all( out.data == 0 )


def test_005_rotation_reorients():
    c = np.array( [2., 2., 2.] )
    rot = r.Rotation( euler=[0, 0, 90], u='deg', pre=-c, post=c )
    img = constant_image( [5, 5, 5], [1., 0., 0.] )
    out = r.OrientedModelResampler( transform=rot, workers=3 ).resample(img)
    assert np.allclose( out.data[..., 0], 0 )
    assert np.allclose( out.data[..., 1], 1 )
    assert np.allclose( out.data[..., 2], 0 )


def test_006_finite_strain_drops_scale():
    img = constant_image( [8, 8, 8], [1., 1., 0.] )

    out = r.OrientedModelResampler( transform=r.Scale(2) ).resample(img)
    assert np.allclose( out.get([3, 3, 3]), [1., 1., 0.] )
    assert np.all( out.get([4, 0, 0]) == 0 )

    out = r.OrientedModelResampler( transform=r.Scale(2), finite_strain=False ).resample(img)
    assert np.allclose( out.get([3, 3, 3]), [2., 2., 0.] )
    assert np.allclose( out.get([0, 1, 2]), [2., 2., 0.] )


def test_007_nonlinear_matches_linear():
    img = random_image( [6, 6, 6], seed=1 )
    c = np.array( [2.5, 2.5, 2.5] )
    rot = r.Rotation( euler=[5, 10, 30], u='deg', pre=-c, post=c )
    f = r.Function( rot.apply )

    rs_lin = r.OrientedModelResampler( transform=rot )
    rs_non = r.OrientedModelResampler( transform=f )
    out_lin = rs_lin.resample(img)
    out_non = rs_non.resample(img)
    assert rs_lin.is_linear and not rs_non.is_linear
    assert np.allclose( out_lin.data, out_non.data )
    assert np.count_nonzero( out_lin.data ) > 0

    # the resampler's Jacobian is the rotation matrix
    jac = rs_non.local_jacobian( [[0, 0, 0], [3, 3, 3]] )
    assert np.allclose( jac, rot.matrix() )

    with pytest.raises(r.ConfigurationError):
        rs_lin.local_jacobian( [0, 0, 0] )


def test_008_single_slice():
    img = constant_image( [10, 10, 1], [1., 0., 0.] )
    f = r.Function( lambda p: p * 2, name="Double" )

    rs = r.OrientedModelResampler( transform=f )
    out = rs.resample(img)
    assert np.all( rs.end_def - rs.start_def == [10, 10, 1] )
    assert np.allclose( rs.local_jacobian([5, 5, 0]), np.diag([2., 2., 1.]) )
    # 2*4 = 8 is inside, 2*5 = 10 is not
    assert np.allclose( out.get([4, 4, 0]), [1., 0., 0.] )
    assert np.all( out.get([5, 0, 0]) == 0 )

    out = r.OrientedModelResampler( transform=f, finite_strain=False ).resample(img)
    assert np.allclose( out.get([4, 4, 0]), [2., 0., 0.] )

    # the linear path keeps single-slice inputs in plane
    out = r.OrientedModelResampler( transform=r.Scale([2., 2., 1.]) ).resample(img)
    assert np.allclose( out.get([4, 4, 0]), [1., 0., 0.] )


def test_009_tensor_end_to_end():
    c = np.array( [1.5, 1.5, 1.5] )
    rot = r.Rotation( euler=[0, 0, 90], u='deg', pre=-c, post=c )
    img = constant_image( [4, 4, 4], [3., 0., 1., 0., 0., 1.] )
    img.data[0, 0, 0] = 0

    rs = r.OrientedModelResampler( transform=rot, model=r.TensorModel(), workers=2 )
    out = rs.resample(img)
    assert out.components == 6

    # output (0,3,0) samples the zero voxel at input (0,0,0)
    assert np.all( out.get([0, 3, 0]) == 0 )
    mask = np.ones( out.geometry.shape, dtype=bool )
    mask[0, 3, 0] = False
    assert np.allclose( out.data[mask], [1., 0., 3., 0., 0., 1.] )

    # the nonlinear path gets the same answer
    out2 = r.OrientedModelResampler( transform=r.Function(rot.apply),
                                     model=r.TensorModel() ).resample(img)
    assert np.allclose( out2.data, out.data )


def test_010_worker_count_does_not_matter():
    img = random_image( [7, 6, 5], seed=2 )
    g = img.geometry
    field = np.zeros( g.shape + (3,) )
    field[..., 0] = 0.3 * np.sin( np.arange(5.) )[:, np.newaxis, np.newaxis]
    field[..., 1] = 0.2
    t = r.Displacement( r.VectorImage(field, g) )

    out1 = r.OrientedModelResampler( transform=t, workers=1 ).resample(img)
    out3 = r.OrientedModelResampler( transform=t, workers=3 ).resample(img)
    out9 = r.OrientedModelResampler( transform=t, workers=9 ).resample(img)
    assert np.allclose( out1.data, out3.data )
    assert np.allclose( out1.data, out9.data )


def test_011_worker_errors_propagate():
    def broken(p):
        raise RuntimeError("broken transform")

    img = constant_image( [4, 4, 4], [1., 0., 0.] )
    rs = r.OrientedModelResampler( transform=r.Function(broken), workers=2 )
    with pytest.raises(RuntimeError):
        rs.resample(img)


def test_012_output_geometry():
    img = constant_image( [4, 4, 4], [0., 0., 1.] )
    og = r.Geometry( [8, 8, 8], spacing=0.5 )
    rs = r.OrientedModelResampler( transform=r.Identity(), geometry=og )
    out = rs.resample(img)
    assert out.geometry == og
    assert out.data.shape == (8, 8, 8, 3)
    assert np.allclose( out.get([6, 6, 6]), [0., 0., 1.] )
    # physical 3.5 is past the half-open edge of the input
    assert np.all( out.get([7, 0, 0]) == 0 )


def test_013_nearest_interpolator_option():
    img = random_image( [4, 4, 4], seed=3 )
    rs = r.OrientedModelResampler( transform=r.Offset([0.4, 0., 0.]),
                                   interpolator=r.NearestInterpolator() )
    out = rs.resample(img)
    assert np.allclose( out.get([1, 2, 3]), img.get([1, 2, 3]) )


def test_014_logging(caplog):
    img = constant_image( [4, 4, 4], [1., 0., 0.] )
    with caplog.at_level(logging.INFO, logger="reorient"):
        r.OrientedModelResampler( transform=r.Identity(), workers=1 ).resample(img)
    assert any( "Resampling" in rec.getMessage() for rec in caplog.records )


def test_015_chunked_walk_matches_whole_region():
    img = random_image( [7, 6, 5], seed=4 )
    c = np.array( [3., 2.5, 2.] )
    rot = r.Rotation( euler=[5, 10, 20], u='deg', pre=-c, post=c )
    calls = []

    def counted(p):
        calls.append( p.shape )
        return rot.apply(p)

    f = r.Function(counted)
    whole = r.OrientedModelResampler( transform=f, workers=1 ).resample(img)
    n_whole = len(calls)

    # 42 voxels per Z slice: chunk=10 still takes one slice at a time
    del calls[:]
    sliced = r.OrientedModelResampler( transform=f, workers=1, chunk=10 ).resample(img)
    assert len(calls) > n_whole
    assert all( int(np.prod(s[:-1])) <= 42 for s in calls )
    assert np.allclose( sliced.data, whole.data )

    pairs = r.OrientedModelResampler( transform=f, workers=2, chunk=100 ).resample(img)
    assert np.allclose( pairs.data, whole.data )

    # the linear path too
    a = r.OrientedModelResampler( transform=rot ).resample(img)
    b = r.OrientedModelResampler( transform=rot, workers=2, chunk=1 ).resample(img)
    assert np.allclose( a.data, b.data )

    with pytest.raises(r.ConfigurationError):
        r.OrientedModelResampler( transform=rot, chunk=0 ).resample(img)


def test_016_default_interpolator_follows_model():
    g = r.Geometry( [2, 1, 1] )
    data = np.zeros( g.shape + (3,) )
    data[0, 0, 0] = [1.0, 0., 0.]
    data[0, 0, 1] = [0.2, 0., 0.]
    img = r.VectorImage(data, g)

    rs = r.OrientedModelResampler( transform=r.Offset([0.5, 0., 0.]), workers=1 )
    out = rs.resample(img)
    assert np.allclose( out.get([0, 0, 0]), [0.6, 0., 0.] )

    # With a coarser zero test the small neighbour drops out
    rs.model = r.VectorModel( tolerance=0.3 )
    out = rs.resample()
    assert np.allclose( out.get([0, 0, 0]), [1.0, 0., 0.] )
    assert rs.interpolator is None

    # a supplied interpolator is left alone
    it = r.NearestInterpolator()
    rs = r.OrientedModelResampler( transform=r.Offset([0.5, 0., 0.]), interpolator=it )
    rs.resample(img)
    assert rs.interpolator is it


class _RecordingModel(r.VectorModel):
    def __init__(self):
        super().__init__()
        self.maps = []

    def reorient(self, values, matrix, worker=None):
        self.maps.append( (len(values), np.array(matrix)) )
        return super().reorient(values, matrix, worker)


def test_017_linear_map_is_constant():
    img = random_image( [6, 6, 6], seed=5 )
    c = np.array( [2.5, 2.5, 2.5] )
    rot = r.Rotation( euler=[10, 0, 40], u='deg', pre=-c, post=c )
    model = _RecordingModel()
    r.OrientedModelResampler( transform=rot, model=model, workers=3, chunk=36 ).resample(img)

    assert len(model.maps) > 1
    assert sum( n for n, m in model.maps ) > 0
    first = model.maps[0][1]
    assert first.shape == (3, 3)
    for n, m in model.maps:
        assert np.array_equal( m, first )
    assert np.allclose( first, rot.matrix() )


def test_018_last_voxel_before_upper_bound():
    g = r.Geometry( [5, 5, 5] )
    data = np.zeros( g.shape + (3,) )
    data[..., 0] = g.indices()[..., 0] + 1
    img = r.VectorImage(data, g)

    # X lands one ULP below the half-open upper bound 4.5
    d = np.nextafter(4.5, -np.inf) - 4.0
    out = r.OrientedModelResampler( transform=r.Offset([d, 0., 0.]) ).resample(img)
    assert np.allclose( out.get([4, 2, 2]), [5., 0., 0.] )

    out = r.OrientedModelResampler( transform=r.Offset([0.5, 0., 0.]) ).resample(img)
    assert np.all( out.get([4, 2, 2]) == 0 )

    # same sample point reached through a rotation: reoriented, not lost
    c = np.array( [2., 2., 2.] )
    rot = r.Rotation( euler=[0, 0, 90], u='deg', pre=-c, post=c )
    t = r.Composition( [r.Offset([d, 0., 0.]), rot] )
    out = r.OrientedModelResampler( transform=t ).resample(img)
    assert np.allclose( out.get([2, 0, 2]), [0., 5., 0.] )
