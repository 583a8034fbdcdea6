import numpy as np
import pytest

from eosim import ConfigurationError, assemble
from eosim.unitops import ComponentSplitter, Heater, Mixer, Splitter


def _mixer_splitter(fs):
    s1 = fs.new_feed("S1", T=298.15, P=101325.0, flows={"A": 50.0})
    s2 = fs.new_feed("S2", T=298.15, P=101325.0, flows={"B": 50.0})
    s3 = fs.new_stream("S3")
    sa, sb = fs.new_stream("SA"), fs.new_stream("SB")
    m = Mixer("M1")
    m.add_inlet("in1", s1)
    m.add_inlet("in2", s2)
    m.add_outlet("out", s3)
    fs.add_unit(m)
    sp = Splitter("SP1", split={"A": 0.6})
    sp.add_inlet("in", s3)
    sp.add_outlet("A", sa)
    sp.add_outlet("B", sb)
    fs.add_unit(sp)
    return fs


def test_layout_is_square_and_contiguous(ab_fs):
    asm = assemble(_mixer_splitter(ab_fs))
    n_stream = 3 + 2
    # 5 streams + 2 split fractions
    assert asm.N == asm.M == 5 * n_stream + 2
    # feeds first, then the mixer outlet
    assert asm.stream_views["S1"].offset == 0
    assert asm.stream_views["S2"].offset == n_stream
    assert asm.stream_views["S3"].offset == 2 * n_stream
    assert asm.unit_views["SP1"].offset == 5 * n_stream
    assert asm.col_labels[asm.unit_views["SP1"].offset] == "SP1.split[A]"
    assert asm.block_of_row(0) == ("feed:S1", "T")
    assert asm.block_of_row(asm.unit_rows["M1"]) == ("M1", "balance[A]")
    assert len(asm.row_labels) == asm.M


def test_initial_vector_seeds_feeds_and_defaults(ab_fs):
    asm = assemble(_mixer_splitter(ab_fs))
    x = asm.initial_vector()
    np.testing.assert_allclose(asm.stream_views["S1"].slice(x), [298.15, 101325.0, 50.0, 50.0, 0.0])
    # unknown streams: ambient T/P, mean feed flow and composition
    np.testing.assert_allclose(asm.stream_views["SA"].slice(x), [298.15, 101325.0, 50.0, 25.0, 25.0])
    np.testing.assert_allclose(asm.unit_views["SP1"].internal(x), [0.6, 0.4])


def test_sparsity_pattern_depends_on_topology_only(ab_fs):
    asm = assemble(_mixer_splitter(ab_fs))
    pattern = asm.sparsity_pattern()
    x = asm.initial_vector()
    _, J = asm.contribute(x)
    assert pattern.shape == (asm.M, asm.N)
    # every computed Jacobian entry lies inside the structural pattern
    rows, cols = J.nonzero()
    assert np.all(np.asarray(pattern[rows, cols]).ravel() == 1.0)


def test_dangling_stream_reported_by_name(ab_fs):
    s1 = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 1.0})
    loose = ab_fs.new_stream("LOOSE")
    out = ab_fs.new_stream("OUT")
    m = Mixer("M1")
    m.add_inlet("in1", s1)
    m.add_inlet("in2", loose)
    m.add_outlet("out", out)
    ab_fs.add_unit(m)
    with pytest.raises(ConfigurationError) as exc:
        assemble(ab_fs)
    assert exc.value.context["streams"] == ["LOOSE"]
    assert "LOOSE" in str(exc.value)


def test_stream_cannot_be_consumed_twice(ab_fs):
    s1 = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 1.0})
    Heater("H1", T_out=350.0).add_inlet("in", s1)
    with pytest.raises(ConfigurationError):
        Heater("H2", T_out=350.0).add_inlet("in", s1)


def test_feed_cannot_be_an_outlet(ab_fs):
    s1 = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 1.0})
    with pytest.raises(ConfigurationError):
        Heater("H1", T_out=350.0).add_outlet("out", s1)


@pytest.mark.parametrize("spec, excess", [
    (dict(T_out=400.0, duty=1000.0), 1),
    (dict(), -1),
])
def test_heater_degrees_of_freedom_rejected(ab_fs, spec, excess):
    s1 = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 1.0})
    s2 = ab_fs.new_stream("S2")
    h = Heater("H1", **spec)
    h.add_inlet("in", s1)
    h.add_outlet("out", s2)
    ab_fs.add_unit(h)
    with pytest.raises(ConfigurationError) as exc:
        assemble(ab_fs)
    assert exc.value.context["units"] == {"H1": excess}
    assert exc.value.context["excess"] == excess
    assert "H1" in str(exc.value)


def test_splitter_with_every_fraction_fixed_is_over_specified(ab_fs):
    s1 = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 1.0})
    sp = Splitter("SP1", split={"A": 0.5, "B": 0.5})
    sp.add_inlet("in", s1)
    sp.add_outlet("A", ab_fs.new_stream("SA"))
    sp.add_outlet("B", ab_fs.new_stream("SB"))
    ab_fs.add_unit(sp)
    with pytest.raises(ConfigurationError) as exc:
        assemble(ab_fs)
    assert exc.value.context["units"] == {"SP1": 1}


def test_port_problems_are_configuration_errors(ab_fs):
    s1 = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 1.0})
    cs = ComponentSplitter("CS1", frac_to_A={"Z": 1.0})
    cs.add_inlet("in", s1)
    cs.add_outlet("A", ab_fs.new_stream("SA"))
    cs.add_outlet("B", ab_fs.new_stream("SB"))
    ab_fs.add_unit(cs)
    with pytest.raises(ConfigurationError, match="unknown component"):
        assemble(ab_fs)


def test_unit_with_foreign_stream_rejected(ab_fs, ab_props):
    from eosim import Flowsheet

    other = Flowsheet(ab_props)
    s = other.new_feed("X", T=300.0, P=1e5, flows={"A": 1.0})
    h = Heater("H1", T_out=350.0)
    h.add_inlet("in", s)
    with pytest.raises(ConfigurationError):
        ab_fs.add_unit(h)


def test_bad_tear_name_rejected(ab_fs):
    _mixer_splitter(ab_fs)
    with pytest.raises(ConfigurationError):
        assemble(ab_fs, tears=["NOPE"])
    with pytest.raises(ConfigurationError):
        assemble(ab_fs, tears=["SA"])   # product stream, nothing consumes it
