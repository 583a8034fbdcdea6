import numpy as np
import pytest

from eosim import ConfigurationError, assemble, mass_balance_errors
from eosim.newton import solve
from eosim.unitops import (
    EquilibriumStage,
    FlashDrum,
    Heater,
    Pump,
    StoichiometricReactor,
    StoichReaction,
)


def _one_in_one_out(fs, unit, feed, *, out_phase):
    out = fs.new_stream("OUT", phase=out_phase)
    unit.add_inlet("in", feed)
    unit.add_outlet("out", out)
    fs.add_unit(unit)
    return assemble(fs)


def test_heater_outlet_temperature_and_duty(ab_fs):
    feed = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 10.0}, phase="V")
    asm = _one_in_one_out(ab_fs, Heater("H1", T_out=400.0), feed, out_phase="V")
    res = solve(asm)
    assert res.converged
    assert res.iterations <= 5
    assert res.streams["OUT"]["T"] == pytest.approx(400.0, abs=1e-8)
    assert res.streams["OUT"]["P"] == pytest.approx(1e5)
    duty = asm.unit_views["H1"].internal(res.x)[0]
    # constant cp = 29.1 J/mol/K when no coefficients are given
    assert duty == pytest.approx(10.0 * 29.1 * 100.0, rel=1e-8)


def test_heater_with_duty_and_pressure_drop(ab_fs):
    feed = ab_fs.new_feed("S1", T=300.0, P=2e5, flows={"A": 10.0}, phase="V")
    asm = _one_in_one_out(ab_fs, Heater("H1", duty=2910.0, dP=5e4), feed, out_phase="V")
    res = solve(asm)
    assert res.converged
    assert res.streams["OUT"]["T"] == pytest.approx(310.0, rel=1e-8)
    assert res.streams["OUT"]["P"] == pytest.approx(1.5e5)


def test_pump_work_follows_liquid_volume(ab_fs, ab_props):
    feed = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 5.0})
    asm = _one_in_one_out(ab_fs, Pump("P1", set_p=1e6, efficiency=0.5), feed, out_phase="L")
    res = solve(asm)
    assert res.converged
    W = asm.unit_views["P1"].internal(res.x)[0]
    v = float(ab_props.liquid_molar_volumes(300.0) @ np.array([5.0, 0.0]))
    assert W == pytest.approx(v * 9e5 / 0.5, rel=1e-6)
    assert res.streams["OUT"]["P"] == pytest.approx(1e6)
    assert res.streams["OUT"]["T"] > 300.0


def test_pump_needs_exactly_one_pressure_spec(ab_fs):
    feed = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 5.0})
    with pytest.raises(ConfigurationError):
        _one_in_one_out(ab_fs, Pump("P1"), feed, out_phase="L")


def test_reactor_conversion_and_heat_of_reaction(ab_fs):
    feed = ab_fs.new_feed("S1", T=298.15, P=1e5, flows={"A": 100.0}, phase="V")
    rxn = StoichReaction("isomerisation", {"A": -1.0, "B": 1.0}, conversion=0.5)
    asm = _one_in_one_out(ab_fs, StoichiometricReactor("RX", [rxn], T_out=298.15), feed, out_phase="V")
    res = solve(asm)
    assert res.converged
    flows = res.streams["OUT"]["component_flows"]
    assert flows["A"] == pytest.approx(50.0)
    assert flows["B"] == pytest.approx(50.0)
    extent, duty = asm.unit_views["RX"].internal(res.x)
    assert extent == pytest.approx(50.0)
    # 50 mol of B formed at -1e4 J/mol, no sensible heat at 298.15 K
    assert duty == pytest.approx(-5.0e5, rel=1e-8)
    unit = ab_fs.units["RX"]
    np.testing.assert_allclose(unit.generation(res.x, asm.unit_views["RX"]), [-50.0, 50.0])
    assert max(mass_balance_errors(asm, res.x).values()) < 1e-8


def test_reaction_definition_checks():
    with pytest.raises(ValueError):
        StoichReaction("r", {"A": -1.0, "B": 1.0}, conversion=1.5)
    with pytest.raises(ValueError):
        StoichReaction("r", {"A": -1.0, "B": 1.0}, key="B")
    assert StoichReaction("r", {"B": 1.0, "A": -2.0}).key_component == "A"


def test_reactor_rejects_unknown_species(ab_fs):
    feed = ab_fs.new_feed("S1", T=298.15, P=1e5, flows={"A": 1.0}, phase="V")
    rxn = StoichReaction("r", {"A": -1.0, "C": 1.0})
    with pytest.raises(ConfigurationError, match="unknown component"):
        _one_in_one_out(ab_fs, StoichiometricReactor("RX", [rxn], T_out=300.0), feed, out_phase="V")


def _drum(fs, unit, feeds):
    vap = fs.new_stream("VAP", phase="V")
    liq = fs.new_stream("LIQ", phase="L")
    for k, s in enumerate(feeds):
        unit.add_inlet(f"in{k + 1}", s)
    unit.add_outlet("vapor", vap)
    unit.add_outlet("liquid", liq)
    fs.add_unit(unit)
    return assemble(fs)


def test_flash_drum_matches_direct_flash(hc_fs, hc_props):
    feed = hc_fs.new_feed("S1", T=330.0, P=1e6, flows={"propane": 5.0, "n-butane": 3.0, "n-pentane": 2.0})
    asm = _drum(hc_fs, FlashDrum("D1", T=330.0, P=1e6), [feed])
    res = solve(asm)
    assert res.converged

    direct = hc_props.flash(1e6, 330.0, [0.5, 0.3, 0.2])
    vap = np.array(list(res.streams["VAP"]["component_flows"].values()))
    liq = np.array(list(res.streams["LIQ"]["component_flows"].values()))
    np.testing.assert_allclose(vap, 10.0 * direct.beta * direct.y, atol=1e-5)
    np.testing.assert_allclose(liq, 10.0 * (1.0 - direct.beta) * direct.x, atol=1e-5)
    assert res.streams["VAP"]["vapor_fraction"] == 1.0
    assert res.streams["LIQ"]["vapor_fraction"] == 0.0
    assert res.streams["LIQ"]["T"] == pytest.approx(330.0)


def test_flash_drum_outlet_phases_checked(hc_fs):
    feed = hc_fs.new_feed("S1", T=330.0, P=1e6, flows={"propane": 1.0})
    vap = hc_fs.new_stream("VAP", phase="L")
    liq = hc_fs.new_stream("LIQ", phase="L")
    d = FlashDrum("D1", T=330.0, P=1e6)
    d.add_inlet("in", feed)
    d.add_outlet("vapor", vap)
    d.add_outlet("liquid", liq)
    hc_fs.add_unit(d)
    with pytest.raises(ConfigurationError, match="phase 'V'"):
        assemble(hc_fs)


def test_adiabatic_equilibrium_stage(hc_fs):
    liq_in = hc_fs.new_feed("L_IN", T=320.0, P=1e6,
                            flows={"propane": 2.0, "n-butane": 5.0, "n-pentane": 3.0})
    vap_in = hc_fs.new_feed("V_IN", T=345.0, P=1e6, phase="V",
                            flows={"propane": 6.0, "n-butane": 3.0, "n-pentane": 1.0})
    asm = _drum(hc_fs, EquilibriumStage("ST1"), [liq_in, vap_in])
    res = solve(asm)
    assert res.converged, res.error

    vap, liq = res.streams["VAP"], res.streams["LIQ"]
    assert vap["T"] == pytest.approx(liq["T"], abs=1e-9)
    assert 320.0 < vap["T"] < 345.0
    assert vap["P"] == pytest.approx(1e6)
    assert vap["flow"] + liq["flow"] == pytest.approx(20.0, abs=1e-6)
    assert asm.unit_views["ST1"].internal(res.x)[0] == pytest.approx(0.0, abs=1e-6)
    assert max(mass_balance_errors(asm, res.x).values()) < 1e-6
    # propane goes overhead
    assert vap["mole_fractions"]["propane"] > liq["mole_fractions"]["propane"]


def _central_jacobian(asm, x, h=1e-6):
    J = np.zeros((asm.M, asm.N))
    for j in range(asm.N):
        step = h * max(abs(x[j]), 1.0)
        xp, xm = x.copy(), x.copy()
        xp[j] += step
        xm[j] -= step
        J[:, j] = (asm.residual(xp) - asm.residual(xm)) / (2.0 * step)
    return J


def test_pump_jacobian_is_exact(ab_fs):
    feed = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 5.0, "B": 2.0})
    asm = _one_in_one_out(ab_fs, Pump("P1", dP=4e5, efficiency=0.6), feed, out_phase="L")
    x = asm.initial_vector()
    out = asm.stream_views["OUT"]
    x[out.iT], x[out.iP] = 305.0, 6e5
    _, J = asm.contribute(x)
    np.testing.assert_allclose(J.toarray(), _central_jacobian(asm, x), rtol=1e-5, atol=1e-6)


def test_flash_drum_jacobian_at_zero_duty(hc_fs):
    feed = hc_fs.new_feed("S1", T=330.0, P=1e6, flows={"propane": 5.0, "n-butane": 3.0, "n-pentane": 2.0})
    asm = _drum(hc_fs, FlashDrum("D1", T=330.0, P=1e6), [feed])
    x = asm.initial_vector()
    uv = asm.unit_views["D1"]
    assert x[uv.icol(0)] == 0.0
    _, J = asm.contribute(x)
    J = J.toarray()
    # the duty enters the energy row only, with unit weight
    col = J[:, uv.icol(0)]
    assert np.count_nonzero(col) == 1
    assert col[asm.unit_rows["D1"] + asm.fs.units["D1"].equation_labels().index("energy")] == -1.0
    assert np.linalg.matrix_rank(J) == asm.N


@pytest.mark.parametrize("kwargs, message", [
    ({"T": 330.0, "duty": 0.0}, "exactly one of P or dP"),
    ({"P": 1e6}, "exactly one of T or duty"),
    ({"T": 330.0, "duty": 0.0, "P": 1e6}, "exactly one of T or duty"),
    ({"T": 330.0, "P": 1e6, "dP": 0.0}, "exactly one of P or dP"),
])
def test_flash_drum_spec_pairs_checked_at_assembly(hc_fs, kwargs, message):
    feed = hc_fs.new_feed("S1", T=330.0, P=1e6, flows={"propane": 1.0, "n-butane": 1.0})
    with pytest.raises(ConfigurationError, match=message) as exc:
        _drum(hc_fs, FlashDrum("D1", **kwargs), [feed])
    assert "D1" in exc.value.context["units"]


def test_pump_with_both_pressure_specs_rejected(ab_fs):
    feed = ab_fs.new_feed("S1", T=300.0, P=1e5, flows={"A": 5.0})
    with pytest.raises(ConfigurationError, match="exactly one of set_p or dP"):
        _one_in_one_out(ab_fs, Pump("P1", set_p=1e6, dP=9e5), feed, out_phase="L")
