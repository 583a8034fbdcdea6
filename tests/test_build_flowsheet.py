import pytest

from eosim import ConfigurationError, SolverConfig, build_flowsheet, build_registry, run_job, solve_flowsheet

COMPOUNDS = {
    "A": {"Tc": 500.0, "Pc": 4.0e6, "omega": 0.2},
    "B": {"Tc": 500.0, "Pc": 4.0e6, "omega": 0.2, "hf": -1.0e4},
}


def _topology(**extra):
    topo = {
        "compounds": COMPOUNDS,
        "streams": {
            "S1": {"feed": {"T": 298.15, "P": 101325.0, "flows": {"A": 50.0}}},
            "S2": {"feed": {"T": 298.15, "P": 101325.0, "flow": 50.0, "composition": {"B": 1.0}}},
        },
        "units": [
            {"name": "M1", "type": "mixer", "inlets": {"in1": "S1", "in2": "S2"}, "outlets": {"out": "S3"}},
            {"name": "SP1", "type": "Splitter", "inlets": {"in": "S3"}, "outlets": {"A": "SA", "B": "SB"},
             "params": {"split": {"A": 0.6}}},
        ],
    }
    topo.update(extra)
    return topo


def test_run_job_mixer_splitter():
    events = []
    out = run_job({"topology": _topology(), "config": {"abs_tol": 1e-8}}, progress=events.append)
    assert out["outcome"]["status"] == "converged"
    assert out["outcome"]["iterations"] == len(events)
    assert "recycle" not in out["outcome"]
    assert out["streams"]["SA"]["component_flows"] == pytest.approx({"A": 30.0, "B": 30.0})
    assert out["streams"]["SB"]["flow"] == pytest.approx(40.0)


def test_run_job_sequential_reports_recycle():
    topo = _topology()
    topo["units"] = [
        {"name": "H1", "type": "heater", "inlets": {"in": "S1"}, "outlets": {"out": "S1H"},
         "params": {"T_out": 310.0}},
        {"name": "M1", "type": "mixer", "inlets": {"in1": "S1H", "in2": "S2"}, "outlets": {"out": "S3"}},
    ]
    out = run_job({"topology": topo, "config": {"mode": "sequential"}})
    assert out["outcome"]["status"] == "converged"
    assert out["outcome"]["recycle"] == {"tears": [], "trend": [], "converged": True}


def test_unknown_unit_type_rejected():
    topo = _topology()
    topo["units"][0]["type"] = "distillation_column"
    with pytest.raises(ConfigurationError, match="unknown type"):
        build_flowsheet(topo)


def test_bad_unit_parameters_rejected():
    topo = _topology()
    topo["units"][1]["params"] = {"split": {"A": 0.6}, "bogus": 1}
    with pytest.raises(ConfigurationError) as exc:
        build_flowsheet(topo)
    assert exc.value.context["unit"] == "SP1"


def test_reactor_built_from_plain_reactions():
    topo = _topology()
    topo["units"] = [
        {"name": "RX", "type": "reactor", "inlets": {"in": "S1"}, "outlets": {"out": "P"},
         "params": {"T_out": 298.15, "reactions": [{"name": "r1", "nu": {"A": -1, "B": 1}, "conversion": 0.4}]}},
        {"name": "M1", "type": "mixer", "inlets": {"in1": "P", "in2": "S2"}, "outlets": {"out": "S3"}},
    ]
    fs = build_flowsheet(topo)
    res = solve_flowsheet(fs)
    assert res.converged
    assert res.streams["S3"]["component_flows"]["B"] == pytest.approx(70.0)


def test_property_model_mismatch_rejected_before_solving():
    fs = build_flowsheet(_topology(property_model="ideal"))
    events = []
    with pytest.raises(ConfigurationError):
        solve_flowsheet(fs, SolverConfig(property_model="peng-robinson"), progress=events.append)
    assert events == []


def test_degrees_of_freedom_rejected_before_any_progress():
    topo = _topology()
    topo["units"].append({"name": "H1", "type": "heater", "inlets": {"in": "SA"}, "outlets": {"out": "SH"},
                          "params": {"T_out": 350.0, "duty": 100.0}})
    fs = build_flowsheet(topo)
    events = []
    with pytest.raises(ConfigurationError) as exc:
        solve_flowsheet(fs, progress=events.append)
    assert exc.value.context["units"] == {"H1": 1}
    assert events == []


def test_registry_builder_checks_fields():
    reg = build_registry({"water": {"Tc": 647.1, "Pc": 22.064e6, "omega": 0.345, "formula": "H2O"}})
    assert reg["water"].mw == pytest.approx(18.015, abs=1e-3)
    with pytest.raises(ConfigurationError, match="missing"):
        build_registry({"x": {"Pc": 1e6}})
    with pytest.raises(ConfigurationError, match="unknown field"):
        build_registry({"x": {"Tc": 300.0, "Pc": 1e6, "colour": "blue"}})


def test_out_of_range_unit_parameter_names_the_unit():
    topo = _topology()
    topo["units"][1]["params"] = {"split": {"A": 1.5}}
    with pytest.raises(ConfigurationError, match="must be in") as exc:
        build_flowsheet(topo)
    assert exc.value.context["unit"] == "SP1"


@pytest.mark.parametrize("feed", [
    {"T": -5.0, "P": 101325.0, "flows": {"A": 1.0}},
    {"T": 298.15, "P": 101325.0, "flows": {"A": -1.0}},
    {"T": 298.15, "P": 101325.0, "flow": 1.0},
    {"T": 298.15, "P": 101325.0, "flows": {"Z": 1.0}},
])
def test_bad_feed_names_the_stream(feed):
    topo = _topology()
    topo["streams"]["S1"] = {"feed": feed}
    with pytest.raises(ConfigurationError) as exc:
        build_flowsheet(topo)
    assert exc.value.context["stream"] == "S1"
