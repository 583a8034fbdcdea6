import logging

import pytest

from eosim import ConfigurationError, SolverConfig, setup_logging


def test_defaults():
    cfg = SolverConfig()
    assert cfg.mode == "simultaneous"
    assert cfg.recycle_method == "wegstein"
    assert cfg.property_model is None
    assert cfg.abs_tol == 1e-6 and cfg.rel_tol == 1e-4


def test_from_mapping_normalises_choices():
    cfg = SolverConfig.from_mapping({
        "mode": "Sequential",
        "recycle_method": "broyden",
        "property_model": "PR",
        "tear_streams": ["R1", "R2"],
        "wegstein_bounds": [-3, 0.5],
    })
    assert cfg.mode == "sequential"
    assert cfg.recycle_method == "quasi-newton"
    assert cfg.property_model == "peng-robinson"
    assert cfg.tear_streams == ("R1", "R2")
    assert cfg.wegstein_bounds == (-3.0, 0.5)
    assert SolverConfig.from_mapping(None) == SolverConfig()


def test_from_mapping_rejects_unknown_keys():
    with pytest.raises(ConfigurationError) as exc:
        SolverConfig.from_mapping({"abs_tol": 1e-8, "tolerance": 1e-3})
    assert exc.value.context["options"] == ["tolerance"]


@pytest.mark.parametrize("kwargs", [
    {"abs_tol": 0.0},
    {"rel_tol": -1.0},
    {"max_iterations": 0},
    {"workers": 0},
    {"line_search_halvings": -1},
    {"wegstein_bounds": (0.5, 1.5)},
    {"mode": "sideways"},
    {"property_model": "unifac"},
])
def test_invalid_settings_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        SolverConfig(**kwargs)


def test_setup_logging_is_idempotent(caplog):
    log = setup_logging("debug")
    setup_logging(logging.INFO)
    handlers = [h for h in log.handlers if getattr(h, "_eosim_handler", False)]
    assert len(handlers) == 1
    assert log.level == logging.INFO
    with caplog.at_level(logging.INFO, logger="eosim"):
        logging.getLogger("eosim.newton").info("hello", extra={"iteration": 3})
    assert caplog.records[-1].iteration == 3
