import pytest

from eosim import ComponentRegistry, Compound, Flowsheet, PropertyPackage

# Poling/Reid ideal-gas cp (J/mol/K) and formation enthalpies (J/mol)
HYDROCARBONS = {
    "propane": dict(Tc=369.8, Pc=4.248e6, omega=0.152, cp_coeffs=(-4.224, 0.3063, -1.586e-4, 3.215e-8),
                    hf=-104.7e3, formula="C3H8"),
    "n-butane": dict(Tc=425.1, Pc=3.796e6, omega=0.200, cp_coeffs=(9.487, 0.3313, -1.108e-4, -2.822e-9),
                     hf=-125.8e3, formula="C4H10"),
    "n-pentane": dict(Tc=469.7, Pc=3.370e6, omega=0.252, cp_coeffs=(-3.626, 0.4873, -2.580e-4, 5.305e-8),
                      hf=-146.9e3, formula="C5H12"),
}


def make_registry(data):
    reg = ComponentRegistry()
    for name, kw in data.items():
        reg.add(Compound(name=name, **kw))
    return reg


@pytest.fixture
def ab_props():
    # two made-up condensables with identical critical data, B lower in formation enthalpy
    reg = make_registry({
        "A": dict(Tc=500.0, Pc=4.0e6, omega=0.2, hf=0.0),
        "B": dict(Tc=500.0, Pc=4.0e6, omega=0.2, hf=-1.0e4),
    })
    return PropertyPackage(reg)


@pytest.fixture
def hc_props():
    return PropertyPackage(make_registry(HYDROCARBONS))


@pytest.fixture
def make_hc_props():
    def _make(model="ideal", interactions=None):
        return PropertyPackage(make_registry(HYDROCARBONS), model, interactions)
    return _make


@pytest.fixture
def ab_fs(ab_props):
    return Flowsheet(ab_props)


@pytest.fixture
def hc_fs(hc_props):
    return Flowsheet(hc_props)
