import pytest

from splat_mcmc import MCMCParams


def test_defaults_are_valid():
    MCMCParams().validate()


@pytest.mark.parametrize(
    "overrides",
    [
        {"iterations": 0},
        {"refine_every": 0},
        {"max_multiplicity": 1},
        {"min_opacity": 1.0},
        {"max_cap": -1},
    ],
)
def test_validate_rejects(overrides):
    with pytest.raises(ValueError):
        MCMCParams(**overrides).validate()


def test_adjust_steps():
    params = MCMCParams(iterations=30_000, start_refine=500, stop_refine=25_000, refine_every=100)
    params.adjust_steps(0.1)
    assert params.iterations == 3000
    assert params.start_refine == 50
    assert params.stop_refine == 2500
    assert params.refine_every == 10
    assert params.sh_degree_interval == 100


def test_yaml_roundtrip(tmp_path):
    params = MCMCParams(max_cap=1234, min_opacity=0.01, device="cpu")
    path = tmp_path / "mcmc.yml"
    params.save_yaml(str(path))
    assert MCMCParams.load_yaml(str(path)) == params


def test_yaml_unknown_option(tmp_path):
    path = tmp_path / "mcmc.yml"
    path.write_text("max_cap: 10\nnot_an_option: 1\n")
    with pytest.raises(ValueError):
        MCMCParams.load_yaml(str(path))
