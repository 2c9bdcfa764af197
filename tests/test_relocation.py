import torch

from splat_mcmc import build_binomial_table, compute_relocation

BINOMS = build_binomial_table(51)


def test_multiplicity_one_is_identity():
    opacities = torch.tensor([0.5])
    scales = torch.tensor([[1.0, 1.0, 1.0]])
    new_opacities, new_scales = compute_relocation(
        opacities, scales, torch.tensor([1]), BINOMS
    )
    assert torch.equal(new_opacities, opacities)
    assert torch.equal(new_scales, scales)


def test_composited_opacity_is_preserved():
    opacities = torch.tensor([0.3, 0.6, 0.9, 0.99])
    scales = torch.rand(4, 3) + 0.1
    ratios = torch.tensor([2, 3, 5, 10])
    new_opacities, new_scales = compute_relocation(opacities, scales, ratios, BINOMS)

    composite = 1 - (1 - new_opacities.double()) ** ratios.double()
    assert torch.allclose(composite, opacities.double(), atol=1e-5)
    assert torch.all(new_opacities < opacities)
    # every axis shrinks by the same factor
    factor = new_scales / scales
    assert torch.allclose(factor, factor[:, :1].expand(-1, 3), atol=1e-6)
    assert torch.all(factor < 1)


def test_two_way_split_closed_form():
    o = 0.5
    new_o = 1 - (1 - o) ** 0.5
    denom = new_o + (new_o - new_o**2 / 2**0.5)
    new_opacities, new_scales = compute_relocation(
        torch.tensor([o]), torch.ones(1, 3), torch.tensor([2]), BINOMS
    )
    assert abs(new_opacities.item() - new_o) < 1e-6
    assert torch.allclose(new_scales, torch.full((1, 3), o / denom), atol=1e-6)


def test_opacity_clamped_and_ratio_clamped():
    new_opacities, _ = compute_relocation(
        torch.tensor([0.01]), torch.ones(1, 3), torch.tensor([1000]), BINOMS, min_opacity=0.005
    )
    assert new_opacities.item() >= torch.tensor(0.005, dtype=torch.float32).item()
    high, _ = compute_relocation(torch.tensor([1.0]), torch.ones(1, 3), torch.tensor([1]), BINOMS)
    assert high.item() < 1.0
    assert torch.isfinite(torch.logit(high)).all()


def test_empty_input():
    new_opacities, new_scales = compute_relocation(
        torch.empty(0), torch.empty(0, 3), torch.empty(0, dtype=torch.int32), BINOMS
    )
    assert new_opacities.shape == (0,)
    assert new_scales.shape == (0, 3)
