import pytest
import torch

from splat_mcmc import draw_multiplicity, multinomial_sample


@pytest.mark.parametrize("limit", [1 << 24, 1], ids=["native", "fallback"])
def test_frequency_follows_weights(limit):
    weights = torch.tensor([3.0, 1.0])
    sampled = multinomial_sample(weights, 4000, replacement=True, limit=limit)
    assert sampled.shape == (4000,)
    assert sampled.dtype == torch.long
    freq = (sampled == 0).float().mean().item()
    assert 0.72 < freq < 0.78


def test_fallback_skips_zero_weights():
    weights = torch.tensor([0.0, 2.0, 0.0, 1.0, 0.0])
    sampled = multinomial_sample(weights, 2000, limit=2)
    assert set(sampled.tolist()) <= {1, 3}
    assert 0.62 < (sampled == 1).float().mean().item() < 0.71


def test_fallback_generator_is_reproducible():
    weights = torch.rand(64)
    a = multinomial_sample(weights, 100, limit=8, generator=torch.Generator().manual_seed(3))
    b = multinomial_sample(weights, 100, limit=8, generator=torch.Generator().manual_seed(3))
    assert torch.equal(a, b)
    assert a.min() >= 0 and a.max() < 64


def test_multiplicity_counts_repeats_plus_one():
    sampled = torch.tensor([2, 5, 2, 2, 7])
    ratios = draw_multiplicity(sampled, num_elements=10, n_max=51)
    assert ratios.tolist() == [4, 2, 4, 4, 2]


def test_multiplicity_is_clamped():
    sampled = torch.zeros(100, dtype=torch.long)
    ratios = draw_multiplicity(sampled, num_elements=3, n_max=51)
    assert torch.all(ratios == 50)
