import math

import torch

from splat_mcmc import inject_noise_to_position, quat_scale_to_covar


def test_covariance_identity_rotation():
    quats = torch.tensor([[1.0, 0.0, 0.0, 0.0]])
    scales = torch.tensor([[2.0, 1.0, 0.5]])
    covars = quat_scale_to_covar(quats, scales)
    assert torch.allclose(covars[0], torch.diag(torch.tensor([4.0, 1.0, 0.25])), atol=1e-6)


def test_covariance_rotated_about_z():
    angle = math.pi / 2
    quats = torch.tensor([[math.cos(angle / 2), 0.0, 0.0, math.sin(angle / 2)]])
    scales = torch.tensor([[2.0, 1.0, 1.0]])
    covars = quat_scale_to_covar(quats, scales)
    # the long axis now points along y
    assert torch.allclose(covars[0], torch.diag(torch.tensor([1.0, 4.0, 1.0])), atol=1e-5)


def test_opaque_gaussians_barely_move():
    n = 200
    means = torch.zeros(n, 3)
    quats = torch.tensor([[1.0, 0.0, 0.0, 0.0]]).repeat(n, 1)
    scales = torch.ones(n, 3)
    opacities = torch.cat([torch.full((n // 2,), 0.001), torch.full((n // 2,), 0.9)])

    inject_noise_to_position(means, quats, scales, opacities, lr=1e-5)

    moved = means.norm(dim=-1)
    assert moved[: n // 2].mean() > 1.0
    assert moved[n // 2 :].max() < 1e-6


def test_noise_follows_long_axis():
    n = 500
    means = torch.zeros(n, 3)
    quats = torch.tensor([[1.0, 0.0, 0.0, 0.0]]).repeat(n, 1)
    scales = torch.tensor([[1.0, 1e-3, 1e-3]]).repeat(n, 1)
    opacities = torch.full((n,), 0.01)

    noise = inject_noise_to_position(means, quats, scales, opacities, lr=1e-5)

    assert torch.equal(means, noise)
    spread = noise.abs().mean(dim=0)
    assert spread[0] > 1e4 * spread[1]
    assert spread[0] > 1e4 * spread[2]


def test_generator_reproducible():
    quats = torch.rand(10, 4)

    def run(seed):
        means = torch.zeros(10, 3)
        inject_noise_to_position(
            means,
            quats,
            torch.ones(10, 3),
            torch.full((10,), 0.1),
            lr=1e-4,
            generator=torch.Generator().manual_seed(seed),
        )
        return means

    assert torch.equal(run(7), run(7))
