from typing import Tuple

import torch
from torch import Tensor

MIN_OPACITY_CLAMP = 1e-7


@torch.no_grad()
def compute_relocation(
    opacities: Tensor,
    scales: Tensor,
    ratios: Tensor,
    binoms: Tensor,
    min_opacity: float = 0.0,
) -> Tuple[Tensor, Tensor]:
    """Split each Gaussian into ``ratio`` Gaussians with the same footprint.

    For a group of ``n`` copies the new opacity is ``1 - (1 - o)^(1/n)`` so
    that alpha-compositing the copies reproduces ``o``. The scale is shrunk by
    ``o / D`` with

        D = sum_{i=1..n} sum_{k=0..i-1} C(i-1, k) (-1)^k / sqrt(k+1) * o_new^(k+1)

    which keeps the integrated density of the group equal to the original.
    A ratio of 1 leaves both inputs unchanged.

    Args:
        opacities: Activated opacities [K].
        scales: Activated scales [K, 3].
        ratios: Group sizes [K]; clamped to ``[1, n_max - 1]``.
        binoms: Table from :func:`splat_mcmc.binoms.build_binomial_table`.
        min_opacity: Lower clamp of the returned opacities.

    Returns:
        new_opacities [K] clamped to ``[min_opacity, 1 - 1e-7]`` and
        new_scales [K, 3].
    """
    if opacities.numel() == 0:
        return opacities.clone(), scales.clone()

    n_max = binoms.shape[0]
    dtype = opacities.dtype
    ratios = ratios.clamp(1, n_max - 1).to(device=opacities.device, dtype=torch.long)

    opa = opacities.double()
    new_opacities = 1.0 - torch.pow(1.0 - opa, 1.0 / ratios.double())

    # cum_binoms[n - 1, k] = sum_{i=1..n} C(i-1, k)
    cum_binoms = binoms.to(device=opacities.device, dtype=torch.float64).cumsum(0)
    k = torch.arange(n_max, device=opacities.device, dtype=torch.float64)
    signs = (1.0 - 2.0 * (k % 2)) / torch.sqrt(k + 1.0)
    powers = torch.pow(new_opacities.unsqueeze(-1), k + 1.0)  # [K, n_max]
    denom_sum = (cum_binoms[ratios - 1] * signs * powers).sum(dim=-1)

    coeff = opa / denom_sum
    new_scales = (coeff.unsqueeze(-1) * scales.double()).to(scales.dtype)

    new_opacities = torch.clamp(
        new_opacities, min=min_opacity, max=1.0 - MIN_OPACITY_CLAMP
    ).to(dtype)
    return new_opacities, new_scales
