from typing import Optional

import torch
from torch import Tensor

# torch.multinomial rejects more than 2^24 categories.
MULTINOMIAL_LIMIT = 1 << 24


def multinomial_sample(
    weights: Tensor,
    n: int,
    replacement: bool = True,
    generator: Optional[torch.Generator] = None,
    limit: int = MULTINOMIAL_LIMIT,
) -> Tensor:
    """Draw ``n`` indices with probability proportional to ``weights``.

    Small populations go straight to :func:`torch.multinomial`. Above ``limit``
    the weights are normalized, their cumulative sum is taken on the host and
    each uniform draw is located with a binary search, which gives the same
    distribution as sampling with replacement. The search returns the first
    index whose cumulative weight is strictly greater than the draw, so a
    zero-weight index is never picked; this differs from a greater-or-equal
    search only when a draw hits a cumulative value exactly.

    Args:
        weights: Non-negative weights [M] with a positive sum.
        n: Number of draws.
        replacement: Sample with replacement. Only honoured by the native path;
            the fallback always samples with replacement.
        generator: Optional generator for reproducible draws.
        limit: Largest ``M`` handed to :func:`torch.multinomial`.

    Returns:
        Int64 indices [n] on the same device as ``weights``.
    """
    weights = weights.flatten()
    num_elements = weights.shape[0]

    if num_elements <= limit:
        return torch.multinomial(weights, n, replacement, generator=generator)

    cdf = (weights.double() / weights.double().sum()).cpu().cumsum(0)
    if generator is not None and generator.device.type == "cpu":
        u = torch.rand(n, dtype=torch.float64, generator=generator)
    else:
        u = torch.rand(n, dtype=torch.float64)
    # right=True never lands on a zero-weight index
    sampled_idxs = torch.searchsorted(cdf, u, right=True)
    sampled_idxs = sampled_idxs.clamp_(max=num_elements - 1)
    return sampled_idxs.to(device=weights.device, dtype=torch.long)


def draw_multiplicity(sampled_idxs: Tensor, num_elements: int, n_max: int) -> Tensor:
    """Group size for every draw: times its index was drawn, plus the original.

    Args:
        sampled_idxs: Drawn indices [K], possibly repeated.
        num_elements: Size of the population the indices point into.
        n_max: Size of the binomial table; results are clamped to
            ``[1, n_max - 1]``.

    Returns:
        Int32 multiplicities [K], aligned with ``sampled_idxs``.
    """
    counts = torch.zeros(num_elements, dtype=torch.float32, device=sampled_idxs.device)
    counts.index_add_(
        0, sampled_idxs, torch.ones_like(sampled_idxs, dtype=torch.float32)
    )
    ratios = counts[sampled_idxs] + 1
    return torch.clamp(ratios, 1, n_max - 1).int()
