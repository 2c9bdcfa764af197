import torch
from torch import Tensor


def build_binomial_table(n_max: int, device="cpu") -> Tensor:
    """Lower-triangular table of binomial coefficients.

    ``binoms[n, k] = C(n, k)`` for ``0 <= k <= n < n_max``; entries above the
    diagonal are zero. Used by the relocation formula, which indexes rows by
    ``multiplicity - 1``.

    Args:
        n_max: Number of rows/columns. Multiplicities are clamped below this.
        device: Device of the returned tensor.

    Returns:
        A float32 tensor of shape [n_max, n_max].
    """
    binoms = torch.zeros((n_max, n_max), dtype=torch.float32)
    for n in range(n_max):
        binoms[n, 0] = 1.0
        coeff = 1.0
        for k in range(1, n + 1):
            coeff = coeff * (n - k + 1) / k
            binoms[n, k] = coeff
    return binoms.to(device)
