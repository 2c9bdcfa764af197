from typing import Optional

import torch
import torch.nn.functional as F
from torch import Tensor

from gsplat.utils import normalized_quat_to_rotmat

NOISE_LR = 5e5
NOISE_K = 100.0
NOISE_X0 = 0.995


def op_sigmoid(x: Tensor, k: float = NOISE_K, x0: float = NOISE_X0) -> Tensor:
    return 1 / (1 + torch.exp(-k * (x - x0)))


def quat_scale_to_covar(quats: Tensor, scales: Tensor) -> Tensor:
    """Covariances R S S^T R^T [N, 3, 3] from quaternions (wxyz) and activated scales."""
    rotmats = normalized_quat_to_rotmat(F.normalize(quats, dim=-1))
    M = rotmats * scales.unsqueeze(-2)
    return torch.bmm(M, M.transpose(1, 2))


@torch.no_grad()
def inject_noise_to_position(
    means: Tensor,
    quats: Tensor,
    scales: Tensor,
    opacities: Tensor,
    lr: float,
    noise_lr: float = NOISE_LR,
    k: float = NOISE_K,
    x0: float = NOISE_X0,
    generator: Optional[torch.Generator] = None,
) -> Tensor:
    """Perturb Gaussian centers in place with opacity-gated anisotropic noise.

    Nearly transparent Gaussians get most of the noise and opaque ones almost
    none. The noise is shaped by each Gaussian's own covariance, so it travels
    further along long axes.

    Args:
        means: Centers [N, 3], modified in place.
        quats: Raw quaternions [N, 4].
        scales: Activated scales [N, 3].
        opacities: Activated opacities [N].
        lr: Current position learning rate.
        noise_lr: Multiplier on ``lr``.

    Returns:
        The noise that was added [N, 3].
    """
    covars = quat_scale_to_covar(quats, scales)
    weight = op_sigmoid(1 - opacities.flatten(), k, x0)
    noise = torch.randn(
        means.shape, dtype=means.dtype, device=means.device, generator=generator
    )
    noise = noise * weight.unsqueeze(-1) * lr * noise_lr
    noise = torch.bmm(covars, noise.unsqueeze(-1)).squeeze(-1)
    means.add_(noise)
    return noise
