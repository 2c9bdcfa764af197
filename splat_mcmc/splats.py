from typing import Dict

import torch
from torch import Tensor

from .utils import knn, rgb_to_sh

# Order matters: it is the order of the optimizers and of checkpointed state.
PARAM_NAMES = ("means", "sh0", "shN", "scales", "quats", "opacities")


def init_splats(
    points: Tensor,
    colors: Tensor,
    sh_degree: int = 3,
    init_opacity: float = 0.1,
    init_scale: float = 1.0,
) -> Dict[str, Tensor]:
    """Initial Gaussian parameters from a colored point cloud.

    Parameters per Gaussian:
    - means: [N, 3] - world-space centers
    - sh0: [N, 1, 3] - DC spherical harmonics
    - shN: [N, K, 3] - higher-order SH (K = (sh_degree+1)^2 - 1)
    - scales: [N, 3] - log scales, from the mean distance to 3 nearest neighbours
    - quats: [N, 4] - unnormalized quaternions (wxyz)
    - opacities: [N] - logit opacities
    """
    if points.dim() != 2 or points.shape[-1] != 3:
        raise ValueError(f"points must be [N, 3], got {tuple(points.shape)}")
    if colors.shape != points.shape:
        raise ValueError(
            f"colors must match points {tuple(points.shape)}, got {tuple(colors.shape)}"
        )

    points = points.float()
    N = points.shape[0]

    if N > 1:
        K = min(4, N)
        dist2_avg = (knn(points, K)[:, 1:] ** 2).mean(dim=-1)
        dist_avg = torch.sqrt(dist2_avg).clamp(min=1e-6)
    else:
        dist_avg = torch.ones(N)
    scales = torch.log(dist_avg * init_scale).unsqueeze(-1).repeat(1, 3)

    quats = torch.rand((N, 4))
    opacities = torch.logit(torch.full((N,), init_opacity))

    sh_colors = torch.zeros((N, (sh_degree + 1) ** 2, 3))
    sh_colors[:, 0, :] = rgb_to_sh(colors.float())

    return {
        "means": points.clone(),
        "sh0": sh_colors[:, :1, :].contiguous(),
        "shN": sh_colors[:, 1:, :].contiguous(),
        "scales": scales,
        "quats": quats,
        "opacities": opacities,
    }


def check_splats(splats: Dict[str, Tensor]):
    """Raise ValueError unless every parameter is present and shares one row count."""
    missing = [name for name in PARAM_NAMES if name not in splats]
    if missing:
        raise ValueError(f"Missing Gaussian parameters: {missing}")
    sizes = {name: splats[name].shape[0] for name in PARAM_NAMES}
    if len(set(sizes.values())) != 1:
        raise ValueError(f"Gaussian parameters disagree on N: {sizes}")


def get_opacity(splats: Dict[str, Tensor]) -> Tensor:
    return torch.sigmoid(splats["opacities"]).flatten()


def get_scaling(splats: Dict[str, Tensor]) -> Tensor:
    return torch.exp(splats["scales"])


def get_colors(splats: Dict[str, Tensor]) -> Tensor:
    return torch.cat([splats["sh0"], splats["shN"]], dim=1)
