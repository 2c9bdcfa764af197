import random

import numpy as np
import torch
from scipy.spatial import cKDTree
from torch import Tensor


def knn(x: Tensor, K: int = 4) -> Tensor:
    """Distances [N, K] to the K nearest points, the point itself first."""
    x_np = x.detach().cpu().numpy()
    tree = cKDTree(x_np)
    distances, _ = tree.query(x_np, k=K)
    return torch.from_numpy(np.asarray(distances)).to(x)


def rgb_to_sh(rgb: Tensor) -> Tensor:
    C0 = 0.28209479177387814
    return (rgb - 0.5) / C0


def set_random_seed(seed: int):
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
