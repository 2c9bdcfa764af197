from .binoms import build_binomial_table
from .config import MCMCParams
from .noise import inject_noise_to_position, quat_scale_to_covar
from .optim import OptimizerStateSync
from .relocation import compute_relocation
from .sampling import MULTINOMIAL_LIMIT, draw_multiplicity, multinomial_sample
from .splats import PARAM_NAMES, init_splats
from .strategy import PopulationController

__all__ = [
    "MCMCParams",
    "MULTINOMIAL_LIMIT",
    "OptimizerStateSync",
    "PARAM_NAMES",
    "PopulationController",
    "build_binomial_table",
    "compute_relocation",
    "draw_multiplicity",
    "init_splats",
    "inject_noise_to_position",
    "multinomial_sample",
    "quat_scale_to_covar",
]
