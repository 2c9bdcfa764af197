from typing import Optional

import torch

from splat_mcmc import MCMCParams, PopulationController, init_splats


def make_splats(n: int, opacities: Optional[torch.Tensor] = None, sh_degree: int = 1):
    points = torch.randn(n, 3)
    colors = torch.rand(n, 3)
    splats = init_splats(points, colors, sh_degree=sh_degree, init_opacity=0.5)
    if opacities is not None:
        splats["opacities"] = torch.logit(opacities.float())
    return splats


def make_controller(
    n: int = 100,
    opacities: Optional[torch.Tensor] = None,
    **overrides,
) -> PopulationController:
    params = MCMCParams(**{"device": "cpu", "sh_degree": 1, **overrides})
    controller = PopulationController(make_splats(n, opacities, sh_degree=params.sh_degree))
    controller.initialize(params)
    return controller


def take_optimizer_step(controller: PopulationController):
    """Populate Adam state with non-zero moments."""
    for p in controller.get_model().values():
        p.grad = torch.randn_like(p)
    controller.step(0)
