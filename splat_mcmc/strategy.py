"""
MCMC population management for 3D Gaussian Splatting.

The controller owns the Gaussian parameters, one Adam optimizer per parameter
and the position learning-rate schedule. The outer training loop drives it
through three calls per iteration:

    controller.initialize(params)           # once
    loss.backward()
    controller.step(step)                   # optimizer update + LR decay
    controller.post_backward(step)          # refinement + position noise

Refinement (inside the configured window, every ``refine_every`` steps):
    1. relocate_gs: dead Gaussians (opacity <= min_opacity) are overwritten by
       copies of alive ones drawn proportionally to opacity. The drawn
       Gaussians and their copies share the original footprint through the
       relocation formula, and their Adam moments restart from zero.
    2. add_new_gs: the population grows by ``growth_factor`` up to ``max_cap``
       by cloning Gaussians drawn from everyone, again proportionally to
       opacity. Optimizer moments are extended with zero rows.

A viewer thread must hold ``splat_lock`` while reading ``get_model()``; every
resize happens under that lock.
"""

import os
import threading
from typing import Any, Dict, Optional

import torch
from torch import Tensor

from .binoms import build_binomial_table
from .config import MCMCParams
from .noise import inject_noise_to_position
from .optim import OptimizerStateSync
from .relocation import compute_relocation
from .sampling import draw_multiplicity, multinomial_sample
from .splats import PARAM_NAMES, check_splats, get_opacity, get_scaling


class PopulationController:
    """Owns the Gaussians and keeps them and their optimizer state consistent."""

    def __init__(
        self,
        splats: Dict[str, Tensor],
        scene_scale: float = 1.0,
        generator: Optional[torch.Generator] = None,
    ):
        check_splats(splats)
        self.splats = splats
        self.scene_scale = scene_scale
        self.generator = generator

        self.params: Optional[MCMCParams] = None
        self.optimizers: Dict[str, torch.optim.Optimizer] = {}
        self.scheduler = None
        self.sync = OptimizerStateSync()
        self.handles: Dict[str, int] = {}
        self.binoms: Optional[Tensor] = None
        self.active_sh_degree = 0

        self.splat_lock = threading.RLock()

    # ==================== Setup ====================

    def initialize(self, params: MCMCParams):
        """Move the Gaussians to the device and build optimizers and schedule."""
        params.validate()
        self.params = params
        device = params.device

        with self.splat_lock:
            self.splats = torch.nn.ParameterDict(
                {
                    name: torch.nn.Parameter(self.splats[name].to(device).float())
                    for name in PARAM_NAMES
                }
            )

            self.binoms = build_binomial_table(params.max_multiplicity, device)

            lrs = {
                "means": params.means_lr * self.scene_scale,
                "sh0": params.shs_lr,
                "shN": params.shs_lr / 20,
                "scales": params.scaling_lr,
                "quats": params.rotation_lr,
                "opacities": params.opacity_lr,
            }
            self.optimizers = {
                name: torch.optim.Adam(
                    [{"params": self.splats[name], "lr": lr, "name": name}],
                    eps=params.adam_eps,
                )
                for name, lr in lrs.items()
            }

            self.sync = OptimizerStateSync()
            self.handles = {
                name: self.sync.register(name, optimizer)
                for name, optimizer in self.optimizers.items()
            }

            self.scheduler = torch.optim.lr_scheduler.ExponentialLR(
                self.optimizers["means"], gamma=0.01 ** (1.0 / params.iterations)
            )

    def _check_initialized(self):
        if self.params is None:
            raise RuntimeError("PopulationController.initialize() has not been called")

    def get_model(self) -> Dict[str, Tensor]:
        return self.splats

    @property
    def num_gaussians(self) -> int:
        return self.splats["means"].shape[0]

    def is_refining(self, step: int) -> bool:
        self._check_initialized()
        p = self.params
        return (
            p.start_refine < step < p.stop_refine and step % p.refine_every == 0
        )

    # ==================== Per-iteration control ====================

    def step(self, step: int):
        """One optimizer update over every parameter, then decay the position LR."""
        self._check_initialized()
        if step >= self.params.iterations:
            return
        for optimizer in self.optimizers.values():
            optimizer.step()
            optimizer.zero_grad(set_to_none=True)
        self.scheduler.step()

    @torch.no_grad()
    def post_backward(self, step: int, info: Optional[Dict[str, Any]] = None):
        """SH degree schedule, refinement and position noise.

        ``info`` is the renderer's output for this step; it is accepted for
        interface compatibility and not needed by the MCMC refinement.
        """
        self._check_initialized()
        p = self.params

        # one more SH band every sh_degree_interval steps
        self.active_sh_degree = min(step // p.sh_degree_interval, p.sh_degree)

        if self.is_refining(step):
            n_relocated = self.relocate_gs()
            n_added = self.add_new_gs()
            if p.verbose:
                print(
                    f"[MCMC] Step {step}: relocated {n_relocated} GSs, "
                    f"added {n_added} GSs, now {self.num_gaussians} GSs."
                )
            if torch.cuda.is_available():
                torch.cuda.empty_cache()

        self.inject_noise()

    # ==================== Refinement ====================

    @torch.no_grad()
    def _relocate_in_place(self, sampled_idxs: Tensor, opacities: Tensor):
        """Apply the relocation formula to the rows at ``sampled_idxs``."""
        ratios = draw_multiplicity(sampled_idxs, opacities.shape[0], self.binoms.shape[0])
        new_opacities, new_scales = compute_relocation(
            opacities=opacities[sampled_idxs],
            scales=get_scaling(self.splats)[sampled_idxs],
            ratios=ratios,
            binoms=self.binoms,
            min_opacity=self.params.min_opacity,
        )
        self.splats["opacities"][sampled_idxs] = torch.logit(new_opacities)
        self.splats["scales"][sampled_idxs] = torch.log(new_scales)

    @torch.no_grad()
    def relocate_gs(self) -> int:
        """Overwrite dead Gaussians with copies of alive ones. Returns the dead count."""
        self._check_initialized()
        with self.splat_lock:
            opacities = get_opacity(self.splats)
            dead_mask = opacities <= self.params.min_opacity
            dead_indices = dead_mask.nonzero(as_tuple=True)[0]
            if dead_indices.numel() == 0:
                return 0

            alive_indices = (~dead_mask).nonzero(as_tuple=True)[0]
            if alive_indices.numel() == 0:
                return 0

            # sample from alive ones based on opacity
            probs = opacities[alive_indices]
            sampled_idxs = multinomial_sample(
                probs, dead_indices.numel(), replacement=True, generator=self.generator
            )
            sampled_idxs = alive_indices[sampled_idxs]

            self._relocate_in_place(sampled_idxs, opacities)

            for name in PARAM_NAMES:
                p = self.splats[name]
                p[dead_indices] = p[sampled_idxs]

            reset_rows = torch.cat([sampled_idxs, dead_indices])
            for name in PARAM_NAMES:
                self.sync.reset_rows(self.handles[name], reset_rows)

            return dead_indices.numel()

    @torch.no_grad()
    def add_new_gs(self) -> int:
        """Grow the population by cloning opacity-sampled Gaussians. Returns the added count."""
        if self.params is None:
            print("[MCMC] Warning: add_new_gs called before initialize(); skipping.")
            return 0

        with self.splat_lock:
            current_n = self.num_gaussians
            n_target = min(
                self.params.max_cap, int(round(self.params.growth_factor * current_n))
            )
            n_new = max(0, n_target - current_n)
            if n_new == 0:
                return 0

            opacities = get_opacity(self.splats)
            sampled_idxs = multinomial_sample(
                opacities, n_new, replacement=True, generator=self.generator
            )

            self._relocate_in_place(sampled_idxs, opacities)

            # Build every new parameter and state before swapping any of them in.
            new_params = {}
            new_states = {}
            for name in PARAM_NAMES:
                p = self.splats[name]
                new_params[name] = torch.nn.Parameter(
                    torch.cat([p, p[sampled_idxs]]), requires_grad=p.requires_grad
                )
                new_states[name] = self.sync.extend_state(self.handles[name], n_new)

            for name in PARAM_NAMES:
                self.sync.swap(self.handles[name], new_params[name], new_states[name])
                self.splats[name] = new_params[name]

            return n_new

    @torch.no_grad()
    def inject_noise(self):
        self._check_initialized()
        p = self.params
        lr = self.optimizers["means"].param_groups[0]["lr"]
        inject_noise_to_position(
            means=self.splats["means"],
            quats=self.splats["quats"],
            scales=get_scaling(self.splats),
            opacities=get_opacity(self.splats),
            lr=lr,
            noise_lr=p.noise_lr,
            k=p.noise_k,
            x0=p.noise_x0,
            generator=self.generator,
        )

    # ==================== Stats & checkpoints ====================

    @torch.no_grad()
    def population_stats(self) -> Dict[str, float]:
        opacities = get_opacity(self.splats)
        stats = {
            "count": float(opacities.shape[0]),
            "opacity_mean": opacities.mean().item(),
            "opacity_min": opacities.min().item(),
            "opacity_max": opacities.max().item(),
        }
        if self.params is not None:
            stats["dead"] = float((opacities <= self.params.min_opacity).sum().item())
        return stats

    def state_dict(self) -> Dict[str, Any]:
        self._check_initialized()
        with self.splat_lock:
            return {
                "splats": {name: p.detach().clone() for name, p in self.splats.items()},
                "optimizers": {
                    name: optimizer.state_dict()
                    for name, optimizer in self.optimizers.items()
                },
                "scheduler": self.scheduler.state_dict(),
                "active_sh_degree": self.active_sh_degree,
            }

    def load_state_dict(self, ckpt: Dict[str, Any]):
        """Restore Gaussians and optimizer state, whatever the population size."""
        self._check_initialized()
        ckpt_splats = ckpt["splats"]
        for name in PARAM_NAMES:
            if name not in ckpt_splats:
                raise KeyError(f"Checkpoint is missing Gaussian parameter '{name}'")
        check_splats(ckpt_splats)

        device = self.params.device
        with self.splat_lock:
            for name in PARAM_NAMES:
                new_param = torch.nn.Parameter(ckpt_splats[name].to(device))
                self.sync.swap(self.handles[name], new_param, None)
                self.splats[name] = new_param
            for name, optimizer in self.optimizers.items():
                optimizer.load_state_dict(ckpt["optimizers"][name])
            self.scheduler.load_state_dict(ckpt["scheduler"])
            self.active_sh_degree = ckpt.get("active_sh_degree", 0)

    def save_checkpoint(self, path: str, step: Optional[int] = None):
        data = self.state_dict()
        if step is not None:
            data["step"] = step
        torch.save(data, path)

    def load_checkpoint(self, path: str) -> Dict[str, Any]:
        self._check_initialized()
        if not os.path.exists(path):
            raise FileNotFoundError(f"Checkpoint not found: {path}")
        ckpt = torch.load(path, map_location=self.params.device)
        self.load_state_dict(ckpt)
        return ckpt
