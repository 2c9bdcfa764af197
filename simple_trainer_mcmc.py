"""
MCMC Gaussian Splatting trainer
===============================

A minimal outer training loop around :class:`splat_mcmc.PopulationController`.
Rendering is done with gsplat's rasterizer; the controller owns the Gaussians,
their optimizers and all population changes (relocation, growth, noise).

Scene Input
-----------
A single ``.npz`` file with:
    - images: [M, H, W, 3] uint8 - training images
    - camtoworlds: [M, 4, 4] - camera-to-world matrices (OpenCV convention)
    - Ks: [M, 3, 3] - intrinsics
    - points: [N, 3] - initial point cloud
    - colors: [N, 3] - point colors in [0, 1]

Outputs
-------
    {result_dir}/cfg.yml               - configuration
    {result_dir}/ckpts/ckpt_{step}.pt  - controller state (Gaussians + optimizers)
    {result_dir}/renders/val_{step}_{i}.png
    {result_dir}/tb/                   - TensorBoard logs

Usage
-----
CUDA_VISIBLE_DEVICES=0 python simple_trainer_mcmc.py mcmc \\
    --scene-path /path/to/scene.npz \\
    --result-dir /path/to/results

# Quick run with all steps scaled down
CUDA_VISIBLE_DEVICES=0 python simple_trainer_mcmc.py mcmc \\
    --scene-path /path/to/scene.npz --steps-scaler 0.1
"""

import json
import os
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Literal, Optional

import imageio
import numpy as np
import torch
import torch.nn.functional as F
import tqdm
import tyro
import yaml
from torch import Tensor
from torch.utils.tensorboard import SummaryWriter
from torchmetrics.functional import structural_similarity_index_measure
from torchmetrics.image import PeakSignalNoiseRatio, StructuralSimilarityIndexMeasure
from torchmetrics.image.lpip import LearnedPerceptualImagePatchSimilarity

from gsplat.rendering import rasterization

from splat_mcmc import MCMCParams, PopulationController, init_splats
from splat_mcmc.splats import get_colors, get_opacity, get_scaling
from splat_mcmc.utils import set_random_seed


@dataclass
class Config:
    """
    Configuration for MCMC Gaussian Splatting training.
    """

    # ==================== Data Paths ====================
    scene_path: str = "data/scene.npz"
    """Path to the scene .npz (images, cameras and initial point cloud)."""

    result_dir: str = "results/mcmc"
    """Output directory for checkpoints, renders, and tensorboard logs."""

    test_every: int = 8
    """Use every N-th camera for validation (others used for training)."""

    # ==================== Training ====================
    steps_scaler: float = 1.0
    """Scale factor for all step-related parameters (for quick experiments)."""

    eval_steps: List[int] = field(default_factory=lambda: [7_000, 30_000])
    """Steps at which to run evaluation on validation set."""

    save_steps: List[int] = field(default_factory=lambda: [7_000, 30_000])
    """Steps at which to save checkpoints."""

    seed: int = 42
    """Random seed for initialization, sampling and noise."""

    # ==================== Model ====================
    init_opacity: float = 0.5
    """Initial opacity for Gaussians."""

    init_scale: float = 0.1
    """Scale factor for initial Gaussian sizes (computed from KNN distances)."""

    global_scale: float = 1.0
    """Multiplier on the scene scale derived from the cameras."""

    # ==================== Loss Weights ====================
    ssim_lambda: float = 0.2
    """Weight for the SSIM term; L1 gets 1 - ssim_lambda."""

    opacity_reg: float = 0.01
    """Weight of the mean-opacity regularizer."""

    scale_reg: float = 0.01
    """Weight of the mean-scale regularizer."""

    # ==================== Evaluation ====================
    lpips_net: Literal["vgg", "alex"] = "alex"
    """Backbone of the LPIPS metric reported at evaluation."""

    # ==================== Logging ====================
    tb_every: int = 100
    """Write TensorBoard scalars every N steps."""

    # ==================== Checkpoint & Resume ====================
    ckpt_path: Optional[str] = None
    """Checkpoint (.pt) to resume training from."""

    # ==================== Population Management ====================
    mcmc: MCMCParams = field(default_factory=MCMCParams)
    """Learning rates, refinement window and noise settings."""

    def adjust_steps(self, factor: float):
        """Scale training steps by factor."""
        self.eval_steps = [int(i * factor) for i in self.eval_steps]
        self.save_steps = [int(i * factor) for i in self.save_steps]
        self.mcmc.adjust_steps(factor)


def load_scene_npz(path: str) -> Dict[str, Tensor]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Scene not found: {path}")

    data = np.load(path)
    required = ["images", "camtoworlds", "Ks", "points", "colors"]
    missing = [k for k in required if k not in data]
    if missing:
        raise ValueError(f"Scene {path} is missing arrays: {missing}")

    scene = {k: torch.from_numpy(np.asarray(data[k])) for k in required}
    M = scene["images"].shape[0]
    if scene["camtoworlds"].shape != (M, 4, 4) or scene["Ks"].shape != (M, 3, 3):
        raise ValueError(
            f"Expected {M} cameras, got camtoworlds {tuple(scene['camtoworlds'].shape)} "
            f"and Ks {tuple(scene['Ks'].shape)}"
        )
    scene["camtoworlds"] = scene["camtoworlds"].float()
    scene["Ks"] = scene["Ks"].float()
    scene["points"] = scene["points"].float()
    scene["colors"] = scene["colors"].float()
    return scene


def camera_scene_scale(camtoworlds: Tensor) -> float:
    """Largest camera distance from the mean camera center."""
    centers = camtoworlds[:, :3, 3]
    dists = torch.norm(centers - centers.mean(dim=0), dim=-1)
    return float(dists.max().item()) if len(dists) > 1 else 1.0


class MCMCRunner:
    """Gaussian Splatting trainer with MCMC population management."""

    def __init__(self, cfg: Config):
        set_random_seed(cfg.seed)

        self.cfg = cfg
        self.device = cfg.mcmc.device

        # Setup directories
        os.makedirs(cfg.result_dir, exist_ok=True)
        self.ckpt_dir = f"{cfg.result_dir}/ckpts"
        os.makedirs(self.ckpt_dir, exist_ok=True)
        self.stats_dir = f"{cfg.result_dir}/stats"
        os.makedirs(self.stats_dir, exist_ok=True)
        self.render_dir = f"{cfg.result_dir}/renders"
        os.makedirs(self.render_dir, exist_ok=True)

        # Tensorboard
        self.writer = SummaryWriter(log_dir=f"{cfg.result_dir}/tb")

        # Load scene
        scene = load_scene_npz(cfg.scene_path)
        num_cameras = scene["images"].shape[0]
        val_ids = list(range(0, num_cameras, cfg.test_every))
        train_ids = [i for i in range(num_cameras) if i not in val_ids] or val_ids
        self.scene = scene
        self.train_ids = train_ids
        self.val_ids = val_ids
        self.scene_scale = camera_scene_scale(scene["camtoworlds"]) * 1.1 * cfg.global_scale
        print(f"[MCMC] Scene scale: {self.scene_scale}")
        print(f"[MCMC] Train: {len(self.train_ids)}, Val: {len(self.val_ids)}")

        # Create Gaussians and hand them to the controller
        splats = init_splats(
            scene["points"],
            scene["colors"],
            sh_degree=cfg.mcmc.sh_degree,
            init_opacity=cfg.init_opacity,
            init_scale=cfg.init_scale,
        )
        self.controller = PopulationController(splats, scene_scale=self.scene_scale)
        self.controller.initialize(cfg.mcmc)
        print(f"[MCMC] Initialized {self.controller.num_gaussians:,} Gaussians")

        # Metrics
        self.psnr = PeakSignalNoiseRatio(data_range=1.0).to(self.device)
        self.ssim = StructuralSimilarityIndexMeasure(data_range=1.0).to(self.device)
        if cfg.lpips_net == "alex":
            self.lpips = LearnedPerceptualImagePatchSimilarity(net_type="alex", normalize=True).to(self.device)
        else:
            self.lpips = LearnedPerceptualImagePatchSimilarity(net_type="vgg", normalize=False).to(self.device)

        self.start_step = 0
        if cfg.ckpt_path is not None:
            print(f"\n[Checkpoint] Loading from: {cfg.ckpt_path}")
            ckpt = self.controller.load_checkpoint(cfg.ckpt_path)
            self.start_step = ckpt.get("step", 0) + 1
            print(f"  Loaded {self.controller.num_gaussians:,} Gaussians")
            print(f"  Will resume from step {self.start_step}")

    def get_view(self, idx: int):
        scene = self.scene
        camtoworlds = scene["camtoworlds"][idx : idx + 1].to(self.device)
        Ks = scene["Ks"][idx : idx + 1].to(self.device)
        pixels = scene["images"][idx : idx + 1].to(self.device).float() / 255.0
        return camtoworlds, Ks, pixels

    def rasterize_splats(
        self,
        camtoworlds: Tensor,
        Ks: Tensor,
        width: int,
        height: int,
        sh_degree: int,
    ):
        splats = self.controller.get_model()
        renders, alphas, info = rasterization(
            means=splats["means"],
            quats=splats["quats"],
            scales=get_scaling(splats),
            opacities=get_opacity(splats),
            colors=get_colors(splats),
            viewmats=torch.linalg.inv(camtoworlds),
            Ks=Ks,
            width=width,
            height=height,
            sh_degree=sh_degree,
        )
        return renders, alphas, info

    def train(self):
        cfg = self.cfg
        controller = self.controller
        max_steps = cfg.mcmc.iterations

        with open(f"{cfg.result_dir}/cfg.yml", "w") as f:
            yaml.dump(asdict(cfg), f, default_flow_style=False)

        global_tic = time.time()
        pbar = tqdm.tqdm(range(self.start_step, max_steps))
        for step in pbar:
            idx = self.train_ids[np.random.randint(len(self.train_ids))]
            camtoworlds, Ks, pixels = self.get_view(idx)
            height, width = pixels.shape[1:3]

            with controller.splat_lock:
                renders, alphas, info = self.rasterize_splats(
                    camtoworlds, Ks, width, height, controller.active_sh_degree
                )
            colors = renders[..., :3].clamp(0.0, 1.0)

            l1_loss = F.l1_loss(colors, pixels)
            ssim_loss = 1.0 - structural_similarity_index_measure(
                colors.permute(0, 3, 1, 2), pixels.permute(0, 3, 1, 2), data_range=1.0
            )
            loss = l1_loss * (1.0 - cfg.ssim_lambda) + ssim_loss * cfg.ssim_lambda

            splats = controller.get_model()
            if cfg.opacity_reg > 0.0:
                loss = loss + cfg.opacity_reg * get_opacity(splats).mean()
            if cfg.scale_reg > 0.0:
                loss = loss + cfg.scale_reg * get_scaling(splats).mean()

            loss.backward()

            controller.step(step)
            controller.post_backward(step, info)

            pbar.set_description(
                f"loss={loss.item():.4f} l1={l1_loss.item():.4f} N={controller.num_gaussians}"
            )

            if step % cfg.tb_every == 0:
                stats = controller.population_stats()
                self.writer.add_scalar("loss/total", loss.item(), step)
                self.writer.add_scalar("loss/l1", l1_loss.item(), step)
                self.writer.add_scalar("loss/ssim", ssim_loss.item(), step)
                self.writer.add_scalar("gaussians/count", stats["count"], step)
                self.writer.add_scalar("gaussians/dead", stats["dead"], step)
                self.writer.add_scalar("gaussians/opacity_mean", stats["opacity_mean"], step)
                self.writer.add_scalar(
                    "train/lr_means", controller.optimizers["means"].param_groups[0]["lr"], step
                )
                self.writer.add_scalar("train/sh_degree", controller.active_sh_degree, step)
                self.writer.flush()

            if step in cfg.save_steps or step == max_steps - 1:
                controller.save_checkpoint(f"{self.ckpt_dir}/ckpt_{step}.pt", step=step)
                stats = {
                    "elapsed_time": time.time() - global_tic,
                    "num_GS": controller.num_gaussians,
                }
                with open(f"{self.stats_dir}/train_step{step:04d}.json", "w") as f:
                    json.dump(stats, f)

            if step in cfg.eval_steps:
                self.eval(step)

    @torch.no_grad()
    def eval(self, step: int):
        print(f"\n[Eval] Step {step}")
        controller = self.controller
        psnrs, ssims, lpipss = [], [], []
        for i, idx in enumerate(self.val_ids):
            camtoworlds, Ks, pixels = self.get_view(idx)
            height, width = pixels.shape[1:3]
            with controller.splat_lock:
                renders, _, _ = self.rasterize_splats(
                    camtoworlds, Ks, width, height, controller.active_sh_degree
                )
            colors = renders[..., :3].clamp(0.0, 1.0)

            canvas = torch.cat([pixels, colors], dim=2).squeeze(0).cpu().numpy()
            imageio.imwrite(
                f"{self.render_dir}/val_step{step}_{i:04d}.png",
                (canvas * 255).astype(np.uint8),
            )

            pixels_p = pixels.permute(0, 3, 1, 2)
            colors_p = colors.permute(0, 3, 1, 2)
            psnrs.append(self.psnr(colors_p, pixels_p))
            ssims.append(self.ssim(colors_p, pixels_p))
            lpipss.append(self.lpips(colors_p, pixels_p))

        stats = {
            "psnr": torch.stack(psnrs).mean().item(),
            "ssim": torch.stack(ssims).mean().item(),
            "lpips": torch.stack(lpipss).mean().item(),
            "num_GS": controller.num_gaussians,
        }
        print(f"  PSNR: {stats['psnr']:.3f}, SSIM: {stats['ssim']:.4f}, LPIPS: {stats['lpips']:.3f}, Number of GS: {stats['num_GS']}")
        with open(f"{self.stats_dir}/val_step{step:04d}.json", "w") as f:
            json.dump(stats, f)
        for k, v in stats.items():
            self.writer.add_scalar(f"val/{k}", v, step)
        self.writer.flush()


def main(cfg: Config):
    runner = MCMCRunner(cfg)
    runner.train()


def entrypoint():
    configs = {
        "mcmc": (
            "Gaussian Splatting with MCMC relocation and growth.",
            Config(),
        ),
        "mcmc-small": (
            "MCMC training capped at 500k Gaussians.",
            Config(mcmc=MCMCParams(max_cap=500_000, verbose=True)),
        ),
    }
    cfg = tyro.extras.overridable_config_cli(configs)
    cfg.adjust_steps(cfg.steps_scaler)
    main(cfg)


if __name__ == "__main__":
    entrypoint()
