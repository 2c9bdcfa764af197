from dataclasses import asdict, dataclass, fields

import yaml


@dataclass
class MCMCParams:
    """
    Optimization and population-management settings.

    Covers the per-parameter learning rates, the refinement window in which
    dead Gaussians are relocated and new ones are grown, and the constants of
    the position noise.
    """

    # ==================== Schedule ====================
    iterations: int = 30_000
    """Total number of training iterations. Also sets the position LR decay."""

    sh_degree: int = 3
    """Maximum spherical harmonics degree for view-dependent color."""

    sh_degree_interval: int = 1000
    """Steps between increasing the active SH degree."""

    # ==================== Learning Rates ====================
    means_lr: float = 1.6e-4
    """Learning rate for positions (multiplied by the scene scale)."""

    shs_lr: float = 2.5e-3
    """Learning rate for DC spherical harmonics. Higher orders use shs_lr / 20."""

    scaling_lr: float = 5e-3
    """Learning rate for log scales."""

    rotation_lr: float = 1e-3
    """Learning rate for quaternions."""

    opacity_lr: float = 5e-2
    """Learning rate for logit opacities."""

    adam_eps: float = 1e-15
    """Epsilon shared by every Adam optimizer."""

    # ==================== Refinement ====================
    start_refine: int = 500
    """Refinement runs strictly after this iteration."""

    stop_refine: int = 25_000
    """Refinement runs strictly before this iteration."""

    refine_every: int = 100
    """Relocate and grow every N iterations inside the refinement window."""

    max_cap: int = 1_000_000
    """Maximum number of Gaussians."""

    min_opacity: float = 0.005
    """Gaussians with opacity at or below this are 'dead' and get relocated."""

    growth_factor: float = 1.05
    """Population growth per refinement step, before the cap."""

    max_multiplicity: int = 51
    """Size of the binomial table. Group sizes are clamped below this."""

    # ==================== Noise ====================
    noise_lr: float = 5e5
    """Position noise multiplier on the current position learning rate."""

    noise_k: float = 100.0
    """Steepness of the opacity gate on the noise."""

    noise_x0: float = 0.995
    """Transparency (1 - opacity) at which the noise gate is half open."""

    # ==================== Runtime ====================
    device: str = "cuda"
    """Device holding the Gaussians and optimizer state."""

    verbose: bool = False
    """Print relocation and growth counts."""

    def validate(self):
        if self.iterations <= 0:
            raise ValueError(f"iterations must be positive, got {self.iterations}")
        if self.refine_every <= 0:
            raise ValueError(f"refine_every must be positive, got {self.refine_every}")
        if self.max_multiplicity < 2:
            raise ValueError(f"max_multiplicity must be >= 2, got {self.max_multiplicity}")
        if not 0.0 <= self.min_opacity < 1.0:
            raise ValueError(f"min_opacity must be in [0, 1), got {self.min_opacity}")
        if self.max_cap < 0:
            raise ValueError(f"max_cap must be non-negative, got {self.max_cap}")

    def adjust_steps(self, factor: float):
        """Scale training steps by factor."""
        self.iterations = int(self.iterations * factor)
        self.sh_degree_interval = max(1, int(self.sh_degree_interval * factor))
        self.start_refine = int(self.start_refine * factor)
        self.stop_refine = int(self.stop_refine * factor)
        self.refine_every = max(1, int(self.refine_every * factor))

    def save_yaml(self, path: str):
        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False)

    @classmethod
    def load_yaml(cls, path: str) -> "MCMCParams":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown MCMC options in {path}: {sorted(unknown)}")
        return cls(**data)
