from typing import Any, Dict, List, Optional, Tuple

import torch
from torch import Tensor


class OptimizerStateSync:
    """Keeps per-row optimizer accumulators in step with resized parameters.

    Every learnable array is registered once together with the optimizer that
    owns it and receives an integer handle. All later lookups go through the
    handle: the parameter behind it may be replaced wholesale on growth, and
    the accumulator record is moved to the replacement so nothing is left
    behind under the old tensor.

    Each optimizer is expected to hold a single parameter group with a single
    parameter, the layout used for the Gaussian parameters.
    """

    def __init__(self):
        self._slots: List[Tuple[str, torch.optim.Optimizer]] = []

    def register(self, name: str, optimizer: torch.optim.Optimizer) -> int:
        if len(optimizer.param_groups) != 1 or len(optimizer.param_groups[0]["params"]) != 1:
            raise ValueError(
                f"Optimizer for {name} must hold exactly one parameter, "
                f"got {[len(g['params']) for g in optimizer.param_groups]}"
            )
        self._slots.append((name, optimizer))
        return len(self._slots) - 1

    def name(self, handle: int) -> str:
        return self._slots[handle][0]

    def optimizer(self, handle: int) -> torch.optim.Optimizer:
        return self._slots[handle][1]

    def param(self, handle: int) -> Tensor:
        return self.optimizer(handle).param_groups[0]["params"][0]

    def state(self, handle: int) -> Optional[Dict[str, Any]]:
        """Accumulator record of the current parameter, or None before the first step."""
        optimizer = self.optimizer(handle)
        # optimizer.state is a defaultdict; avoid creating empty records
        state = optimizer.state.get(self.param(handle))
        return state if state else None

    @torch.no_grad()
    def reset_rows(self, handle: int, rows: Tensor):
        """Zero every per-row accumulator at ``rows``. No-op without state."""
        state = self.state(handle)
        if state is None:
            return
        for key, v in state.items():
            if key == "step" or not isinstance(v, Tensor) or v.dim() == 0:
                continue
            v[rows] = 0

    @torch.no_grad()
    def extend_state(self, handle: int, n_new: int) -> Optional[Dict[str, Any]]:
        """Build the accumulator record for the parameter grown by ``n_new`` rows.

        The current record is left untouched so that every array of the
        population can be prepared before any of them is swapped in.
        """
        state = self.state(handle)
        if state is None:
            return None
        new_state = {}
        for key, v in state.items():
            if key == "step" or not isinstance(v, Tensor) or v.dim() == 0:
                new_state[key] = v
                continue
            zeros = torch.zeros((n_new, *v.shape[1:]), dtype=v.dtype, device=v.device)
            new_state[key] = torch.cat([v, zeros])
        return new_state

    def swap(self, handle: int, new_param: Tensor, new_state: Optional[Dict[str, Any]]):
        """Replace the registered parameter and rekey its accumulator record."""
        optimizer = self.optimizer(handle)
        old_param = self.param(handle)
        optimizer.state.pop(old_param, None)
        optimizer.param_groups[0]["params"] = [new_param]
        if new_state is not None:
            optimizer.state[new_param] = new_state

    def grow(self, handle: int, new_param: Tensor, n_new: int):
        """Swap in ``new_param`` (old rows plus ``n_new`` appended) with zero-extended state."""
        expected = self.param(handle).shape[0] + n_new
        if new_param.shape[0] != expected:
            raise ValueError(
                f"{self.name(handle)}: expected {expected} rows, got {new_param.shape[0]}"
            )
        self.swap(handle, new_param, self.extend_state(handle, n_new))
