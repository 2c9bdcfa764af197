import numpy as np
import pytest
import torch

from simple_trainer_mcmc import Config, camera_scene_scale, load_scene_npz


def _write_scene(path, num_cameras=3, **overrides):
    arrays = {
        "images": np.zeros((num_cameras, 4, 5, 3), dtype=np.uint8),
        "camtoworlds": np.tile(np.eye(4), (num_cameras, 1, 1)),
        "Ks": np.tile(np.eye(3), (num_cameras, 1, 1)),
        "points": np.random.rand(20, 3),
        "colors": np.random.rand(20, 3),
    }
    arrays.update(overrides)
    np.savez(path, **arrays)


def test_config_reports_lpips_with_alexnet_by_default():
    cfg = Config()
    assert cfg.lpips_net == "alex"
    cfg.adjust_steps(0.1)
    assert cfg.eval_steps == [700, 3000]
    assert cfg.mcmc.iterations == 3000


def test_load_scene(tmp_path):
    path = tmp_path / "scene.npz"
    _write_scene(path)
    scene = load_scene_npz(str(path))
    assert scene["images"].shape == (3, 4, 5, 3)
    assert scene["camtoworlds"].dtype == torch.float32
    assert scene["points"].dtype == torch.float32


def test_load_scene_rejects_bad_input(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_scene_npz(str(tmp_path / "missing.npz"))

    path = tmp_path / "scene.npz"
    _write_scene(path, Ks=np.tile(np.eye(3), (2, 1, 1)))
    with pytest.raises(ValueError):
        load_scene_npz(str(path))


def test_camera_scene_scale():
    camtoworlds = torch.eye(4).repeat(2, 1, 1)
    camtoworlds[0, :3, 3] = torch.tensor([1.0, 0.0, 0.0])
    camtoworlds[1, :3, 3] = torch.tensor([-1.0, 0.0, 0.0])
    assert camera_scene_scale(camtoworlds) == pytest.approx(1.0)
