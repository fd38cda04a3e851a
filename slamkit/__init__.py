"""Visual SLAM building blocks: geometry, autodiff, matching, pose estimation and mapping."""

__version__ = "0.1.0"

__all__ = [
    "autodiff",
    "dense_mapping",
    "epipolar",
    "geometry",
    "hello",
    "icp",
    "jet",
    "matching",
    "pnp",
    "rgbd_mapping",
]