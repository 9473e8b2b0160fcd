"""Visual SLAM building blocks: geometry, Lie groups, optimisation, mapping and stereo odometry parts."""

__version__ = "0.1.0"

__all__ = [
    "algorithm",
    "backend",
    "camera",
    "config",
    "curve_fitting",
    "dataset",
    "dense_mapping",
    "entities",
    "geometry",
    "imaging",
    "lie",
    "map",
    "pose_graph",
    "projection",
    "trajectory",
]