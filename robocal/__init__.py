"""Robot kinematic calibration: offsets, URDF updates, chain control, base calibration and feature finders."""

__version__ = "0.1.0"