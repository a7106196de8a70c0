"""Lidar odometry building blocks: lidar projection, rigid transforms, IMU preintegration, scans, sweeps, grids, depth panoramas, GICP matching and costs."""

__version__ = "0.1.0"