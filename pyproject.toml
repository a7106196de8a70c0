[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "llol"
version = "0.1.0"
description = "Lidar odometry building blocks: lidar projection model, IMU preintegration, sweep grids, depth panoramas and GICP matching"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["lidar", "odometry", "imu", "preintegration", "gicp", "slam", "robotics"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["llol"]

[tool.pytest.ini_options]
addopts = "-ra"
