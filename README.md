# llol

Building blocks for lidar odometry, written with NumPy.

A spinning-lidar sweep is assembled from partial scans. Each scan is scored
on a coarse grid, and the sweep is fused into a depth panorama. Grid cells are
then matched against the panorama for generalized ICP. An IMU queue,
state integration and preintegration provide the motion prior.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Conventions

- Sizes are `(width, height)`.
- Pixels are `(x, y)`, so the column comes first.
- Rectangles and windows are `(x, y, w, h)`.
- Column ranges are `range` objects or `(start, stop)` pairs.
- Invalid input and broken invariants raise `ValueError`, for example a
  non-positive `dt`, time going backwards, or a scan that does not fit the
  sweep.
- IMU readings that contain NaN are replaced by zeros. A warning is logged
  through the standard `logging` module.

## Modules

- `llol.lidar`
  - `LidarModel` is the spherical projection between points and pixels. It
    provides `forward`, `backward`, `to_row`, `to_col`, `row_inside` and
    `col_inside`.
  - `SinCos` holds a precomputed sine and cosine.
- `llol.match`
  - `MeanCovar` keeps the running mean and covariance of 3d points.
  - `PointMatch` is the match between a grid cell and a panorama window, with
    `calc_sqrt_info` for the square-root information matrix `U`.
  - The helpers `hat3` and `matrix_sqrt_utu`.
- `llol.transforms`
  - `SO3` provides `exp`, `log`, `inverse`, `interpolate`, `from_two_vectors`
    and `quaternion`.
  - `SE3` provides `inverse` and `matrix3x4`.
  - Both compose with `*`, and both apply to 3-vectors with `*`.
- `llol.imu`
  - The data types `ImuData`, `ImuBias` (Kalman-style bias updates), `ImuNoise`
    (discrete-time noise), `ImuQueue` (a bounded buffer) and `NavState`.
  - `ImuPreintegration` preintegrates readings between two times.
  - The functions `integrate_rot`, `integrate_euler`, `integrate_state` and
    `imu_index_after_time`.
- `llol.scan`
  - `ScanBase` and `LidarScan` store scans as structured arrays with the
    fields `x`, `y`, `z`, `range_raw` and `intensity`.
  - `LidarScan` provides `calc_score` and `calc_mean_covar`.
  - `make_test_mat` and `make_test_scan` build a synthetic scan of a unit
    sphere.
- `llol.traj`
  - `Trajectory` predicts states from IMU data with `predict_new` and
    `predict_full`.
  - It moves states to a new panorama frame with `move_frame`.
  - It updates the IMU bias with `estimate_bias`.
  - It gives the lidar pose with `tf_pano_lidar` and `tf_odom_lidar`.
- `llol.sweep`
  - `LidarSweep` is a full 360° sweep filled by `add(scan)`.
  - `interp(traj)` sets per-column poses.
  - `make_test_sweep` builds a synthetic sweep.
- `llol.grid`
  - `SweepGrid` scores cells (`score`) and selects candidate cells with
    thresholds and non-minimum suppression (`filter`).
  - `add` runs both steps.
  - `interp` sets per-column poses.
  - `draw_filter`, `draw_match` and `draw_curve_var` return NumPy images.
- `llol.pano`
  - `DepthPano` is a range panorama with per-pixel evidence counts.
  - It fuses sweeps with `add` and decides on re-rendering with
    `should_render`.
  - It re-renders from a new viewpoint with `render`.
  - It provides window statistics with `calc_mean_covar`.
- `llol.gicp`
  - `GicpSolver` matches the grid's candidate cells to panorama windows.
- `llol.cost`
  - `GicpCostRigid` computes residuals and the Jacobian for a rigid
    correction, with an optional IMU preintegration term.
  - `update_traj` applies the error state to a trajectory.

## Examples

Match a synthetic scan against a panorama:

```python
from llol.scan import make_test_scan
from llol.grid import SweepGrid
from llol.pano import DepthPano
from llol.gicp import GicpSolver

scan = make_test_scan((1024, 64))
grid = SweepGrid(scan.size())
grid.add(scan)

pano = DepthPano((1024, 256))
pano.dbuf[..., 0] = 512  # every pixel at range 1.0
num_matches = GicpSolver().match(grid, pano)
```

Preintegrate IMU readings:

```python
from llol.imu import ImuData, ImuPreintegration, ImuQueue

imuq = ImuQueue()
for i in range(5):
    imuq.add(ImuData(time=float(i)))

preint = ImuPreintegration()
preint.compute(imuq, 0.5, 3.5)  # preint.n == 4, preint.duration == 3.0
```

## What it does not do

The package gives the pieces of an odometry pipeline, not the pipeline
itself.

- There is no command-line program and no driver that reads lidar or IMU data.
- There is no nonlinear least-squares solver. `GicpCostRigid.compute` returns
  residuals and a Jacobian for you to minimise yourself.
- There is no visualisation. The `draw_*` methods return arrays only.
- All work runs on a single thread in plain Python and NumPy.