# slamkit

Building blocks for visual SLAM in plain Python and NumPy:

- **`slamkit.jet`**: first-order dual numbers (`Jet`) with arithmetic,
  powers and comparisons, for exact derivatives.
- **`slamkit.autodiff`**: Jacobians of vector-valued functions of one or
  more parameter blocks, built on `Jet` (`differentiate`).
- **`slamkit.geometry`**: rotations and rigid motions. It has `hat`/`vee`,
  angle–axis, quaternions `(x, y, z, w)`, ZYX Euler angles, and the Lie
  groups `SO3` and `SE3` with `exp`/`log`.
- **`slamkit.matching`**: brute-force Hamming matching of binary
  descriptors (`match_descriptors`). `filter_matches` keeps the matches
  whose distance is at most `max(2 * min_distance, 30)`.
- **`slamkit.epipolar`**: fundamental matrices (normalised 8-point),
  essential matrices and RANSAC homographies. It also decomposes essential
  matrices, recovers the pose with a cheirality check and triangulates
  points.
- **`slamkit.icp`**: 3D–3D alignment by SVD (`icp_svd`) and Gauss–Newton
  pose refinement (`refine_pose`).
- **`slamkit.pnp`**: 3D–2D pose by DLT (`solve_pnp_dlt`) and
  Levenberg–Marquardt refinement of the reprojection error
  (`bundle_adjustment`).
- **`slamkit.rgbd_mapping`**: back-projects RGB-D images into point clouds.
  It also provides statistical outlier removal, a voxel filter, binary PCD
  output and a voxel occupancy map (`OccupancyMap`).
- **`slamkit.dense_mapping`**: monocular dense depth estimation by
  epipolar search, NCC scoring and Gaussian depth fusion.
- **`slamkit.hello`**: a greeting that checks the install.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Using the library

Derivatives with dual numbers:

```python
from slamkit.jet import Jet

x = Jet.variable(10.0, 0, 1)   # value 10, derivative slot 0 of 1
y = x * x
print(y.a)   # 100.0
print(y.v)   # [20.]
```

Jacobians of a function of several parameter blocks:

```python
from slamkit.autodiff import differentiate

values, (j_p, j_q) = differentiate(
    lambda p, q: [p[0] * q[0], p[0] + q[1]], [[2.0], [3.0, 4.0]], 2
)
```

Rotations and rigid motions:

```python
import math
import numpy as np
from slamkit.geometry import SO3, SE3, angle_axis_to_matrix

R = angle_axis_to_matrix(math.pi / 2, np.array([0.0, 0.0, 1.0]))
so3 = SO3(R)
print(so3.log())                 # approximately [0, 0, pi/2]

T = SE3(R, np.array([1.0, 0.0, 0.0]))
print(T.act(np.array([1.0, 0.0, 0.0])))
print(SE3.exp(T.log()).matrix())
```

## Command-line tools

```
slamkit-hello                                   # prints a greeting
slamkit-rgbd-mapping join                       # RGB-D frames -> map.pcd
slamkit-rgbd-mapping pointcloud                 # with outlier and voxel filtering
slamkit-rgbd-mapping octomap                    # occupancy map -> octomap.pcd
slamkit-dense-mapping DATASET_DIR               # monocular dense depth -> depth.png
```

`slamkit-rgbd-mapping` reads `pose.txt` from the data directory. The file
holds one line `tx ty tz qx qy qz qw` per frame. It also reads
`color/<i>.png` and `depth/<i>.pgm` for frames `1..N`. The data directory
is `.` in `join` mode and `data` in the other modes. `--data` sets another
directory, `--frames` the number of frames (5 by default) and `--output`
the output file. The `pointcloud` and `octomap` modes drop raw depths of
7000 and above.

`slamkit-dense-mapping` reads
`first_200_frames_traj_over_table_input_sequence.txt` from the dataset
directory. Each line of that file is `image tx ty tz qx qy qz qw`, and the
images are in `images/`. It estimates the depth map of the first frame and
writes it to `depth.png`.

## What it does not do

- It has no feature detector. `slamkit.matching` matches descriptors that
  you supply, and the estimation functions take pixel coordinates that you
  supply.
- Nothing is shown on screen. Results are printed or written to files.
- `Jet` supports arithmetic, powers and comparisons only. There are no
  elementary functions such as `exp` or `sin` for jets.
- There is no curve-fitting tool or solver for general least-squares
  problems.
- The occupancy map is saved as a PCD file of occupied voxel centres, not
  in an octree file format.