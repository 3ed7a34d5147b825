"""I/O utilities: encoded depth images, run-length label streams, PLY writer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from voxfusion.core.errors import ConfigError, DecodeError

logger = logging.getLogger(__name__)

DEPTH_SCALE = 1000.0  # millimetres per metre
HEADER_FLOATS = 3 + 16
HEADER_BYTES = HEADER_FLOATS * 4
RLE_RECORD = np.dtype([("value", "<u4"), ("count", "<u4")])


# ── Encoded depth images ─────────────────────────────────────────────

def decode_depth_bytes(data: bytes, width: int, height: int) -> np.ndarray:
    """Decode raw [low, high] pixel bytes into an (height, width) depth map in meters.

    Each 16-bit word is rotated left by 13 bits before being read as
    millimetres. No plausibility filtering is applied here.
    """
    if width <= 0 or height <= 0:
        raise ConfigError(f"Frame size must be positive, got {width}x{height}")
    n = width * height
    if len(data) < n * 2:
        raise DecodeError(f"Depth buffer has {len(data)} bytes, need {n * 2} for {width}x{height}")

    words = np.frombuffer(data, dtype="<u2", count=n).astype(np.uint32)
    millimetres = ((words << 13) | (words >> 3)) & 0xFFFF
    return (millimetres.astype(np.float32) / np.float32(DEPTH_SCALE)).reshape(height, width)


def encode_depth_bytes(depth_m: np.ndarray) -> bytes:
    """Inverse of decode_depth_bytes: meters -> rotated 16-bit words as [low, high] bytes."""
    mm = np.clip(np.rint(np.asarray(depth_m, dtype=np.float64) * DEPTH_SCALE), 0, 0xFFFF).astype(np.uint32)
    words = ((mm >> 13) | (mm << 3)) & 0xFFFF
    return words.astype("<u2").tobytes()


def read_depth_image(path: Path, width: int | None = None, height: int | None = None) -> np.ndarray:
    """Read an encoded 16-bit depth PNG and decode it to meters.

    OpenCV only supplies the raw pixel words; the depth encoding itself is
    handled by decode_depth_bytes.
    """
    import cv2

    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise DecodeError(f"Cannot read depth image: {path}")

    if img.dtype == np.uint16 and img.ndim == 2:
        if width is None or height is None:
            height, width = img.shape
        raw = img.astype("<u2").tobytes()
    else:
        if width is None or height is None:
            raise DecodeError(f"{path} is not a single-channel 16-bit image; pass width/height explicitly")
        raw = np.ascontiguousarray(img).tobytes()
    return decode_depth_bytes(raw, width, height)


def write_depth_image(path: Path, depth_m: np.ndarray) -> Path:
    """Write a (H, W) metric depth map as an encoded 16-bit PNG."""
    import cv2

    depth_m = np.asarray(depth_m)
    words = np.frombuffer(encode_depth_bytes(depth_m), dtype="<u2").reshape(depth_m.shape)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(path), words.astype(np.uint16)):
        raise OSError(f"Failed to write depth image {path}")
    return path


# ── Run-length encoded ground-truth label streams ────────────────────

@dataclass
class LabelVolume:
    """Decoded ground-truth stream: grid origin, camera pose and dense labels."""

    vox_origin: np.ndarray
    cam_pose: np.ndarray
    occupancy: np.ndarray
    segmentation: np.ndarray


def decode_label_stream(data: bytes, class_map: list[int] | np.ndarray, num_voxels: int) -> LabelVolume:
    """Decode ``origin[3] | pose[16] | (value, count)*`` into dense volumes.

    Runs fill voxels 0..num_voxels-1 in scan order. A trailing partial record
    is ignored. Runs that would write past ``num_voxels``, a total that falls
    short of it, or a value outside ``class_map`` raise DecodeError before
    any output buffer is filled.
    """
    class_map = np.asarray(class_map, dtype=np.int64).reshape(-1)
    if class_map.size == 0:
        raise ConfigError("class_map is empty")
    if num_voxels <= 0:
        raise ConfigError(f"num_voxels must be positive, got {num_voxels}")
    if len(data) < HEADER_BYTES:
        raise DecodeError(f"Label stream has {len(data)} bytes, header alone needs {HEADER_BYTES}")

    header = np.frombuffer(data, dtype="<f4", count=HEADER_FLOATS)
    vox_origin = header[:3].astype(np.float32)
    cam_pose = header[3:].astype(np.float32).reshape(4, 4)

    body = memoryview(data)[HEADER_BYTES:]
    n_records, tail = divmod(len(body), RLE_RECORD.itemsize)
    if tail:
        logger.warning(f"Ignoring {tail} trailing bytes (partial RLE record) after {n_records} records")
    records = np.frombuffer(body, dtype=RLE_RECORD, count=n_records)
    values = records["value"].astype(np.int64)
    counts = records["count"].astype(np.int64)

    ends = np.cumsum(counts)
    if n_records and ends[-1] > num_voxels:
        bad = int(np.argmax(ends > num_voxels))
        raise DecodeError(
            f"RLE record {bad} (value={values[bad]}, count={counts[bad]}) writes past "
            f"the end of a {num_voxels}-voxel volume"
        )
    total = int(ends[-1]) if n_records else 0
    if total != num_voxels:
        raise DecodeError(f"RLE counts sum to {total}, expected {num_voxels}")

    used = values[counts > 0]
    if used.size and used.max() >= class_map.size:
        raise DecodeError(f"Label value {int(used.max())} outside class map of size {class_map.size}")

    raw = np.repeat(values, counts)
    return LabelVolume(
        vox_origin=vox_origin,
        cam_pose=cam_pose,
        occupancy=(raw > 0).astype(np.float32),
        segmentation=class_map[raw].astype(np.int32),
    )


def encode_label_stream(vox_origin: np.ndarray, cam_pose: np.ndarray, raw_labels: np.ndarray) -> bytes:
    """Run-length encode raw per-voxel labels (scan order) with origin/pose header."""
    header = np.concatenate([
        np.asarray(vox_origin, dtype=np.float64).reshape(3),
        np.asarray(cam_pose, dtype=np.float64).reshape(16),
    ]).astype("<f4")

    raw = np.asarray(raw_labels).reshape(-1).astype(np.uint32)
    if raw.size:
        starts = np.flatnonzero(np.r_[True, raw[1:] != raw[:-1]])
        counts = np.diff(np.r_[starts, raw.size])
    else:
        starts = counts = np.zeros(0, dtype=np.int64)

    records = np.empty(len(starts), dtype=RLE_RECORD)
    records["value"] = raw[starts]
    records["count"] = counts
    return header.tobytes() + records.tobytes()


def read_label_stream(path: Path, class_map: list[int] | np.ndarray, num_voxels: int) -> LabelVolume:
    """Read and decode a ground-truth ``.bin`` label file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Label stream not found: {path}")
    try:
        return decode_label_stream(path.read_bytes(), class_map, num_voxels)
    except DecodeError as exc:
        raise DecodeError(f"{path.name}: {exc}") from exc


# ── PLY output ───────────────────────────────────────────────────────

def write_ply_points(path: Path, points: np.ndarray, scalars: np.ndarray | None = None, scalar_name: str = "tsdf") -> Path:
    """Write points (and an optional per-point float property) as binary PLY."""
    points = np.asarray(points, dtype=np.float32).reshape(-1, 3)
    n = len(points)
    fields = [("x", "<f4"), ("y", "<f4"), ("z", "<f4")]
    if scalars is not None:
        fields.append((scalar_name, "<f4"))

    header = (
        "ply\n"
        "format binary_little_endian 1.0\n"
        f"element vertex {n}\n"
        + "".join(f"property float {name}\n" for name, _ in fields)
        + "end_header\n"
    )
    vertices = np.empty(n, dtype=fields)
    vertices["x"], vertices["y"], vertices["z"] = points[:, 0], points[:, 1], points[:, 2]
    if scalars is not None:
        vertices[scalar_name] = np.asarray(scalars, dtype=np.float32).reshape(-1)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(header.encode())
        f.write(vertices.tobytes())
    return path


def read_ply_header(path: Path) -> dict[str, object]:
    """Parse vertex count and property names from a PLY header."""
    with open(path, "rb") as f:
        if f.readline().strip() != b"ply":
            raise DecodeError(f"{path} is not a PLY file")
        n_vertices = 0
        properties: list[str] = []
        fmt = ""
        while True:
            line = f.readline()
            if not line:
                raise DecodeError(f"{path}: missing end_header")
            parts = line.decode("ascii").split()
            if not parts:
                continue
            if parts[0] == "end_header":
                break
            if parts[0] == "format":
                fmt = parts[1]
            elif parts[:2] == ["element", "vertex"]:
                n_vertices = int(parts[2])
            elif parts[0] == "property":
                properties.append(parts[-1])
        payload = f.read()
    return {"format": fmt, "num_vertices": n_vertices, "properties": properties, "payload_bytes": len(payload)}

