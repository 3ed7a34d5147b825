"""Tests for depth and label-stream codecs."""

import logging
import struct
from pathlib import Path

import numpy as np
import pytest

from voxfusion.core.errors import ConfigError, DecodeError
from voxfusion.utils.io import (
    HEADER_BYTES,
    decode_depth_bytes,
    decode_label_stream,
    encode_depth_bytes,
    encode_label_stream,
    read_depth_image,
    read_label_stream,
    read_ply_header,
    write_depth_image,
    write_ply_points,
)


class TestDepthDecode:
    def test_known_words(self):
        # [low, high] = [0x08, 0x00] -> word 0x0008 -> rotl13 -> 1 mm
        # [low, high] = [0x01, 0x00] -> word 0x0001 -> rotl13 -> 8192 mm
        depth = decode_depth_bytes(b"\x08\x00\x01\x00", width=2, height=1)
        np.testing.assert_allclose(depth, [[0.001, 8.192]], rtol=1e-6)

    def test_high_byte_carries_low_bits(self):
        # 1000 mm is stored as rotl3(1000) = 8000 = 0x1F40
        depth = decode_depth_bytes(bytes([0x40, 0x1F]), width=1, height=1)
        assert depth[0, 0] == pytest.approx(1.0)

    @pytest.mark.parametrize("raw_mm", [0, 1, 7, 8, 1234, 8191, 8192, 40000, 65535])
    def test_round_trip(self, raw_mm):
        data = encode_depth_bytes(np.array([[raw_mm / 1000.0]]))
        assert len(data) == 2
        depth = decode_depth_bytes(data, width=1, height=1)
        assert depth[0, 0] == pytest.approx(raw_mm / 1000.0, rel=1e-6, abs=1e-9)

    def test_round_trip_frame(self):
        rng = np.random.default_rng(7)
        raw = rng.integers(0, 65536, size=(6, 5))
        depth = decode_depth_bytes(encode_depth_bytes(raw / 1000.0), width=5, height=6)
        assert depth.shape == (6, 5)
        assert depth.dtype == np.float32
        np.testing.assert_allclose(depth, raw / 1000.0, rtol=1e-6)

    def test_short_buffer(self):
        with pytest.raises(DecodeError):
            decode_depth_bytes(b"\x00" * 7, width=2, height=2)

    def test_extra_bytes_ignored(self):
        depth = decode_depth_bytes(encode_depth_bytes(np.ones((2, 2))) + b"\xff\xff", width=2, height=2)
        np.testing.assert_allclose(depth, 1.0)

    def test_invalid_size(self):
        with pytest.raises(ConfigError):
            decode_depth_bytes(b"", width=0, height=4)


class TestDepthImage:
    def test_png_round_trip(self, tmp_path: Path):
        depth = np.array([[0.0, 0.5, 1.25], [2.0, 3.333, 9.999]])
        path = write_depth_image(tmp_path / "depth.png", depth)
        decoded = read_depth_image(path, width=3, height=2)
        np.testing.assert_allclose(decoded, np.round(depth, 3), atol=1e-6)

    def test_size_inferred_from_image(self, tmp_path: Path):
        path = write_depth_image(tmp_path / "depth.png", np.full((4, 6), 1.5))
        assert read_depth_image(path).shape == (4, 6)

    def test_unreadable_file(self, tmp_path: Path):
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"not an image")
        with pytest.raises(DecodeError):
            read_depth_image(bad, 4, 4)


def _header(origin=(0.5, -1.0, 2.0), pose=None) -> bytes:
    pose = np.eye(4) if pose is None else pose
    return struct.pack("<19f", *origin, *np.asarray(pose, dtype=float).reshape(16))


def _records(*pairs) -> bytes:
    return b"".join(struct.pack("<II", value, count) for value, count in pairs)


class TestLabelStream:
    def test_layout(self):
        pose = np.arange(16, dtype=float).reshape(4, 4)
        data = _header(pose=pose) + _records((0, 3), (5, 2))
        labels = decode_label_stream(data, class_map=[0, 1, 1, 2, 2, 7], num_voxels=5)

        np.testing.assert_allclose(labels.vox_origin, [0.5, -1.0, 2.0])
        np.testing.assert_allclose(labels.cam_pose, pose)
        np.testing.assert_array_equal(labels.occupancy, [0, 0, 0, 1, 1])
        np.testing.assert_array_equal(labels.segmentation, [0, 0, 0, 7, 7])
        assert labels.occupancy.dtype == np.float32

    def test_zero_count_runs(self):
        data = _header() + _records((1, 0), (2, 4), (3, 0))
        labels = decode_label_stream(data, class_map=[0, 1, 2, 3], num_voxels=4)
        np.testing.assert_array_equal(labels.segmentation, [2, 2, 2, 2])

    def test_short_total(self):
        data = _header() + _records((0, 3), (1, 1))
        with pytest.raises(DecodeError, match="sum to 4"):
            decode_label_stream(data, class_map=[0, 1], num_voxels=5)

    def test_overrun(self):
        data = _header() + _records((0, 3), (1, 3))
        with pytest.raises(DecodeError, match="past the end"):
            decode_label_stream(data, class_map=[0, 1], num_voxels=5)

    def test_empty_body(self):
        with pytest.raises(DecodeError):
            decode_label_stream(_header(), class_map=[0], num_voxels=1)

    def test_trailing_partial_record_ignored(self, caplog):
        data = _header() + _records((1, 2)) + struct.pack("<I", 9)
        with caplog.at_level(logging.WARNING):
            labels = decode_label_stream(data, class_map=[0, 1], num_voxels=2)
        np.testing.assert_array_equal(labels.occupancy, [1, 1])
        assert "partial RLE record" in caplog.text

    def test_truncated_header(self):
        with pytest.raises(DecodeError):
            decode_label_stream(b"\x00" * (HEADER_BYTES - 1), class_map=[0], num_voxels=1)

    def test_value_outside_class_map(self):
        data = _header() + _records((4, 2))
        with pytest.raises(DecodeError, match="class map"):
            decode_label_stream(data, class_map=[0, 1, 2], num_voxels=2)

    def test_empty_class_map(self):
        with pytest.raises(ConfigError):
            decode_label_stream(_header() + _records((0, 1)), class_map=[], num_voxels=1)

    def test_encode_produces_runs(self):
        raw = np.array([0, 0, 0, 4, 4, 1, 0])
        data = encode_label_stream([1.0, 2.0, 3.0], np.eye(4), raw)
        assert len(data) == HEADER_BYTES + 4 * 8
        body = np.frombuffer(data[HEADER_BYTES:], dtype="<u4").reshape(-1, 2)
        np.testing.assert_array_equal(body, [[0, 3], [4, 2], [1, 1], [0, 1]])

        labels = decode_label_stream(data, class_map=list(range(5)), num_voxels=raw.size)
        np.testing.assert_array_equal(labels.segmentation, raw)

    def test_read_from_file(self, tmp_path: Path):
        path = tmp_path / "scene.bin"
        path.write_bytes(_header() + _records((0, 2), (3, 2)))
        labels = read_label_stream(path, class_map=[0, 1, 2, 11], num_voxels=4)
        np.testing.assert_array_equal(labels.segmentation, [0, 0, 11, 11])

    def test_read_error_names_file(self, tmp_path: Path):
        path = tmp_path / "broken.bin"
        path.write_bytes(_header() + _records((0, 1)))
        with pytest.raises(DecodeError, match="broken.bin"):
            read_label_stream(path, class_map=[0], num_voxels=4)

    def test_read_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            read_label_stream(tmp_path / "nope.bin", class_map=[0], num_voxels=1)


class TestPly:
    def test_write_points_with_scalar(self, tmp_path: Path):
        points = np.array([[0.0, 0.0, 0.0], [1.0, 2.0, 3.0]])
        path = write_ply_points(tmp_path / "pts.ply", points, np.array([0.1, -0.2]))
        header = read_ply_header(path)
        assert header["format"] == "binary_little_endian"
        assert header["num_vertices"] == 2
        assert header["properties"] == ["x", "y", "z", "tsdf"]
        assert header["payload_bytes"] == 2 * 16

    def test_not_a_ply(self, tmp_path: Path):
        path = tmp_path / "x.ply"
        path.write_bytes(b"solid\n")
        with pytest.raises(DecodeError):
            read_ply_header(path)
