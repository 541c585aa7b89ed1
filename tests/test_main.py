import sys

import numpy as np
import pytest
from loguru import logger

from main import main
from psm.utils import load_calibration, load_image, load_light_vectors, save_image, save_light_vectors

LIGHTS = np.array([[0.5, 0.0, 1.0], [0.0, 0.5, 1.0], [-0.4, -0.3, 1.0]])


@pytest.fixture(autouse=True)
def restore_log_sink():
    """main() re-binds the loguru sink to the captured stderr of the running test."""
    yield
    logger.remove()
    logger.add(sys.__stderr__)


@pytest.fixture
def dataset(tmp_path, make_sphere_image):
    """Three sphere images and three object images lit by the same lights."""
    lights = 220 * LIGHTS / np.linalg.norm(LIGHTS, axis=1, keepdims=True)
    spheres, objects = [], []
    for i, light in enumerate(lights):
        sphere = str(tmp_path / f"sphere{i + 1}.pgm")
        save_image(sphere, make_sphere_image((81, 81), (40, 40), 30, light, ambient=0))
        spheres.append(sphere)
        obj = str(tmp_path / f"object{i + 1}.pgm")
        save_image(obj, make_sphere_image((64, 70), (30, 36), 22, 0.8 * light, ambient=0))
        objects.append(obj)
    return spheres, objects


def test_calibrate(tmp_path, dataset):
    spheres, _ = dataset
    params = tmp_path / "params.txt"
    binary = tmp_path / "binary.pgm"

    assert main(["calibrate", spheres[0], "0", str(params), "--binary", str(binary)]) == 0

    center_row, center_col, radius = load_calibration(str(params))
    assert abs(center_row - 40) <= 2 and abs(center_col - 40) <= 2
    assert 25 <= radius <= 30
    assert set(np.unique(load_image(str(binary)))) <= {0, 255}


def test_lights_then_normals(tmp_path, dataset):
    spheres, objects = dataset
    params = tmp_path / "params.txt"
    params.write_text("40 40 30\n")
    directions = tmp_path / "directions.txt"
    normals = tmp_path / "normals.pgm"
    albedo = tmp_path / "albedo.pgm"
    preview = tmp_path / "preview.png"

    assert main(["lights", str(params), *spheres, str(directions)]) == 0
    assert load_light_vectors(str(directions)).shape == (3, 3)

    argv = ["normals", str(directions), *objects, "5", "10", str(normals), str(albedo), "--preview", str(preview)]
    assert main(argv) == 0

    albedo_image = load_image(str(albedo))
    assert albedo_image.max() == 255
    assert albedo_image[0, 0] == 0
    normals_image = load_image(str(normals))
    assert normals_image.shape == (64, 70)
    assert normals_image[30, 35] == 0
    assert preview.exists()


def test_run(tmp_path, dataset):
    spheres, objects = dataset
    out = tmp_path / "out"

    argv = ["run", "--sphere-images", *spheres, "--object-images", *objects,
            "--sphere-threshold", "0", "--threshold", "10", "--step", "4", "--output-dir", str(out)]
    assert main(argv) == 0

    for name in ("sphere_params.txt", "light_directions.txt", "normals.pgm", "albedo.pgm", "preview.png"):
        assert (out / name).exists()


def test_degenerate_lights_abort_without_output(tmp_path, dataset, capsys):
    _, objects = dataset
    directions = tmp_path / "directions.txt"
    save_light_vectors(str(directions), np.ones((3, 3)))
    normals = tmp_path / "normals.pgm"
    albedo = tmp_path / "albedo.pgm"

    assert main(["normals", str(directions), *objects, "5", "10", str(normals), str(albedo)]) == 1

    assert "DegenerateLightingError" in capsys.readouterr().out
    assert not normals.exists()
    assert not albedo.exists()


def test_dimension_mismatch_aborts(tmp_path, dataset, capsys):
    _, objects = dataset
    directions = tmp_path / "directions.txt"
    save_light_vectors(str(directions), np.eye(3))
    small = str(tmp_path / "small.pgm")
    save_image(small, np.full((10, 10), 100, dtype=np.uint8))
    normals = tmp_path / "normals.pgm"

    assert main(["normals", str(directions), objects[0], objects[1], small, "5", "10",
                 str(normals), str(tmp_path / "albedo.pgm")]) == 1

    assert "DimensionMismatchError" in capsys.readouterr().out
    assert not normals.exists()


def test_missing_image(tmp_path, capsys):
    assert main(["calibrate", str(tmp_path / "nope.pgm"), "50", str(tmp_path / "params.txt")]) == 1
    assert "Can't open file" in capsys.readouterr().out


def test_run_with_degenerate_lights_leaves_no_files(tmp_path, dataset, capsys):
    spheres, objects = dataset
    out = tmp_path / "out"

    # the same sphere image three times gives three identical light vectors
    argv = ["run", "--sphere-images", spheres[0], spheres[0], spheres[0], "--object-images", *objects,
            "--sphere-threshold", "0", "--threshold", "10", "--output-dir", str(out)]
    assert main(argv) == 1

    assert "DegenerateLightingError" in capsys.readouterr().out
    assert not out.exists() or not any(out.iterdir())
