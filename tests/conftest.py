import logging

import numpy as np
import pytest
from loguru import logger


class PropagateHandler(logging.Handler):
    """Handler that propagates loguru records to standard logging."""

    def emit(self, record: logging.LogRecord) -> None:
        logging.getLogger(record.name).handle(record)


@pytest.fixture
def caplog(caplog):
    """Fixture to enable caplog to capture loguru logs."""
    handler_id = logger.add(PropagateHandler(), format="{message}")
    yield caplog
    logger.remove(handler_id)


def _sphere_image(shape, center, radius, light, ambient=0):
    """Lambertian sphere under orthographic projection, light given as (x, y, z) in row/col/viewer axes."""
    rows, cols = np.indices(shape)
    dx = rows - center[0]
    dy = cols - center[1]
    inside = dx**2 + dy**2 <= radius**2
    dz = np.sqrt(np.clip(radius**2 - dx**2 - dy**2, 0, None))
    normals = np.stack([dx, dy, dz], axis=-1) / radius
    shading = np.clip(normals @ np.asarray(light, dtype=float), 0, None)
    image = np.where(inside, ambient + shading, 0)
    return np.clip(np.round(image), 0, 255).astype(np.uint8)


@pytest.fixture
def make_sphere_image():
    return _sphere_image


@pytest.fixture
def light_matrix():
    return np.array([[1.0, 0.0, 1.0], [0.0, 1.0, 1.0], [-1.0, 0.0, 1.0]])


@pytest.fixture
def flat_images():
    # every pixel seen with intensities (100, 50, 30)
    shape = (20, 30)
    return [np.full(shape, v, dtype=np.uint8) for v in (100, 50, 30)]
