import os

import cv2
import numpy as np
from loguru import logger
from matplotlib.figure import Figure


def load_image(path):
    """
    读取 8 位灰度图像 (PGM/PNG/...)，返回 uint8 数组，索引顺序为 [row, col]
    """
    img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise FileNotFoundError(f"Can't open file {path}")
    logger.debug(f"Loaded {path} with shape {img.shape}")
    return img


def load_images(paths):
    return [load_image(p) for p in paths]


def save_image(path, image):
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    if not cv2.imwrite(path, np.asarray(image, dtype=np.uint8)):
        raise OSError(f"Can't write to file {path}")
    logger.debug(f"Wrote {path}")


def save_calibration(path, calibration):
    """
    标定文件格式: 一行 "center_row center_col radius"
    """
    center_row, center_col, radius = calibration
    with open(path, 'w') as f:
        f.write(f"{int(center_row)} {int(center_col)} {int(radius)}\n")


def load_calibration(path):
    values = np.loadtxt(path, ndmin=1)
    if values.shape != (3,):
        raise ValueError(f"{path}: expected 'center_row center_col radius', got {values.size} fields")
    center_row, center_col, radius = (int(v) for v in values)
    return center_row, center_col, radius


def save_light_vectors(path, lights):
    """
    光源文件格式: 三行 "x y z"，x 沿行方向，y 沿列方向，z 指向相机。
    第 i 行对应第 i 张物体图像。
    """
    lights = np.asarray(lights, dtype=np.float64)
    if lights.shape != (3, 3):
        raise ValueError(f"Expected 3 light vectors of 3 components, got shape {lights.shape}")
    np.savetxt(path, lights, fmt="%.10g")


def load_light_vectors(path):
    lights = np.loadtxt(path, ndmin=2)
    if lights.shape != (3, 3):
        raise ValueError(f"{path}: expected 3 lines of 'x y z', got shape {lights.shape}")
    return lights


def save_preview(normals_image, albedo_image, path):
    """法线针图与反射率图并排保存，便于快速检查结果"""
    fig = Figure(figsize=(10, 5))
    axes = fig.subplots(1, 2)
    for ax, img, title in zip(axes, (normals_image, albedo_image), ("Normals", "Albedo")):
        ax.imshow(img, cmap='gray', vmin=0, vmax=255)
        ax.set_title(title)
        ax.axis('off')
    fig.tight_layout()
    fig.savefig(path)
