import cv2
import numpy as np
from loguru import logger

from psm.step1_calibration import CalibrationError


def find_brightest_pixel(image, blur=0):
    """
    找到最亮点 (高光) 的坐标和亮度
    blur > 0 时先做高斯模糊 (奇数核) 以减少噪声对定位的影响，亮度仍取原图的值
    """
    if blur > 0 and blur % 2 == 0:
        raise ValueError(f"Blur kernel size must be odd, got {blur}")
    image = np.asarray(image, dtype=np.uint8)
    search = cv2.GaussianBlur(image, (blur, blur), 0) if blur > 0 else image
    # 亮度相同时取光栅顺序的第一个
    row, col = np.unravel_index(np.argmax(search), search.shape)
    return int(row), int(col), int(image[row, col])


def sphere_normal(row, col, calibration):
    """
    正交投影下，图像点 (row, col) 处球面的单位法向量 (x 沿行, y 沿列, z 指向相机)
    """
    center_row, center_col, radius = calibration
    dx = float(row - center_row)
    dy = float(col - center_col)

    # 球面方程: dx^2 + dy^2 + dz^2 = r^2，落在轮廓外时 dz 截断为 0
    dz = np.sqrt(max(0.0, radius * radius - dx * dx - dy * dy))
    N = np.array([dx, dy, dz])
    return N / np.linalg.norm(N)


def estimate_light_vectors(images, calibration, blur=0):
    """
    每张标定球图像给出一个光源向量: 最亮点处的法向量乘以该点亮度
    返回 3x3 矩阵，第 i 行对应第 i 张图像
    """
    if len(images) != 3:
        raise ValueError(f"Expected 3 sphere images, got {len(images)}")
    if calibration[2] <= 0:
        raise CalibrationError(f"Sphere radius must be positive, got {calibration[2]}")

    light_vectors = []
    for i, img in enumerate(images):
        row, col, brightness = find_brightest_pixel(img, blur)
        L = sphere_normal(row, col, calibration) * brightness
        logger.debug(f"Image {i + 1}: brightest pixel ({row}, {col}) = {brightness}")
        logger.info(f"Light {i + 1}: ({L[0]:.4f}, {L[1]:.4f}, {L[2]:.4f})")
        light_vectors.append(L)

    return np.array(light_vectors)
