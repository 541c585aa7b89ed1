import cv2
import numpy as np
from loguru import logger
from scipy import ndimage


class CalibrationError(ValueError):
    pass


def binarize(image, threshold):
    """亮度严格大于阈值的像素置 255，其余置 0"""
    _, binary = cv2.threshold(np.asarray(image, dtype=np.uint8), threshold, 255, cv2.THRESH_BINARY)
    return binary


def largest_region(binary):
    # 8 邻域连通，只保留面积最大的亮区域
    labels, count = ndimage.label(binary > 0, structure=np.ones((3, 3), dtype=int))
    if count == 0:
        raise CalibrationError("No pixel above threshold, can't locate the calibration sphere")
    sizes = np.bincount(labels.ravel())
    sizes[0] = 0
    if count > 1:
        logger.debug(f"Found {count} bright regions, keeping the largest ({sizes.max()} px)")
    return labels == sizes.argmax()


def locate_sphere(image, threshold):
    """
    计算标定球在图像上的投影中心和半径
    返回: (center_row, center_col, radius)，均为整数
    """
    region = largest_region(binarize(image, threshold))
    rows, cols = np.nonzero(region)
    area = rows.size

    # 质心取整 (向下)，半径取最宽处的一半
    center_row = int(rows.sum() // area)
    center_col = int(cols.sum() // area)
    radius = int((cols.max() - cols.min()) // 2)

    logger.info(f"Sphere center ({center_row}, {center_col}), radius {radius} px")
    return center_row, center_col, radius
