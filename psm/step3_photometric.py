import numpy as np
from loguru import logger

# |det(S)| 低于该值时光源方向无法区分，任何像素都解不出法线
DET_TOLERANCE = 1e-6

# 法线针图: 线段长度、线段颜色、起点标记颜色
STROKE_LENGTH = 10
STROKE_VALUE = 255
ANCHOR_VALUE = 0


class DegenerateLightingError(ValueError):
    pass


class DimensionMismatchError(ValueError):
    pass


def check_images(images):
    """三张物体图像必须是尺寸相同的灰度图"""
    if len(images) != 3:
        raise ValueError(f"Expected 3 object images, got {len(images)}")
    shapes = [np.shape(img) for img in images]
    if len(set(shapes)) != 1:
        raise DimensionMismatchError(f"Object images differ in size: {shapes}")
    if len(shapes[0]) != 2:
        raise ValueError(f"Expected grayscale images, got shape {shapes[0]}")
    return shapes[0]


def as_light_matrix(S):
    S = np.asarray(S, dtype=np.float64)
    if S.shape != (3, 3):
        raise ValueError(f"Light matrix must be 3x3, got shape {S.shape}")
    return S


def is_pixel_visible(row, col, images, threshold):
    """三张图中该像素的亮度都严格大于阈值才算可见"""
    return all(int(img[row, col]) > threshold for img in images)


def visibility_mask(images, threshold):
    shape = check_images(images)
    visible = np.ones(shape, dtype=bool)
    for img in images:
        visible &= np.asarray(img).astype(np.int64) > threshold
    return visible


def determinant(S):
    S = as_light_matrix(S)
    return (S[0, 0] * (S[1, 1] * S[2, 2] - S[1, 2] * S[2, 1])
            - S[0, 1] * (S[1, 0] * S[2, 2] - S[1, 2] * S[2, 0])
            + S[0, 2] * (S[1, 0] * S[2, 1] - S[1, 1] * S[2, 0]))


def invert_light_matrix(S):
    """
    用伴随矩阵 / 行列式求 3x3 光源矩阵的逆
    行列式接近 0 (三个光源方向几乎共面) 时抛出 DegenerateLightingError
    """
    S = as_light_matrix(S)
    det = determinant(S)
    if abs(det) < DET_TOLERANCE:
        raise DegenerateLightingError(
            f"Light matrix is singular (det={det:.3g}), light directions are not independent")

    (a, b, c), (d, e, f), (g, h, i) = S
    adjugate = np.array([
        [e * i - f * h, -(b * i - c * h), b * f - c * e],
        [-(d * i - f * g), a * i - c * g, -(a * f - c * d)],
        [d * h - e * g, -(a * h - b * g), a * e - b * d],
    ])
    return adjugate / det


def solve_linear_system(S, intensities):
    """
    朗伯模型 I_k = rho * (s_k . n)，于是 N = S^-1 * I
    返回 (单位法向量, 反射率)，反射率为 N 的模长；
    反射率为 0 时法向量保持零向量
    """
    G = invert_light_matrix(S) @ np.asarray(intensities, dtype=np.float64)
    albedo = float(np.sqrt(G @ G))
    if albedo > 0:
        return G / albedo, albedo
    return np.zeros(3), 0.0


def compute_normals_and_albedo(images, S, threshold):
    """
    逐像素求解法线与反射率
    返回 (albedo, normals, visible):
      albedo  (H, W)    不可见像素为 0
      normals (H, W, 3) 不可见或反射率为 0 的像素为零向量
      visible (H, W)    可见性掩模
    """
    check_images(images)
    # 光源矩阵与像素无关，只在开始前检查一次
    S_inv = invert_light_matrix(S)
    visible = visibility_mask(images, threshold)

    I = np.stack(images, axis=-1).astype(np.float64)
    G = np.zeros(I.shape)
    G[visible] = I[visible] @ S_inv.T

    albedo = np.sqrt(np.sum(G * G, axis=2))
    normals = np.zeros_like(G)
    solved = albedo > 0
    normals[solved] = G[solved] / albedo[solved, np.newaxis]

    logger.info(f"Solved {visible.sum()} visible pixels ({(visible & ~solved).sum()} with zero albedo), "
                f"max albedo {max_albedo(albedo, visible):.4f}")
    return albedo, normals, visible


def max_albedo(albedo, visible):
    return float(albedo[visible].max()) if visible.any() else 0.0


def render_albedo(albedo, visible):
    """反射率按最大值缩放到 [0, 255]，不可见像素为 0"""
    albedo_image = np.zeros(albedo.shape, dtype=np.uint8)
    peak = max_albedo(albedo, visible)
    if peak > 0:
        albedo_image[visible] = np.floor(albedo[visible] / peak * 255 + 0.5)
    return albedo_image


def _round(v):
    # 四舍五入，0.5 远离 0
    return int(np.copysign(np.floor(abs(v) + 0.5), v))


def draw_normal_line(image, row, col, normal):
    """
    在 (row, col) 画出法线在图像平面上的投影 (丢弃 z 分量)
    超出图像的点直接丢弃；最后在起点画一个标记点
    """
    end_row = row + int(normal[0] * STROKE_LENGTH)
    end_col = col + int(normal[1] * STROKE_LENGTH)

    d_row = end_row - row
    d_col = end_col - col
    steps = max(abs(d_row), abs(d_col), 1)
    row_increment = d_row / steps
    col_increment = d_col / steps

    num_rows, num_cols = image.shape
    for k in range(steps + 1):
        pixel_row = _round(row + k * row_increment)
        pixel_col = _round(col + k * col_increment)
        if 0 <= pixel_row < num_rows and 0 <= pixel_col < num_cols:
            image[pixel_row, pixel_col] = STROKE_VALUE

    image[row, col] = ANCHOR_VALUE


def render_normal_field(base_image, normals, visible, step):
    """
    在第一张物体图像的副本上，每隔 step 行/列给可见像素画法线
    """
    if step < 1:
        raise ValueError(f"Step must be a positive integer, got {step}")
    normals_image = np.array(base_image, dtype=np.uint8, copy=True)
    num_rows, num_cols = normals_image.shape

    strokes = 0
    for row in range(0, num_rows, step):
        for col in range(0, num_cols, step):
            if visible[row, col]:
                draw_normal_line(normals_image, row, col, normals[row, col])
                strokes += 1

    logger.debug(f"Drew {strokes} normal strokes with step {step}")
    return normals_image


def reconstruct(images, S, step, threshold):
    """
    完整的第三步: 返回 (法线针图, 反射率图)
    出错时不会产生任何部分结果
    """
    if step < 1:
        raise ValueError(f"Step must be a positive integer, got {step}")
    albedo, normals, visible = compute_normals_and_albedo(images, S, threshold)
    normals_image = render_normal_field(images[0], normals, visible, step)
    albedo_image = render_albedo(albedo, visible)
    return normals_image, albedo_image
