import argparse
import os
import sys

from loguru import logger

from psm.step1_calibration import CalibrationError, binarize, locate_sphere
from psm.step2_lights import estimate_light_vectors
from psm.step3_photometric import DegenerateLightingError, DimensionMismatchError, reconstruct
from psm.utils import (load_calibration, load_image, load_images, load_light_vectors, save_calibration,
                       save_image, save_light_vectors, save_preview)


def run_calibrate(args):
    image = load_image(args.image)
    calibration = locate_sphere(image, args.threshold)
    save_calibration(args.params_out, calibration)
    if args.binary:
        save_image(args.binary, binarize(image, args.threshold))
    print("Sphere center ({}, {}), radius {} px -> {}".format(*calibration, args.params_out))


def run_lights(args):
    calibration = load_calibration(args.params)
    L = estimate_light_vectors(load_images(args.images), calibration, blur=args.blur)
    save_light_vectors(args.directions_out, L)
    print(f"Light vectors saved to {args.directions_out}")


def run_normals(args):
    L = load_light_vectors(args.directions)
    images = load_images(args.images)
    normals_image, albedo_image = reconstruct(images, L, args.step, args.threshold)

    save_image(args.normals_out, normals_image)
    save_image(args.albedo_out, albedo_image)
    if args.preview:
        save_preview(normals_image, albedo_image, args.preview)
    print(f"Normals -> {args.normals_out}, albedo -> {args.albedo_out}")


def run_pipeline(args):
    """三步依次执行，全部成功后才把中间结果 (标定参数、光源向量) 和输出图像写入输出目录"""
    print("[Step 1] Locating calibration sphere...")
    calibration = locate_sphere(load_image(args.sphere_images[0]), args.sphere_threshold)

    print("[Step 2] Estimating light vectors...")
    L = estimate_light_vectors(load_images(args.sphere_images), calibration, blur=args.blur)

    print("[Step 3] Computing normals and albedo...")
    normals_image, albedo_image = reconstruct(load_images(args.object_images), L, args.step, args.threshold)

    if not os.path.exists(args.output_dir):
        os.makedirs(args.output_dir)
    save_calibration(os.path.join(args.output_dir, "sphere_params.txt"), calibration)
    save_light_vectors(os.path.join(args.output_dir, "light_directions.txt"), L)
    save_image(os.path.join(args.output_dir, "normals.pgm"), normals_image)
    save_image(os.path.join(args.output_dir, "albedo.pgm"), albedo_image)
    save_preview(normals_image, albedo_image, os.path.join(args.output_dir, "preview.png"))
    print(f"Done, results in {args.output_dir}")


def build_parser():
    parser = argparse.ArgumentParser(description="Photometric stereo with a calibration sphere and three lights")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("calibrate", help="Locate the calibration sphere (center, radius)")
    p.add_argument("image", help="Gray-level sphere image")
    p.add_argument("threshold", type=int, help="Binarization threshold")
    p.add_argument("params_out", help="Output parameters file: 'center_row center_col radius'")
    p.add_argument("--binary", help="Also save the thresholded silhouette here")
    p.set_defaults(func=run_calibrate)

    p = sub.add_parser("lights", help="Estimate the three light vectors from sphere images")
    p.add_argument("params", help="Parameters file written by 'calibrate'")
    p.add_argument("images", nargs=3, help="Sphere images 1-3")
    p.add_argument("directions_out", help="Output directions file: three lines 'x y z'")
    p.add_argument("--blur", type=int, default=0, help="Gaussian kernel size used to locate the highlight")
    p.set_defaults(func=run_lights)

    p = sub.add_parser("normals", help="Compute surface normals and albedo")
    p.add_argument("directions", help="Directions file written by 'lights'")
    p.add_argument("images", nargs=3, help="Object images 1-3, same order as the light vectors")
    p.add_argument("step", type=int, help="Grid spacing of the drawn normals")
    p.add_argument("threshold", type=int, help="Visibility threshold")
    p.add_argument("normals_out", help="Output normals image")
    p.add_argument("albedo_out", help="Output albedo image")
    p.add_argument("--preview", help="Also save a side-by-side preview figure")
    p.set_defaults(func=run_normals)

    p = sub.add_parser("run", help="Run all three steps")
    p.add_argument("--sphere-images", nargs=3, required=True)
    p.add_argument("--object-images", nargs=3, required=True)
    p.add_argument("--sphere-threshold", type=int, default=100)
    p.add_argument("--threshold", type=int, default=85)
    p.add_argument("--step", type=int, default=10)
    p.add_argument("--blur", type=int, default=0)
    p.add_argument("--output-dir", default="output")
    p.set_defaults(func=run_pipeline)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")
    try:
        args.func(args)
    except (CalibrationError, DegenerateLightingError, DimensionMismatchError) as e:
        print(f"{type(e).__name__}: {e}")
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
