"""
Classify images with a packaged model bundle.

Usage - model selection:
    $ python classify.py --models_dir ./models --model_id mobilenet-v2 --image cat.jpg
    $ python classify.py --bundle ./models/mobilenet_v2.tiobundle --image ./images/
    $ python classify.py --models_dir ./models --list
"""

import argparse
from functools import partial
from pathlib import Path

from easydict import EasyDict as edict

from tensorbundle.bundle.resolver import BundleResolver, DirectoryRegistry
from tensorbundle.config import _shape, load_config, with_defaults
from tensorbundle.errors import TensorBundleError
from tensorbundle.general import Profiler, determine_device
from tensorbundle.inference.executor import InferenceExecutor, OriginQueue
from tensorbundle.pipeline import ClassificationPipeline
from tensorbundle.utils import get_logger, load_image, merge_config, setup_logging

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".gif", ".tif", ".tiff", ".webp"}
DELIVERY_TIMEOUT_S = 300.0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Classify images with a model bundle and print the top labels."
    )

    # Config file
    parser.add_argument(
        "--config", type=str, default=None, help="Path to config.yml/.json"
    )

    # Model selection
    parser.add_argument(
        "--models_dir",
        type=str,
        default=None,
        help="Directory searched for *.tiobundle model bundles.",
    )
    parser.add_argument(
        "--model_id", type=str, default=None, help="Identifier of the bundle to use."
    )
    parser.add_argument(
        "--bundle",
        type=str,
        default=None,
        help="Path to a bundle directory (overrides --model_id).",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        default=None,
        help="List the bundles found in --models_dir and exit.",
    )
    parser.add_argument(
        "--device",
        type=str,
        default=None,
        choices=["auto", "cpu", "cuda"],
        help="Device to run inference on (auto will choose cuda if available)",
    )
    parser.add_argument(
        "--warmup",
        action="store_true",
        default=None,
        help="Warm the model up with a zero input after loading.",
    )

    # Input
    parser.add_argument(
        "--image",
        type=str,
        default=None,
        help="Image file, or a directory of images, to classify.",
    )
    parser.add_argument(
        "--crop_size",
        type=int,
        nargs="+",
        default=None,
        help="Center crop (size or h w) applied before resizing to the model input.",
    )

    # Ranking
    parser.add_argument(
        "--top_n", type=int, default=None, help="Number of labels to report."
    )
    parser.add_argument(
        "--thresh",
        type=float,
        default=None,
        help="Only report labels scoring above this threshold.",
    )

    # Logging
    parser.add_argument(
        "--log_level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level.",
    )
    parser.add_argument(
        "--log_to_file",
        action="store_true",
        default=None,
        help="Also write logs to logs/tensorbundle_<timestamp>.log",
    )

    return parser.parse_args(argv)


def collect_images(path):
    path = Path(path)
    if path.is_dir():
        return sorted(
            p for p in path.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        )
    return [path]


def format_ranking(image_path, ranking):
    lines = [f"{image_path}:"]
    if not ranking:
        lines.append("  (no label above threshold)")
    for i, entry in enumerate(ranking, start=1):
        lines.append(f"  {i}. {entry.label:<30} {entry.score:.4f}")
    return "\n".join(lines)


def main(argv=None):
    args = parse_args(argv)

    cfg = load_config(str(args.config)) if args.config is not None else {}

    # Merge config with CLI args
    config = edict(with_defaults(merge_config(args, cfg)))

    # Setup logging first
    setup_logging(
        enabled=True, log_level=config.log_level, log_to_file=bool(config.log_to_file)
    )
    logger = get_logger("tensorbundle.classify")  # Force it into tensorbundle hierarchy

    registry = None
    if config.models_dir and Path(config.models_dir).is_dir():
        registry = DirectoryRegistry(config.models_dir)
    resolver = BundleResolver(registry)

    if config.get("list"):
        identifiers = resolver.identifiers()
        if not identifiers:
            logger.warning(f"No bundles found in {config.models_dir}")
        for identifier in identifiers:
            print(identifier)
        return 0

    # Validation
    if not config.get("bundle") and not config.get("model_id"):
        logger.error("model_id or bundle is required (via --model_id/--bundle or config)")
        return 1
    if not config.get("image"):
        logger.error("image is required (via --image or config)")
        return 1

    images = collect_images(config.image)
    if not images:
        logger.error(f"No images found in {config.image}")
        return 1

    device_str = determine_device(config.device)
    crop_size = _shape(config.crop_size)
    logger.info(f"Final config: {dict(config)}")
    logger.info(f"Selected device: {device_str}")

    origin = OriginQueue()
    failures = []
    handled = set()

    def show(image_path, ranking, result):
        handled.add(image_path)
        print(format_ranking(image_path, ranking))
        logger.debug(
            "Delivered: image=%s duration_ms=%.2f", image_path, result.duration_ms
        )

    def record_error(image_path, error):
        handled.add(image_path)
        logger.error(f"Classification failed for {image_path}: {error}")
        failures.append(image_path)

    profiler = Profiler()
    with InferenceExecutor(name="classify") as executor:
        pipeline = ClassificationPipeline(
            resolver,
            executor=executor,
            origin=origin,
            top_n=config.top_n,
            threshold=config.thresh,
            device=device_str,
            warmup=bool(config.warmup),
        )
        try:
            if config.get("bundle"):
                model = pipeline.open(location=config.bundle)
            else:
                model = pipeline.open(identifier=config.model_id)
        except TensorBundleError as e:
            logger.error(f"Failed to open model: {e}")
            return 1

        try:
            image_layer = next(
                (l for l in model.descriptor.inputs if l.kind == "image"), None
            )
            if image_layer is None:
                logger.error(f"Bundle '{model.identifier}' has no image input")
                return 1

            submissions = {}
            with profiler:
                submitted = 0
                for image_path in images:
                    try:
                        arr = load_image(image_path, image_layer, crop_size=crop_size)
                    except (OSError, ValueError) as e:
                        logger.error(f"Could not read image {image_path}: {e}")
                        failures.append(image_path)
                        continue
                    submissions[image_path] = pipeline.classify(
                        arr,
                        on_result=partial(show, image_path),
                        on_error=partial(record_error, image_path),
                    )
                    submitted += 1

                delivered = origin.run_until(submitted, timeout=DELIVERY_TIMEOUT_S)

            if delivered < submitted:
                logger.error(
                    f"Timed out after {DELIVERY_TIMEOUT_S:.0f}s with "
                    f"{submitted - delivered} image(s) undelivered"
                )
                for image_path, submission in submissions.items():
                    if image_path not in handled:
                        submission.cancel()
                        failures.append(image_path)
                executor.shutdown(wait=False, cancel_pending=True)
        finally:
            pipeline.close()

    logger.info(
        "Classified %d image(s) in %.2f ms (%.2f images/sec)",
        delivered,
        profiler.elapsed_ms,
        profiler.get_fps(delivered),
    )
    return 1 if failures else 0


if __name__ == "__main__":
    try:
        exit_code = main()
        exit(exit_code)
    except KeyboardInterrupt:
        logger = get_logger(__name__)
        logger.info("Process interrupted by user")
        exit(1)
    except Exception as e:
        logger = get_logger(__name__)
        logger.error(f"Process failed with error: {e}", exc_info=True)
        exit(1)
