"""
Provides utility functions for logging, configuration merging and image input.
"""

import argparse
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image
from torchvision import transforms as T


def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_file_path: Optional[str] = None,
    enable_console: bool = True,
    enabled: bool = False,
) -> logging.Logger:
    """
    Setup logging configuration for applications using this library.

    This function configures only the tensorbundle logger, not the root logger,
    to avoid interfering with other libraries' logging.
    """

    package_logger = logging.getLogger("tensorbundle")

    if not enabled:
        package_logger.disabled = True
        return package_logger

    package_logger.disabled = False
    package_logger.setLevel(getattr(logging, log_level.upper()))

    # Clear existing handlers to avoid duplicates
    package_logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"
    )

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    if log_to_file:
        if log_file_path is None:
            os.makedirs("logs", exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file_path = f"logs/tensorbundle_{timestamp}.log"

        file_handler = logging.FileHandler(log_file_path)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    # Prevent propagation to root logger to avoid duplicate messages
    package_logger.propagate = False

    package_logger.info(f"tensorbundle logging initialized - Level: {log_level}")
    if log_to_file:
        package_logger.info(f"Log file: {log_file_path}")

    return package_logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger for a specific module within the library.

    It will return a logger that respects the user's logging configuration.

    Args:
        name: Logger name (typically __name__ from the calling module)

    Returns:
        Logger instance for the specified module

    Example:
        >>> from tensorbundle.utils import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.debug("Resolving bundle...")  # Only shows if user enabled DEBUG
    """
    if name is None:
        name = __name__

    return logging.getLogger(name)


def disable_logging(logger_name: Optional[str] = None) -> None:
    """
    Disable logging for this library or a specific logger.

    Args:
        logger_name: Specific logger to disable. If None, disables the entire
                    tensorbundle package logging.

    Example:
        >>> from tensorbundle.utils import disable_logging
        >>> disable_logging('tensorbundle.inference.executor')
    """
    if logger_name is None:
        logger_name = "tensorbundle"

    logging.getLogger(logger_name).disabled = True


def enable_logging(logger_name: Optional[str] = None, level: str = "INFO") -> None:
    """
    Enable logging for this library or a specific logger.

    Args:
        logger_name: Specific logger to enable. If None, enables the entire
                    tensorbundle package logging.
        level: Logging level to set
    """
    if logger_name is None:
        logger_name = "tensorbundle"

    logger_obj = logging.getLogger(logger_name)
    logger_obj.disabled = False
    logger_obj.setLevel(getattr(logging, level.upper()))


def merge_config(args: argparse.Namespace, config: dict) -> dict:
    """
    Merge command-line arguments with YAML config.
    Args override config values if they are not None.
    """

    merged = config.copy()
    for key, value in vars(args).items():
        if (
            value is not None and key != "config"
        ):  # only override if user provided value
            merged[key] = value
    return merged


def create_image_transform(
    size: Tuple[int, int],
    crop_size: Optional[Union[int, Tuple[int, int]]] = None,
) -> T.Compose:
    """
    Create the resize/crop pipeline that brings a decoded image to a layer's size.

    Normalization is not part of this pipeline: it is declared by the bundle
    and applied by the model when it runs.

    Args:
        size: Target (h, w).
        crop_size: Optional center crop applied before the final resize.

    Returns:
        Composed transform pipeline operating on PIL images.
    """
    transforms = []

    if crop_size is not None:
        transforms.append(T.CenterCrop(crop_size))

    transforms.append(T.Resize(size))

    return T.Compose(transforms)


def load_image(
    path: Union[str, Path],
    layer,
    crop_size: Optional[Union[int, Tuple[int, int]]] = None,
) -> np.ndarray:
    """Decode an image file into an array shaped for an image input layer.

    The returned array is ``uint8`` in the layer's layout (HWC or CHW) and
    channel order, without a batch dimension.

    Args:
        path: Image file to decode.
        layer: The image ``LayerDescription`` the array is meant for.
        crop_size: Optional center crop applied before resizing.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If ``layer`` is not an image layer.
    """
    if layer.kind != "image":
        raise ValueError(f"Layer '{layer.name}' is not an image layer")

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    height, width, channels = layer.image_volume
    mode = "L" if channels == 1 else "RGB"

    with Image.open(path) as img:
        img = img.convert(mode)
        img = create_image_transform((height, width), crop_size=crop_size)(img)
        arr = np.asarray(img, dtype=np.uint8)

    if arr.ndim == 2:
        arr = arr[:, :, None]
    if layer.pixel_format == "BGR":
        arr = arr[:, :, ::-1]
    if layer.channels_first:
        arr = np.transpose(arr, (2, 0, 1))

    return np.ascontiguousarray(arr)
