"""
Image preprocessing utilities for the essay extraction pipeline.

Provides:
- Bounded resizing (upscaling allowed)
- Grayscale conversion and contrast normalization
- Linear contrast stretch and brightness boost
- Fixed-threshold binarization
- Median denoising and unsharp-mask sharpening
- Profile-driven preprocessing into a temporary artifact
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple, Union, List, Iterator
import numpy as np

from ..config import PreprocessingProfile, STANDARD_PROFILE
from ..errors import PreprocessingFailed
from .io import load_image, new_temp_path, remove_file, save_image

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PreprocessingResult:
    """Result of image preprocessing."""
    image: np.ndarray
    original_shape: Tuple[int, int]
    profile: str = "standard"
    transformations: List[str] = field(default_factory=list)


# ============================================================================
# Core Preprocessing Functions
# ============================================================================

def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert image to grayscale if it's color.

    Args:
        image: Input image (BGR, BGRA or grayscale)

    Returns:
        Grayscale image
    """
    import cv2

    if len(image.shape) == 2:
        return image
    elif len(image.shape) == 3:
        if image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        elif image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        elif image.shape[2] == 1:
            return image.squeeze()

    raise ValueError(f"Unexpected image shape: {image.shape}")


def resize_within(image: np.ndarray, max_dimension: int) -> np.ndarray:
    """
    Scale an image so it fits inside max_dimension x max_dimension.

    Aspect ratio is preserved and small images are upscaled, since
    handwriting photographed from a distance benefits from enlargement.
    """
    import cv2

    h, w = image.shape[:2]
    scale = min(max_dimension / w, max_dimension / h)
    if scale == 1.0:
        return image

    new_width = max(1, int(round(w * scale)))
    new_height = max(1, int(round(h * scale)))

    interpolation = cv2.INTER_CUBIC if scale > 1 else cv2.INTER_AREA
    resized = cv2.resize(image, (new_width, new_height), interpolation=interpolation)

    logger.debug(f"Resized image: {image.shape[:2]} -> {resized.shape[:2]} (scale={scale:.2f})")
    return resized


def normalize_contrast(
    gray: np.ndarray,
    low_percentile: float = 1.0,
    high_percentile: float = 99.0
) -> np.ndarray:
    """Stretch intensities so the given percentiles map to 0 and 255."""
    low, high = np.percentile(gray, (low_percentile, high_percentile))
    if high <= low:
        return gray.copy()
    stretched = (gray.astype(np.float32) - low) * (255.0 / (high - low))
    return np.clip(np.rint(stretched), 0, 255).astype(np.uint8)


def adjust_linear(gray: np.ndarray, gain: float, bias: float = 0.0) -> np.ndarray:
    """Apply out = gain * in + bias, clipped to the 8-bit range."""
    adjusted = gray.astype(np.float32) * gain + bias
    return np.clip(np.rint(adjusted), 0, 255).astype(np.uint8)


def binarize(gray: np.ndarray, threshold: int = 128) -> np.ndarray:
    """
    Hard fixed-level binarization.

    Pixels brighter than the threshold become white, the rest black.
    """
    import cv2

    _, binary = cv2.threshold(gray, threshold, 255, cv2.THRESH_BINARY)
    return binary


def denoise(gray: np.ndarray, ksize: int = 3) -> np.ndarray:
    """Remove salt-and-pepper noise with a median filter."""
    import cv2

    if ksize <= 1:
        return gray
    return cv2.medianBlur(gray, ksize)


def sharpen(gray: np.ndarray, sigma: float = 1.0, amount: float = 1.0) -> np.ndarray:
    """
    Sharpen with an unsharp mask.

    Args:
        gray: Grayscale image
        sigma: Gaussian blur sigma for the mask
        amount: Strength of the edge boost
    """
    import cv2

    blurred = cv2.GaussianBlur(gray, (0, 0), sigma)
    return cv2.addWeighted(gray, 1.0 + amount, blurred, -amount, 0)


# ============================================================================
# Main Preprocessing Pipeline
# ============================================================================

def preprocess_image(
    image: np.ndarray,
    profile: PreprocessingProfile = STANDARD_PROFILE
) -> PreprocessingResult:
    """
    Apply a preprocessing profile to an image.

    Args:
        image: Input image (BGR or grayscale)
        profile: Profile describing bounds, contrast, threshold and sharpening

    Returns:
        PreprocessingResult with processed image and applied steps
    """
    original_shape = image.shape[:2]
    transformations = []

    processed = resize_within(image, profile.max_dimension)
    transformations.append(f"resize_within_{profile.max_dimension}")

    processed = to_grayscale(processed)
    transformations.append("grayscale")

    processed = normalize_contrast(processed, *profile.normalize_percentiles)
    transformations.append("normalize")

    if profile.brightness != 1.0:
        processed = adjust_linear(processed, profile.brightness)
        transformations.append(f"brightness_{profile.brightness}")

    processed = adjust_linear(processed, profile.contrast_gain, profile.contrast_bias)
    transformations.append(f"linear_{profile.contrast_gain}")

    if profile.threshold_last:
        processed = denoise(processed, profile.median_ksize)
        processed = sharpen(processed, profile.sharpen_sigma, profile.sharpen_amount)
        processed = binarize(processed, profile.threshold)
        transformations.extend(["median", "sharpen", f"threshold_{profile.threshold}"])
    else:
        processed = binarize(processed, profile.threshold)
        processed = denoise(processed, profile.median_ksize)
        processed = sharpen(processed, profile.sharpen_sigma, profile.sharpen_amount)
        transformations.extend([f"threshold_{profile.threshold}", "median", "sharpen"])

    logger.info(f"Preprocessing ({profile.name}) complete: {' -> '.join(transformations)}")

    return PreprocessingResult(
        image=processed,
        original_shape=original_shape,
        profile=profile.name,
        transformations=transformations
    )


class ImagePreprocessor:
    """
    Writes profile-preprocessed copies of an image to temporary files.

    Each call produces a uniquely named artifact; the caller owns it and
    should use `preprocessed` to guarantee deletion.
    """

    def __init__(self, temp_prefix: str = "essay_ocr_"):
        self.temp_prefix = temp_prefix

    def run(
        self,
        image_path: Union[str, Path],
        profile: PreprocessingProfile = STANDARD_PROFILE
    ) -> Path:
        """
        Preprocess an image file into a new temporary PNG.

        Raises:
            PreprocessingFailed: If the image cannot be decoded or transformed
        """
        try:
            image = load_image(image_path)
        except (FileNotFoundError, ValueError) as e:
            raise PreprocessingFailed(str(e)) from e

        output_path = new_temp_path(prefix=f"{self.temp_prefix}{profile.name}_")
        try:
            result = preprocess_image(image, profile)
            save_image(result.image, output_path)
        except Exception as e:
            remove_file(output_path)
            raise PreprocessingFailed(f"{profile.name} preprocessing failed: {e}") from e

        return output_path

    @contextmanager
    def preprocessed(
        self,
        image_path: Union[str, Path],
        profile: PreprocessingProfile = STANDARD_PROFILE
    ) -> Iterator[Path]:
        """Yield a preprocessed artifact that is deleted when the block exits."""
        output_path = self.run(image_path, profile)
        try:
            yield output_path
        finally:
            remove_file(output_path)
