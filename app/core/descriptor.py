from dataclasses import dataclass
from typing import Iterable, Optional, Union

import numpy as np

from app.core.exceptions import DescriptorLengthMismatch

DEFAULT_THRESHOLD = 0.6

DescriptorLike = Union[np.ndarray, Iterable[float]]


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of comparing a candidate descriptor with the reference.

    Attributes:
        match: ``distance < threshold``.
        distance: Euclidean distance between the two descriptors.
        similarity: ``1 - distance``; a monotonic inverse of distance, not a
            calibrated probability.
        threshold: Distance cutoff used for the decision.
    """

    match: bool
    distance: float
    similarity: float
    threshold: float


def as_descriptor(values: DescriptorLike) -> np.ndarray:
    """Convert values to a validated float32 face descriptor.

    Raises:
        ValueError: If the values are not a non-empty 1-D vector of finite numbers.
    """
    descriptor = np.asarray(values, dtype=np.float32)
    if descriptor.ndim != 1:
        raise ValueError(f"Descriptor must be 1-D, got shape {descriptor.shape}")
    if descriptor.size == 0:
        raise ValueError("Descriptor must not be empty")
    if not np.all(np.isfinite(descriptor)):
        raise ValueError("Descriptor contains non-finite values")
    return descriptor


def l2_normalize(descriptor: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(descriptor)
    if norm == 0:
        return descriptor
    return (descriptor / norm).astype(np.float32)


def ensure_same_length(
    candidate: np.ndarray,
    reference: np.ndarray,
    expected_dimension: Optional[int] = None,
) -> None:
    """Guard a comparison against descriptors of different dimension.

    A mismatch means the two descriptors come from different models or model
    versions, so it is reported as an error and never as a non-match.
    """
    if len(candidate) != len(reference):
        raise DescriptorLengthMismatch(len(candidate), len(reference))
    if expected_dimension is not None and len(reference) != expected_dimension:
        raise DescriptorLengthMismatch(len(candidate), len(reference))


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.sqrt(np.sum(diff * diff)))


def classify(distance: float, threshold: float = DEFAULT_THRESHOLD) -> VerificationResult:
    return VerificationResult(
        match=distance < threshold,
        distance=distance,
        similarity=1.0 - distance,
        threshold=threshold,
    )


def compare_descriptors(
    candidate: np.ndarray,
    reference: np.ndarray,
    threshold: float = DEFAULT_THRESHOLD,
    expected_dimension: Optional[int] = None,
) -> VerificationResult:
    """Check dimensions, then classify the Euclidean distance against the threshold."""
    ensure_same_length(candidate, reference, expected_dimension)
    return classify(euclidean_distance(candidate, reference), threshold)


def format_score(value: float) -> str:
    """Render a distance or similarity with four decimal digits."""
    return f"{value:.4f}"
