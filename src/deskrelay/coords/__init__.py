"""Coordinate Normalizer module for deskrelay."""

from deskrelay.coords.normalizer import (
    MODEL_EXTENT,
    CoordinateNormalizer,
    model_to_logical,
    physical_to_logical,
    pixels_to_model,
    round_half_away,
)

__all__ = [
    "MODEL_EXTENT",
    "CoordinateNormalizer",
    "model_to_logical",
    "physical_to_logical",
    "pixels_to_model",
    "round_half_away",
]
