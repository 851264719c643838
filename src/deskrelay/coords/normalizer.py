"""Coordinate normalization between model, physical and logical space.

Model space is the 0-1000 square every provider coordinate is mapped
into before it reaches the bus. The agent converts to logical pixels
(what the OS pointer API expects) exactly once, using the geometry of
the screenshot it captured most recently.
"""

from __future__ import annotations

import logging
import math

from deskrelay.domain.models import (
    CanonicalCommand,
    CoordinateSpace,
    Point,
    ScreenshotMetadata,
)

logger = logging.getLogger(__name__)

MODEL_EXTENT = 1000


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def model_to_logical(point: Point, metadata: ScreenshotMetadata) -> Point:
    """Map a model-space point onto the captured display in logical pixels."""
    x = (point.x / MODEL_EXTENT) * metadata.logical.w + metadata.offset.x
    y = (point.y / MODEL_EXTENT) * metadata.logical.h + metadata.offset.y
    return Point(x=round_half_away(x), y=round_half_away(y))


def physical_to_logical(point: Point, scale_factor: float) -> Point:
    """Legacy path for physical pixels; the display offset is not applied."""
    return Point(
        x=round_half_away(point.x / scale_factor),
        y=round_half_away(point.y / scale_factor),
    )


def pixels_to_model(value: float, dimension: int) -> int:
    """Express a pixel position within ``dimension`` in model units."""
    if dimension <= 0:
        raise ValueError(f"dimension must be positive, got {dimension}")
    return round_half_away(value / dimension * MODEL_EXTENT)


class CoordinateNormalizer:
    """Converts command coordinates into Input Host (logical) pixels.

    Holds the metadata of the most recent screenshot; it is refreshed
    on every capture and consulted for every command.
    """

    def __init__(self, metadata: ScreenshotMetadata | None = None) -> None:
        self._metadata = metadata
        self._warned: set[CoordinateSpace] = set()

    @property
    def metadata(self) -> ScreenshotMetadata | None:
        return self._metadata

    def update(self, metadata: ScreenshotMetadata | None) -> None:
        if metadata is not None:
            self._metadata = metadata

    def to_input_host(self, command: CanonicalCommand) -> CanonicalCommand:
        """Return ``command`` with its coordinates in logical space.

        Commands without coordinates and commands already tagged logical
        come back unchanged. Without any cached metadata the coordinates
        pass through unmodified and a warning is logged.
        """
        space = command.coordinate_space
        if space is None or space == CoordinateSpace.LOGICAL:
            return command

        if space == CoordinateSpace.MODEL and self._metadata is None:
            self._warn_once(space, "No screenshot metadata cached; passing model coordinates through")
            return command
        if space == CoordinateSpace.PHYSICAL and self._metadata is None:
            self._warn_once(
                space, "No screenshot metadata cached; assuming scale 1.0 for physical coordinates"
            )

        update: dict[str, object] = {"space": CoordinateSpace.LOGICAL}
        if command.x is not None and command.y is not None:
            converted = self._convert(Point(x=command.x, y=command.y), space)
            update["x"] = converted.x
            update["y"] = converted.y
        if command.source is not None:
            update["source"] = self._convert(command.source, space)
        if command.destination is not None:
            update["destination"] = self._convert(command.destination, space)
        return command.model_copy(update=update)

    def _convert(self, point: Point, space: CoordinateSpace) -> Point:
        if space == CoordinateSpace.MODEL:
            return model_to_logical(point, self._metadata)
        scale = self._metadata.scale_factor if self._metadata is not None else 1.0
        return physical_to_logical(point, scale)

    def _warn_once(self, space: CoordinateSpace, message: str) -> None:
        if space in self._warned:
            logger.debug("%s (repeated)", message)
            return
        logger.warning(message)
        self._warned.add(space)
