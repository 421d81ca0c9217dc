"""
Image Codec
===========

Protocol-based interface for reading and writing the RGBA images the
estimator consumes and produces, with an OpenCV implementation.

Images cross this boundary as (height, width, 4) uint8 arrays in R, G, B, A
channel order.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import cv2
import numpy as np

from .errors import CodecError

if TYPE_CHECKING:
    import numpy.typing as npt


__all__ = [
    "ImageCodec",
    "OpenCVCodec",
]


@runtime_checkable
class ImageCodec(Protocol):
    """
    Protocol for image file decoders/encoders.

    Implementations must provide:
    - decode(): Read a file into an RGBA array
    - encode(): Write an RGBA array to a file
    """

    def decode(self, path: str | Path) -> npt.NDArray:
        """
        Read an image file.

        Returns:
            (height, width, 4) uint8 RGBA array

        Raises:
            CodecError: If the file cannot be read or decoded
        """
        ...

    def encode(self, path: str | Path, rgba: npt.NDArray) -> None:
        """
        Write an RGBA image file; the format follows the file extension.

        Raises:
            CodecError: If the image cannot be encoded or written
        """
        ...


class OpenCVCodec:
    """ImageCodec backed by cv2.imread / cv2.imwrite."""

    __slots__ = ()

    def decode(self, path: str | Path) -> npt.NDArray:
        path = Path(path)
        try:
            img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        except cv2.error as exc:
            raise CodecError(f"Could not decode {path}: {exc}") from exc

        if img is None:
            raise CodecError(f"Could not read image: {path}")
        if img.dtype != np.uint8:
            raise CodecError(f"Unsupported sample type {img.dtype} in {path}")

        if img.ndim == 2:
            return cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
        match img.shape[2]:
            case 1:
                return cv2.cvtColor(img[:, :, 0], cv2.COLOR_GRAY2RGBA)
            case 3:
                return cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
            case 4:
                return cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
            case channels:
                raise CodecError(f"Unsupported channel count {channels} in {path}")

    def encode(self, path: str | Path, rgba: npt.NDArray) -> None:
        path = Path(path)
        if rgba.dtype != np.uint8 or rgba.ndim != 3 or rgba.shape[2] != 4:
            raise CodecError(
                f"Expected (H, W, 4) uint8 RGBA, got {rgba.dtype} {rgba.shape}"
            )
        try:
            ok = cv2.imwrite(str(path), cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA))
        except cv2.error as exc:
            raise CodecError(f"Could not encode {path}: {exc}") from exc

        if not ok:
            raise CodecError(f"Could not write image: {path}")
