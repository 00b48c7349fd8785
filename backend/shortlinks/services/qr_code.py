"""QR code rendering for short URLs (segno)."""

import io
from dataclasses import dataclass
from typing import Protocol

import segno


@dataclass(frozen=True)
class QrOptions:
    size: int = 200
    format: str = "svg"
    margin: int = 1
    error_correction: str = "M"


class QrCodeRenderer(Protocol):
    def render(self, url: str, options: QrOptions) -> bytes: ...


class SegnoRenderer:
    def render(self, url: str, options: QrOptions) -> bytes:
        qr = segno.make(url, error=options.error_correction.lower(), micro=False)
        # Pick the largest module scale that keeps the image within ``size`` pixels.
        width, _height = qr.symbol_size(scale=1, border=options.margin)
        scale = max(1, options.size // width)
        buffer = io.BytesIO()
        qr.save(buffer, kind=options.format, scale=scale, border=options.margin)
        return buffer.getvalue()
