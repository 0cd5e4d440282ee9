"""Audio fingerprint fallback hook.

The recognizer itself lives outside this package; the resolver only needs
something that can turn a source track into better metadata when every text
search came back empty.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from .models import TrackDescriptor


@dataclass
class FingerprintResult:
    success: bool
    track: Optional[TrackDescriptor] = None
    reason: Optional[str] = None


class FingerprintMatcher(Protocol):
    async def identify(self, track: TrackDescriptor) -> FingerprintResult:
        ...


class DisabledFingerprinter:
    async def identify(self, track: TrackDescriptor) -> FingerprintResult:
        return FingerprintResult(success=False, reason="fingerprinting not configured")
