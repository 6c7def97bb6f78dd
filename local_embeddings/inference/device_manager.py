"""
OpenVINO Device Manager
========================
Detects available OpenVINO devices and picks the one the embedding
session is compiled for.

Devices:
    CPU   -- always available, baseline
    GPU   -- Intel integrated / discrete GPU
    NPU   -- Neural Processing Unit (Meteor Lake+)
    AUTO  -- OpenVINO picks the best device itself
    MULTI -- e.g. "MULTI:CPU,GPU", batches split across devices

An unavailable preferred device falls back to CPU with a warning rather
than failing the model load.
"""

import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


class DeviceManager:
    """
    OpenVINO device detection and selection.

    Usage::

        dm = DeviceManager(core)
        device = dm.select("GPU")   # "GPU" if present, else "CPU"
    """

    def __init__(self, core):
        """
        Args:
            core : an ``openvino.Core`` instance
        """
        self._core = core
        self._devices: Optional[List[str]] = None

    def list_devices(self) -> List[str]:
        """Return available device strings (e.g. ['CPU', 'GPU'])."""
        if self._devices is None:
            try:
                self._devices = list(self._core.available_devices)
            except RuntimeError as exc:
                logger.error("Failed to query OpenVINO devices: %s", exc)
                self._devices = []
            logger.debug("OpenVINO devices: %s", self._devices)
        return list(self._devices)

    def select(self, preferred: str = "CPU") -> str:
        """
        Select an inference device, falling back to CPU.

        Args:
            preferred : device string to try first ("CPU", "GPU", "AUTO",
                        "MULTI:CPU,GPU", ...)

        Returns:
            The device string to pass to ``core.compile_model``.
        """
        preferred = (preferred or "CPU").strip()
        devices = self.list_devices()

        if preferred.upper() == "AUTO":
            return "AUTO"

        if preferred.upper().startswith("MULTI:"):
            sub_devices = preferred.split(":", 1)[1].split(",")
            valid_subs = [d for d in sub_devices if d in devices]
            if len(valid_subs) >= 2:
                return "MULTI:" + ",".join(valid_subs)
            if valid_subs:
                logger.warning(
                    "MULTI requested but only '%s' available, using single device",
                    valid_subs[0],
                )
                return valid_subs[0]
            logger.warning("No MULTI sub-devices available, falling back to CPU")
            return "CPU"

        if preferred in devices:
            return preferred

        if preferred != "CPU":
            logger.warning(
                "Preferred device '%s' not available (have: %s). Falling back to CPU.",
                preferred,
                devices,
            )
        return "CPU"
