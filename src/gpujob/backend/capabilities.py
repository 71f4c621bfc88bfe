"""
Instance capability negotiation for optional validation diagnostics.
"""

import logging
from typing import Callable, Iterable, Optional

from .base import VK_EXT_DEBUG_REPORT_EXTENSION_NAME, to_str, vk

logger = logging.getLogger(__name__)

DEFAULT_VALIDATION_LAYER = "VK_LAYER_KHRONOS_validation"
DEFAULT_DEBUG_EXTENSION = VK_EXT_DEBUG_REPORT_EXTENSION_NAME


def _enumerate_layers() -> list[str]:
    return [to_str(p.layerName) for p in vk.vkEnumerateInstanceLayerProperties()]


def _enumerate_extensions() -> list[str]:
    return [to_str(p.extensionName) for p in vk.vkEnumerateInstanceExtensionProperties(None)]


class CapabilityProbe:
    """Answers whether a validation layer and its reporting extension can be enabled.

    The enumeration callables default to the loader queries and can be
    swapped for stubs in tests. Nothing here has side effects.
    """

    def __init__(
        self,
        enumerate_layers: Optional[Callable[[], Iterable[str]]] = None,
        enumerate_extensions: Optional[Callable[[], Iterable[str]]] = None,
    ):
        self._enumerate_layers = enumerate_layers or _enumerate_layers
        self._enumerate_extensions = enumerate_extensions or _enumerate_extensions

    def query(self) -> tuple[list[str], list[str]]:
        """Return ``(layers, extensions)`` available on this loader."""
        return list(self._enumerate_layers()), list(self._enumerate_extensions())

    def decide(self, required_layer: str, required_extension: str) -> bool:
        """True when the layer is present and then the extension is present.

        Extensions are not enumerated at all when the layer is missing.
        """
        if required_layer not in set(self._enumerate_layers()):
            logger.debug("Layer %s not available", required_layer)
            return False
        if required_extension not in set(self._enumerate_extensions()):
            logger.debug("Extension %s not available", required_extension)
            return False
        return True

    def negotiate(
        self,
        required_layer: str = DEFAULT_VALIDATION_LAYER,
        required_extension: str = DEFAULT_DEBUG_EXTENSION,
    ) -> tuple[list[str], list[str]]:
        """Layers and extensions to request at instance creation."""
        if self.decide(required_layer, required_extension):
            return [required_layer], [required_extension]
        return [], []
