from __future__ import annotations

"""Tool registry.

The registry maps a tool name to its ``ToolDescriptor``. It is an explicit,
process-wide object with a closed registration phase: while any run holds the
registry (``lock()``), every mutation is rejected with ``RegistryLocked`` so
the tool set seen by a run never changes under it.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional, Union

from ..core.errors import DuplicateTool, RegistryLocked
from .base import Capability, ToolDescriptor

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    In-memory mapping of tool names to descriptors.

    This registry is the central lookup mechanism for resolving tool names
    (e.g. ``web_fetch`` or ``patents.search``) to their handler reference.
    The dispatcher relies on it to route every Tool Call.

    Notes:
        - ``register`` raises ``DuplicateTool`` if the name already exists.
        - ``lock`` is reference counted; the registry is mutable again only
          after every holder has called ``unlock``.
    """

    def __init__(self) -> None:
        """Initialize an empty, unlocked registry."""
        self._tools: Dict[str, ToolDescriptor] = {}
        self._holders = 0
        self._mutex = threading.Lock()

    @property
    def locked(self) -> bool:
        return self._holders > 0

    def lock(self) -> None:
        """Close the registration phase for the duration of a run."""
        with self._mutex:
            self._holders += 1

    def unlock(self) -> None:
        with self._mutex:
            if self._holders == 0:
                raise RuntimeError("ToolRegistry.unlock() called without a matching lock()")
            self._holders -= 1

    def register(self, descriptor: ToolDescriptor) -> None:
        """
        Register a tool descriptor.

        Args:
            descriptor: The descriptor to add.

        Raises:
            DuplicateTool: A tool with the same name is already registered.
            RegistryLocked: A run currently holds the registry.
        """
        with self._mutex:
            if self._holders:
                raise RegistryLocked(f"register '{descriptor.name}'")
            if descriptor.name in self._tools:
                raise DuplicateTool(descriptor.name)
            self._tools[descriptor.name] = descriptor
        logger.debug("Registered tool %s (%s)", descriptor.name, descriptor.handler.kind)

    def unregister(self, names: Iterable[str]) -> List[str]:
        """Remove the named tools; returns the names that were registered."""
        with self._mutex:
            if self._holders:
                raise RegistryLocked("unregister")
            removed = [name for name in names if self._tools.pop(name, None) is not None]
        if removed:
            logger.debug("Unregistered %d tool(s): %s", len(removed), removed)
        return removed

    def lookup(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self, capability: Optional[Union[str, Capability]] = None) -> List[ToolDescriptor]:
        """
        List registered descriptors in name order.

        Args:
            capability: When given, only descriptors tagged with it are returned.
        """
        tag = capability.value if isinstance(capability, Capability) else capability
        tools = sorted(self._tools.values(), key=lambda d: d.name)
        if tag is None:
            return tools
        return [d for d in tools if tag in d.capabilities]
