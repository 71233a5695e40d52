"""
==============================================================================
Capability Bootstrap Module
==============================================================================

Makes the first real scan as fast as possible.

On warm-up it:
1. Starts initializing the decoding engine in the background
2. Samples platform traits once (browser family, mobile flag)
3. Optionally probes camera permission with a rear-facing request and
   releases the stream immediately

Nothing here blocks a session start. Failures are logged and the session
controller re-attempts the missing step lazily through ``wait_until_ready``.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import List, Optional, Sequence

from pydantic import BaseModel

from checkout_scanner.core import exceptions

from .contracts import DecodingEngine, is_permission_error
from .models import CameraDescriptor
from .tiers import DEFAULT_SYMBOLOGIES, KNOWN_SYMBOLOGIES, QVGA


# Module logger
logger = logging.getLogger(__name__)


class PlatformTraits(BaseModel):
    """Platform facts sampled once per bootstrap."""

    browser: str = "Unknown"
    is_firefox: bool = False
    is_mobile: bool = False
    secure_context: bool = True
    user_agent: Optional[str] = None


_BROWSER_PATTERNS = (
    ("Firefox", re.compile(r"firefox|fxios", re.IGNORECASE)),
    ("Edge", re.compile(r"edg/|edga/|edgios/", re.IGNORECASE)),
    ("Opera", re.compile(r"opr/|opera", re.IGNORECASE)),
    ("Chrome", re.compile(r"chrome|chromium|crios", re.IGNORECASE)),
    ("Safari", re.compile(r"safari", re.IGNORECASE)),
)

_MOBILE_PATTERN = re.compile(r"Mobi|Android", re.IGNORECASE)


def detect_platform(user_agent: Optional[str], secure_context: bool = True) -> PlatformTraits:
    """
    Classify a user-agent string.

    Edge and Opera are checked before Chrome because their user agents
    also contain "Chrome".

    Example:
        >>> detect_platform("Mozilla/5.0 (Android 14; Mobile; rv:125.0) Gecko/125.0 Firefox/125.0").browser
        'Firefox'
    """
    if not user_agent:
        return PlatformTraits(secure_context=secure_context)

    browser = "Unknown"
    for name, pattern in _BROWSER_PATTERNS:
        if pattern.search(user_agent):
            browser = name
            break

    return PlatformTraits(
        browser=browser,
        is_firefox=browser == "Firefox",
        is_mobile=bool(_MOBILE_PATTERN.search(user_agent)),
        secure_context=secure_context,
        user_agent=user_agent,
    )


class CapabilityBootstrap:
    """
    Warms up the engine and caches platform facts.

    Attributes:
        traits: PlatformTraits, sampled on first access
        permission_granted: Result of the early probe, None if not probed
        engine_lock: Serializes camera use between the probe and sessions

    Example:
        >>> bootstrap = CapabilityBootstrap(engine, user_agent=ua)
        >>> bootstrap.warm_up()
        >>> await bootstrap.wait_until_ready(2.0)
    """

    def __init__(
        self,
        engine: DecodingEngine,
        user_agent: Optional[str] = None,
        probe_permission: bool = True,
        symbologies: Sequence[str] = DEFAULT_SYMBOLOGIES,
        secure_context: bool = True,
    ) -> None:
        self._engine = engine
        self._user_agent = user_agent
        self._secure_context = secure_context
        self._probe_enabled = probe_permission
        unknown = [name for name in symbologies if name not in KNOWN_SYMBOLOGIES]
        if unknown:
            raise ValueError(f"Unsupported symbologies: {', '.join(unknown)}")
        self._symbologies = list(symbologies)
        self._traits: Optional[PlatformTraits] = None
        self._load_task: Optional[asyncio.Task] = None
        self._probe_task: Optional[asyncio.Task] = None
        self.permission_granted: Optional[bool] = None
        self.engine_lock = asyncio.Lock()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def traits(self) -> PlatformTraits:
        if self._traits is None:
            self._traits = detect_platform(self._user_agent, self._secure_context)
            if not self._traits.secure_context:
                logger.warning("Client is not in a secure context; browsers may block camera access")
            logger.info(
                f"Platform: {self._traits.browser}"
                f"{' (mobile)' if self._traits.is_mobile else ''}"
            )
        return self._traits

    @property
    def symbologies(self) -> List[str]:
        return list(self._symbologies)

    @property
    def engine_ready(self) -> bool:
        task = self._load_task
        return (
            task is not None
            and task.done()
            and not task.cancelled()
            and task.exception() is None
        )

    # =========================================================================
    # WARM-UP
    # =========================================================================

    def warm_up(self) -> None:
        """Schedule engine loading and the permission probe. Never blocks."""
        _ = self.traits
        self._ensure_loading()

        if self._probe_enabled and self._probe_task is None:
            self._probe_task = asyncio.get_running_loop().create_task(self.probe_permission())

    def _ensure_loading(self) -> asyncio.Task:
        task = self._load_task
        if task is None or (task.done() and (task.cancelled() or task.exception() is not None)):
            if task is not None:
                logger.info("Retrying decoding engine initialization")
            task = asyncio.get_running_loop().create_task(self._load_engine())
            self._load_task = task
        return task

    async def _load_engine(self) -> None:
        try:
            await self._engine.initialize()
        except Exception as e:
            logger.error(f"Decoding engine failed to initialize: {e}")
            raise
        logger.info("✅ Decoding engine ready")

    async def probe_permission(self) -> Optional[bool]:
        """
        Request the rear camera once and release it straight away.

        Returns:
            True if granted, False if denied, None if the probe was
            inconclusive (no device, engine failure, camera busy)
        """
        if self.engine_lock.locked():
            return self.permission_granted

        async with self.engine_lock:
            try:
                await asyncio.shield(self._ensure_loading())
                camera = CameraDescriptor.environment()
                config = QVGA.engine_config(camera, self._symbologies)
                await self._engine.start(camera, config, _ignore, _ignore)
            except asyncio.CancelledError:
                logger.info("Early permission probe cancelled")
                await self._release_probe_stream()
                raise
            except Exception as e:
                if is_permission_error(str(e)):
                    logger.info(f"Early permission probe denied: {e}")
                    self.permission_granted = False
                else:
                    logger.info(f"Early permission probe failed (this is normal): {e}")
                return self.permission_granted

            await self._release_probe_stream()

        logger.info("Early camera permission granted")
        self.permission_granted = True
        return True

    # =========================================================================
    # SESSION SUPPORT
    # =========================================================================

    async def cancel_probe(self) -> None:
        """Abandon a running permission probe so a session can take the camera."""
        task = self._probe_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def wait_until_ready(self, timeout: float) -> None:
        """
        Wait for the decoding engine, re-attempting a failed load.

        Args:
            timeout: Seconds to wait

        Raises:
            ScannerException: LIBRARY_LOAD_TIMEOUT when the engine is not
                ready within the bound or failed to initialize
        """
        task = self._ensure_loading()
        timeout_ms = int(timeout * 1000)

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.error(f"Decoding engine not ready after {timeout_ms}ms")
            raise exceptions.library_load_timeout(timeout_ms) from None
        except Exception as e:
            raise exceptions.library_load_timeout(timeout_ms, reason=str(e)) from e

    async def close(self) -> None:
        """Cancel pending warm-up work."""
        for task in (self._probe_task, self._load_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug(f"Warm-up task ended with error: {e}")

    async def _release_probe_stream(self) -> None:
        try:
            await self._engine.stop()
        except Exception as e:
            logger.warning(f"Failed to release probe stream: {e}")


def _ignore(_message: str) -> None:
    return None
