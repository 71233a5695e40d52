"""
==============================================================================
Pytest Configuration and Fixtures
==============================================================================

Provides a scripted decoding engine, recording renderer and cart, a
temporary product catalog, and a session controller wired to all of them.

==============================================================================
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from checkout_scanner.catalog import ProductCatalog, init_catalog
from checkout_scanner.config import Settings
from checkout_scanner.core.exceptions import ScannerException
from checkout_scanner.scanner import (
    CameraDescriptor,
    DecodingEngine,
    EngineError,
    ScannerRenderer,
    SessionController,
    UIEvent,
)


# ============================================================================
# TEST DOUBLES
# ============================================================================

class FakeEngine(DecodingEngine):
    """
    Scripted decoding engine.

    Tier rejections, permission denial, slow or failing initialization, a
    slow ``start`` and a gate holding ``start`` open are all configurable
    per test.
    """

    def __init__(
        self,
        cameras: Optional[List[CameraDescriptor]] = None,
        failing_tiers: Tuple[str, ...] = (),
        deny_permission: bool = False,
        init_delay: float = 0.0,
        init_error: Optional[Exception] = None,
    ) -> None:
        if cameras is None:
            cameras = [
                CameraDescriptor(id="cam-back", label="Back"),
                CameraDescriptor(id="cam-front", label="Front"),
            ]
        self.cameras = cameras
        self.failing_tiers = set(failing_tiers)
        self.deny_permission = deny_permission
        self.init_delay = init_delay
        self.init_error = init_error
        self.torch_supported = False
        self.constraint_error: Optional[Exception] = None
        self.enumeration_error: Optional[Exception] = None
        self.start_gate: Optional[asyncio.Event] = None
        self.start_delay = 0.0
        self.start_entered = asyncio.Event()

        self.start_calls: List[Tuple[CameraDescriptor, Dict[str, Any]]] = []
        self.stop_calls = 0
        self.constraints: List[Dict[str, Any]] = []
        self.active = False
        self.paused = False
        self.on_decoded = None
        self.on_frame_error = None

    @property
    def tiers_tried(self) -> List[str]:
        return [config["tier"] for _, config in self.start_calls]

    @property
    def cameras_started(self) -> List[str]:
        return [camera.id for camera, _ in self.start_calls]

    async def initialize(self) -> None:
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        if self.init_error is not None:
            raise self.init_error

    async def start(self, camera, config, on_decoded, on_frame_error) -> None:
        self.start_calls.append((camera, config))
        self.start_entered.set()
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.deny_permission:
            raise EngineError("NotAllowedError: Permission denied")
        if config["tier"] in self.failing_tiers:
            raise EngineError(f"OverconstrainedError: {config['tier']} not supported")

        self.active = True
        self.paused = False
        self.on_decoded = on_decoded
        self.on_frame_error = on_frame_error

    async def stop(self) -> None:
        self.stop_calls += 1
        self.active = False

    def pause(self, pause_video: bool) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    async def apply_video_constraints(self, constraints: Dict[str, Any]) -> None:
        self.constraints.append(constraints)
        if self.constraint_error is not None:
            raise self.constraint_error
        advanced = constraints.get("advanced", [])
        if any("torch" in entry for entry in advanced) and not self.torch_supported:
            raise EngineError("NotSupportedError: torch")

    async def get_cameras(self) -> List[CameraDescriptor]:
        if self.enumeration_error is not None:
            raise self.enumeration_error
        return list(self.cameras)

    def emit(self, text: str) -> None:
        """Simulate the engine decoding ``text``."""
        self.on_decoded(text)


class RecordingRenderer(ScannerRenderer):
    """Renderer that records every command for assertions."""

    def __init__(self) -> None:
        self.events: List[UIEvent] = []
        self.errors: List[ScannerException] = []
        self.retry_actions = []
        self.feedback: List[str] = []
        self.guides = 0

    def show_guide(self) -> None:
        self.guides += 1

    def show_error(self, error: ScannerException) -> None:
        self.errors.append(error)

    def show_retry(self, action) -> None:
        self.retry_actions.append(action)

    def play_feedback(self, kind: str) -> None:
        self.feedback.append(kind)

    def emit(self, event: UIEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[UIEvent]:
        return [event for event in self.events if event.type == event_type]

    def scan_statuses(self) -> List[str]:
        return [event.payload["status"] for event in self.of_type("scan_result")]


class RecordingCart:
    """Cart sink that records each add_item call."""

    def __init__(self) -> None:
        self.items: List[Tuple[Any, int]] = []

    def add_item(self, product, quantity: int) -> None:
        self.items.append((product, quantity))

    @property
    def barcodes(self) -> List[str]:
        return [product.barcode for product, _ in self.items]


async def settle(rounds: int = 5) -> None:
    """Let scheduled callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ============================================================================
# CATALOG FIXTURES
# ============================================================================

SAMPLE_PRODUCTS = {
    "personal_care": {
        "Soap": [
            {"name": "Lifebuoy Total 10 125g", "barcode": "8901030875071", "price": 38.0},
            {"name": "Dove Cream Beauty Bar 100g", "barcode": 8901030704203, "price": 60.0},
        ],
    },
    "grocery": {
        "Biscuits": [
            {"name": "Parle-G Glucose Biscuits 100g", "upc": "8901063010017", "price": 10.0},
        ],
        "Stationery": [
            {"name": "Reynolds Ball Pen Blue", "barcode": "96385074"},
        ],
    },
}


@pytest.fixture
def products_file(tmp_path: Path) -> Path:
    """Write the sample catalog to a temporary JSON file."""
    path = tmp_path / "products.json"
    path.write_text(json.dumps(SAMPLE_PRODUCTS), encoding="utf-8")
    return path


@pytest.fixture
def catalog(products_file: Path) -> ProductCatalog:
    return ProductCatalog(products_file)


# ============================================================================
# SESSION FIXTURES
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with short delays so timer-driven paths finish quickly."""
    return Settings(
        _env_file=None,
        debug=False,
        resume_delay_ms=20,
        library_load_timeout_ms=200,
        early_permission_probe=False,
    )


@pytest.fixture
def make_engine():
    """The FakeEngine class, for tests that need a custom engine."""
    return FakeEngine


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def cart() -> RecordingCart:
    return RecordingCart()


@pytest.fixture
async def controller(engine, catalog, cart, renderer, settings):
    """SessionController wired to the fakes; closed after the test."""
    controller = SessionController(
        engine, catalog, cart, renderer=renderer, settings=settings
    )
    yield controller
    await controller.close()


# ============================================================================
# API FIXTURES
# ============================================================================

@pytest.fixture
def client(products_file: Path, monkeypatch) -> Generator[TestClient, None, None]:
    """Test client with the sample catalog and a fake engine per connection."""
    from checkout_scanner.main import app

    engines: List[FakeEngine] = []

    def engine_factory(settings: Settings) -> FakeEngine:
        engine = FakeEngine()
        engines.append(engine)
        return engine

    monkeypatch.setattr(app.state, "engine_factory", engine_factory)

    with TestClient(app) as test_client:
        init_catalog(products_file)
        test_client.engines = engines
        yield test_client
