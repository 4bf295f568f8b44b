"""
Pytest configuration and shared fixtures for the inventory engine test suite.
"""
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


class FakeClock:
    """Settable clock injected into the engine so dates are deterministic."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="inventory_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories and default flags."""
    from config import Config

    config = Config()
    config.data_dir = temp_dir / "data"
    config.stock_db_path = temp_dir / "data" / "stock.db"
    config.default_currency = "EUR"
    config.po_list_limit = 100
    config.expiring_soon_days = 30
    config.batch_tracking = True
    config.cost_averaging = True
    config.per_shop_queues = True
    return config


@pytest.fixture
def store(test_config) -> "DocumentStore":
    from inventory.document_store import DocumentStore
    return DocumentStore(test_config.data_dir)


@pytest.fixture
def workflow(store, clock) -> "PurchaseOrderWorkflow":
    from inventory.purchase_orders import PurchaseOrderWorkflow
    return PurchaseOrderWorkflow(store, default_currency="EUR", clock=clock)


@pytest.fixture
def ledger(store, clock) -> "LotLedger":
    from inventory.lot_ledger import LotLedger
    return LotLedger(store, clock=clock)


@pytest.fixture
def stock_repo(test_config) -> "StockRepository":
    from inventory.stock_repository import StockRepository
    return StockRepository(test_config.stock_db_path)


@pytest.fixture
def engine(test_config, clock) -> "InventoryEngine":
    from inventory.engine import InventoryEngine
    return InventoryEngine(test_config, clock=clock)


@pytest.fixture
def sample_po_data() -> dict:
    """Two-line order: 100 g at 1.00 and 50 g at 1.00, subtotal 150."""
    return {
        "supplier_id": "sup_1",
        "supplier_name": "Herboristerie du Sud",
        "lines": [
            {"product_id": "p1", "product_name": "Chamomile", "ordered_grams": 100, "price_per_gram": 1.0},
            {"product_id": "p2", "product_name": "Verbena", "grams": 50, "price_per_gram": 1.0},
        ],
    }


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
