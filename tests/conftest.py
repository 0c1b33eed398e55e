import pytest

from seller_monitor.db import SellerStore

from .helpers import Timeline


@pytest.fixture
def store(tmp_path):
    s = SellerStore(str(tmp_path / "data" / "sellers.db"))
    s.init_db()
    return s


@pytest.fixture
def timeline():
    return Timeline()
