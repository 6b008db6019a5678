import sys
import os

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from utils.error_manager import ErrorManager


@pytest.fixture(autouse=True)
def isolated_error_log(tmp_path, monkeypatch):
    """Keep ErrorManager writes inside the test's tmp dir."""
    monkeypatch.setattr(ErrorManager, "LOG_FILE", str(tmp_path / "api_errors.log"))
    return tmp_path / "api_errors.log"
