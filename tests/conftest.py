"""Pytest configuration: pin settings to local, side-effect free values."""

import os
import sys
from pathlib import Path

_SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))

# Firestore クライアントが誤って本番へ接続しないよう、エミュレータ向けに固定する。
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("FIRESTORE_EMULATOR_HOST", "localhost:8080")
os.environ.setdefault("FIRESTORE_PROJECT_ID", "test-project")
os.environ.setdefault("LOCAL_CACHE_PATH", ":memory:")
os.environ.setdefault("WRITE_RETRY_ATTEMPTS", "0")
