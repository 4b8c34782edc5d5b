import sys
from pathlib import Path
import os

# Ensure repo root on sys.path for imports from anywhere in tests tree.
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("CAMPFIRE_STORE_BACKEND", "memory")

from campfire.asset_store.repository import InMemoryAssetStore  # noqa: E402
from campfire.asset_store.state import set_asset_store  # noqa: E402

set_asset_store(InMemoryAssetStore())
