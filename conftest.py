import sys
from unittest.mock import MagicMock

# Keep the Anki storage backend import-safe outside Anki. No collection is
# open until a test installs one on `aqt.mw`.
mock_aqt = MagicMock()
mock_aqt.mw = None

sys.modules["aqt"] = mock_aqt
