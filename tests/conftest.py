import os
import tempfile

import pytest

# Keep test runs from writing log files into the working tree.
os.environ.setdefault("CHATWEAVE_LOG_DIR", tempfile.mkdtemp(prefix="chatweave-logs-"))
os.environ.setdefault("CHATWEAVE_LOG_LEVEL", "WARNING")

from tests.helpers import RecordingSink  # noqa: E402


@pytest.fixture
def sink():
    return RecordingSink()
