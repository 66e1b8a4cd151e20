import pytest
from manifests import manifest_bytes


@pytest.fixture
def repo1_manifest() -> bytes:
    return manifest_bytes(
        "Repo1",
        [{"name": "Alpha", "bundleIdentifier": "com.x.alphaBeta"}],
    )
