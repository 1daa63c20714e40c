import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from gateway_library.events import GatewayEvents  # noqa: E402
from gateway_library.storage import CredentialStore, MemoryKeyValueStore  # noqa: E402
from gateway_library.types import CredentialRecord, now_ms  # noqa: E402


FIXTURES_DIR = Path(__file__).parent / "fixtures"


def make_record(label: str, **overrides) -> CredentialRecord:
    defaults = dict(
        access_token=f"sk-ant-oat01-{label}-access-token",
        refresh_token=f"sk-ant-ort01-{label}-refresh-token",
        expires_at=now_ms() + 60 * 60 * 1000,
    )
    defaults.update(overrides)
    return CredentialRecord(label=label, **defaults)


def store_with(*records: CredentialRecord) -> CredentialStore:
    return CredentialStore(
        MemoryKeyValueStore({f"key:{r.label}": r.to_dict() for r in records})
    )


@pytest.fixture
def events() -> GatewayEvents:
    return GatewayEvents()


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore(MemoryKeyValueStore())
