import json
import os
import pathlib
import sys
from typing import Callable, List

import httpx
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import resource_tx`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from resource_tx.config import TransferContext  # noqa: E402
from resource_tx.evm import PermitInfo  # noqa: E402
from resource_tx.keys import Keychain  # noqa: E402
from resource_tx.merkle import MerkleTree  # noqa: E402
from resource_tx.proving import MockProvingBackend  # noqa: E402
from resource_tx.resolver import HttpxTransport, MerklePathResolver  # noqa: E402
from resource_tx.resource import TOKEN_TRANSFER_LOGIC_REF  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless RESOURCE_TX_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('RESOURCE_TX_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set RESOURCE_TX_RUN_SLOW=1 to enable'))


# =============================================================================
# PROTOCOL FIXTURES
# =============================================================================

FORWARDER = bytes.fromhex("11" * 20)
LEGACY_FORWARDER = bytes.fromhex("22" * 20)
TOKEN = bytes.fromhex("1c7d4b196cb0c7b01d743fbc6116a902379c7238")
COMMITMENT_TREE_DEPTH = 8
INDEXER_URL = "http://indexer.test"


@pytest.fixture
def context() -> TransferContext:
    return TransferContext(
        forwarder_address=FORWARDER,
        legacy_forwarder_address=LEGACY_FORWARDER,
        logic_ref=TOKEN_TRANSFER_LOGIC_REF,
    )


@pytest.fixture
def token() -> bytes:
    return TOKEN


@pytest.fixture
def alice() -> Keychain:
    return Keychain.generate(evm_address=bytes.fromhex("aa" * 20))


@pytest.fixture
def bob() -> Keychain:
    return Keychain.generate(evm_address=bytes.fromhex("bb" * 20))


@pytest.fixture
def backend() -> MockProvingBackend:
    return MockProvingBackend()


def sign_permit(root: bytes) -> PermitInfo:
    """Permit bound to the action tree root; settlement checks the signature, not us."""
    return PermitInfo.from_values(
        nonce=int.from_bytes(root[:8], "big"),
        deadline=4_000_000_000,
        signature=root + root + b"\x1b",
    )


@pytest.fixture
def permit_signer() -> Callable[[bytes], PermitInfo]:
    return sign_permit


# =============================================================================
# IN-MEMORY LEDGER AND INDEXER
# =============================================================================

class InMemoryLedger:
    """
    Commitment tree of settled resources, served in the indexer's HTTP format.

    Unknown commitments answer 500, as the real indexer does.
    """

    def __init__(self, depth: int = COMMITMENT_TREE_DEPTH):
        self.depth = depth
        self.commitments: List[bytes] = []
        self.requests: List[str] = []

    def add(self, commitment: bytes) -> None:
        self.commitments.append(commitment)

    def settle(self, transaction) -> None:
        for commitment in transaction.commitments():
            self.add(commitment)

    def tree(self) -> MerkleTree:
        return MerkleTree(self.commitments, self.depth)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        prefix = "/generate_proof/0x"
        if not request.url.path.startswith(prefix):
            return httpx.Response(404)
        commitment = bytes.fromhex(request.url.path[len(prefix):])
        if commitment not in self.commitments:
            return httpx.Response(500, text="commitment not found")
        tree = self.tree()
        path = tree.generate_path(commitment)
        body = {
            "root": tree.root().hex(),
            # the indexer flags the running node, not the sibling
            "frontiers": [
                {"neighbour": node.sibling.hex(), "is_left": not node.is_left}
                for node in path.nodes
            ],
        }
        return httpx.Response(200, content=json.dumps(body).encode())


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def resolver(ledger: InMemoryLedger):
    client = httpx.Client(transport=httpx.MockTransport(ledger.handler))
    with MerklePathResolver(INDEXER_URL, transport=HttpxTransport(client), sleep=lambda s: None) as r:
        yield r
    client.close()
