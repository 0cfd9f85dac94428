"""
Shared fixtures: deterministic stand-ins for the crypto provider, the
address codec and the daemon.

Keys are plain strings. An output key "out:<spend key>:<n>" underives to
<spend key>, any other output key belongs to nobody. Key images are derived
from the transaction public key and output index, so they are unique per
output.
"""

from __future__ import annotations

import pytest

from xkrcore.models import (
    Block,
    GlobalIndexes,
    KeyInput,
    KeyOutput,
    NodeFee,
    NodeInfo,
    RandomOutputs,
    RawCoinbaseTransaction,
    RawTransaction,
    SendTransactionResult,
    TopBlock,
    WalletSyncData,
    WalletSyncResponse,
)
from xkrwallet.backends.base import DaemonBackend
from xkrwallet.config import Settings
from xkrwallet.daemon import Daemon
from xkrwallet.errors import DaemonRequestError
from xkrwallet.wallet.crypto import AddressCodec, CryptoProvider
from xkrwallet.wallet.models import KeyPair
from xkrwallet.wallet.subwallets import SubWallets

PUBLIC_VIEW_KEY = "pubview"
PRIVATE_VIEW_KEY = "privview"
WORDS = ["apple", "banana", "cherry", "date", "elder"]


def make_address(public_spend_key: str) -> str:
    return f"XKR{public_spend_key}.{PUBLIC_VIEW_KEY}"


PRIMARY_ADDRESS = make_address("pub_0")


class FakeAddressCodec(AddressCodec):
    def address_to_keys(self, address: str) -> tuple[str, str]:
        if not address.startswith("XKR") or "." not in address:
            raise ValueError("bad prefix")
        public_spend_key, public_view_key = address[3:].split(".", 1)
        return public_spend_key, public_view_key

    def keys_to_address(self, public_spend_key: str, public_view_key: str) -> str:
        return f"XKR{public_spend_key}.{public_view_key}"

    def is_valid_mnemonic_word(self, word: str) -> bool:
        return word in WORDS

    def address_from_mnemonic(self, words: list[str]) -> str:
        # Checksum word is the first word repeated
        if words[-1] != words[0]:
            raise ValueError("checksum mismatch")
        return PRIMARY_ADDRESS


class FakeCryptoProvider(CryptoProvider):
    def __init__(self) -> None:
        self.generated = 0

    async def generate_key_derivation(self, transaction_public_key: str, private_view_key: str) -> str:
        if transaction_public_key == "bad":
            raise ValueError("not a point")
        return f"deriv:{transaction_public_key}"

    async def underive_public_key(self, derivation: str, output_index: int, output_key: str) -> str:
        parts = output_key.split(":")
        if len(parts) == 3 and parts[0] == "out":
            return parts[1]
        return "nobody"

    async def generate_key_image(
        self, public_spend_key: str, private_spend_key: str, output_index: int, derivation: str
    ) -> tuple[str, str]:
        return f"ki:{derivation}:{output_index}", f"eph:{derivation}:{output_index}"

    async def generate_keys(self) -> KeyPair:
        self.generated += 1
        return KeyPair(public_key=f"pub_gen{self.generated}", private_key=f"priv_gen{self.generated}")

    async def secret_key_to_public_key(self, private_key: str) -> str:
        return private_key.replace("priv_", "pub_", 1)

    async def check_key(self, public_key: str) -> bool:
        return public_key.startswith("pub_")


class FakeDaemonBackend(DaemonBackend):
    """
    In-memory daemon serving a list of blocks.

    /sync continues after the newest checkpoint it recognizes, otherwise from
    the requested height or timestamp. Set `fail` to make every request raise.
    """

    def __init__(self, blocks: list[Block] | None = None, height: int | None = None):
        self.blocks: list[Block] = blocks or []
        self.info = NodeInfo(height=height or len(self.blocks), network_height=(height or len(self.blocks)) + 1)
        self.fee = NodeFee()
        self.not_found: set[str] = set()
        self.global_indexes: dict[int, list[GlobalIndexes]] = {}
        self.sync_requests: list[WalletSyncData] = []
        self.sent: list[str] = []
        self.fail = False
        self.reachable = True

    def _check(self, endpoint: str) -> None:
        if self.fail:
            raise DaemonRequestError(endpoint, "connection refused")

    async def get_info(self) -> NodeInfo:
        self._check("info")
        return self.info

    async def get_fee(self) -> NodeFee:
        self._check("fee")
        return self.fee

    async def get_wallet_sync_data(self, request: WalletSyncData) -> WalletSyncResponse:
        self._check("sync")
        self.sync_requests.append(request)

        start = None
        for block in reversed(self.blocks):
            if block.block_hash in request.block_hash_checkpoints:
                start = block.block_height + 1
                break

        if start is None:
            if request.start_timestamp:
                start = next(
                    (b.block_height for b in self.blocks if b.block_timestamp >= request.start_timestamp),
                    len(self.blocks),
                )
            else:
                start = request.start_height

        items = [b for b in self.blocks if b.block_height >= start][: request.block_count]

        if not items:
            top = self.blocks[-1] if self.blocks else None
            return WalletSyncResponse(
                items=[],
                synced=True,
                top_block=TopBlock(hash=top.block_hash, height=top.block_height) if top else None,
            )

        return WalletSyncResponse(items=items, synced=False)

    async def get_global_indexes_for_range(self, start_height: int, end_height: int) -> list[GlobalIndexes]:
        self._check("indexes")
        result = []
        for height in range(start_height, end_height):
            result.extend(self.global_indexes.get(height, []))
        return result

    async def get_transaction_status(self, transaction_hashes: list[str]) -> list[str]:
        self._check("transaction/status")
        return [h for h in transaction_hashes if h in self.not_found]

    async def get_random_outputs(self, amounts: list[int], count: int) -> list[RandomOutputs]:
        self._check("indexes/random")
        return []

    async def send_raw_transaction(self, raw_transaction: str) -> SendTransactionResult:
        self._check("sendrawtransaction")
        self.sent.append(raw_transaction)
        return SendTransactionResult(status="OK")

    async def is_reachable(self) -> bool:
        return self.reachable and not self.fail


def make_output(owner: str, amount: int, n: int = 0, global_index: int | None = 0) -> KeyOutput:
    return KeyOutput(key=f"out:{owner}:{n}", amount=amount, global_index=global_index)


def make_transaction(
    tx_hash: str,
    outputs: list[KeyOutput] | None = None,
    inputs: list[KeyInput] | None = None,
    unlock_time: int = 0,
    payment_id: str = "",
) -> RawTransaction:
    return RawTransaction(
        hash=tx_hash,
        transaction_public_key=f"txpub_{tx_hash}",
        key_outputs=outputs or [],
        key_inputs=inputs or [],
        unlock_time=unlock_time,
        payment_id=payment_id,
    )


def make_block(
    height: int,
    transactions: list[RawTransaction] | None = None,
    coinbase: RawCoinbaseTransaction | None = None,
    block_hash: str | None = None,
    timestamp: int | None = None,
) -> Block:
    return Block(
        block_hash=block_hash or f"hash{height}",
        block_height=height,
        block_timestamp=timestamp if timestamp is not None else 1_600_000_000 + height * 90,
        coinbase_transaction=coinbase,
        transactions=transactions or [],
    )


def key_image_of(tx_hash: str, output_index: int = 0) -> str:
    """Key image FakeCryptoProvider gives output `output_index` of `tx_hash`."""
    return f"ki:deriv:txpub_{tx_hash}:{output_index}"


@pytest.fixture
def codec() -> FakeAddressCodec:
    return FakeAddressCodec()


@pytest.fixture
def crypto() -> FakeCryptoProvider:
    return FakeCryptoProvider()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        block_store_limit=0,
        sync_sleep_interval=0.01,
        daemon_update_interval=3600,
        locked_transactions_check_interval=1_000_000,
    )


@pytest.fixture
def backend() -> FakeDaemonBackend:
    return FakeDaemonBackend()


@pytest.fixture
def daemon(backend: FakeDaemonBackend, settings: Settings, codec: FakeAddressCodec) -> Daemon:
    return Daemon(backend, settings, codec)


@pytest.fixture
def subwallets(codec: FakeAddressCodec, crypto: FakeCryptoProvider) -> SubWallets:
    return SubWallets(
        PRIMARY_ADDRESS,
        scan_height=0,
        new_wallet=False,
        private_view_key=PRIVATE_VIEW_KEY,
        address_codec=codec,
        crypto=crypto,
        private_spend_key="priv_0",
    )


@pytest.fixture
def view_subwallets(codec: FakeAddressCodec, crypto: FakeCryptoProvider) -> SubWallets:
    return SubWallets(
        PRIMARY_ADDRESS,
        scan_height=0,
        new_wallet=False,
        private_view_key=PRIVATE_VIEW_KEY,
        address_codec=codec,
        crypto=crypto,
    )
