"""
Core data models using Pydantic for validation and serialization.

Daemon responses use camelCase or snake_case keys depending on the endpoint;
fields are snake_case here with the daemon's key as the alias.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from xkrcore.constants import BLOCK_HASH_CHECKPOINTS_INTERVAL, LAST_KNOWN_BLOCK_HASHES_SIZE


class DaemonModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class NodeInfo(DaemonModel):
    """Response of GET /info."""

    height: int = Field(0, ge=0)
    network_height: int = Field(0, ge=0)
    incoming_connections_count: int = Field(0, ge=0)
    outgoing_connections_count: int = Field(0, ge=0)
    hashrate: int = Field(0, ge=0)
    synced: bool = False
    version: str | None = None

    @property
    def peer_count(self) -> int:
        return self.incoming_connections_count + self.outgoing_connections_count


class NodeFee(DaemonModel):
    """Response of GET /fee. An empty address or zero amount means no fee."""

    address: str = ""
    amount: int = 0
    status: str = ""


class KeyOutput(DaemonModel):
    key: str
    amount: int = Field(..., ge=0)
    global_index: int | None = Field(default=None, alias="globalIndex")


class KeyInput(DaemonModel):
    amount: int = Field(..., ge=0)
    key_offsets: list[int] = Field(default_factory=list)
    key_image: str = Field(..., alias="k_image")


class RawCoinbaseTransaction(DaemonModel):
    key_outputs: list[KeyOutput] = Field(default_factory=list, alias="outputs")
    hash: str
    transaction_public_key: str = Field(..., alias="txPublicKey")
    unlock_time: int = Field(0, alias="unlockTime")


class RawTransaction(RawCoinbaseTransaction):
    payment_id: str = Field("", alias="paymentID")
    key_inputs: list[KeyInput] = Field(default_factory=list, alias="inputs")


class Block(DaemonModel):
    block_hash: str = Field(..., alias="blockHash")
    block_height: int = Field(..., ge=0, alias="blockHeight")
    block_timestamp: int = Field(0, alias="blockTimestamp")
    coinbase_transaction: RawCoinbaseTransaction | None = Field(default=None, alias="coinbaseTX")
    transactions: list[RawTransaction] = Field(default_factory=list)


class TopBlock(DaemonModel):
    hash: str
    height: int = Field(..., ge=0)


class WalletSyncData(DaemonModel):
    """Request body of POST /sync."""

    block_hash_checkpoints: list[str] = Field(default_factory=list, alias="checkpoints")
    start_height: int = Field(0, ge=0, alias="height")
    start_timestamp: int = Field(0, ge=0, alias="timestamp")
    block_count: int = Field(100, ge=1, alias="count")
    skip_coinbase_transactions: bool = Field(True, alias="skipCoinbaseTransactions")


class WalletSyncResponse(DaemonModel):
    items: list[Block] = Field(default_factory=list)
    synced: bool = False
    top_block: TopBlock | None = Field(default=None, alias="topBlock")


class RandomOutput(DaemonModel):
    index: int = Field(..., ge=0)
    key: str


class RandomOutputs(DaemonModel):
    """One entry of POST /indexes/random: decoys for a single amount."""

    amount: int = Field(..., ge=0)
    outputs: list[RandomOutput] = Field(default_factory=list)


class GlobalIndexes(DaemonModel):
    """One entry of GET /indexes/{start}/{end}."""

    hash: str
    indexes: list[int] = Field(default_factory=list)


class SendTransactionResult(DaemonModel):
    status: str = ""
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "OK"


class SynchronizationStatus(BaseModel):
    """
    Checkpoints of processed blocks.

    Hashes are kept newest first. The recent list holds the last
    LAST_KNOWN_BLOCK_HASHES_SIZE blocks; an infrequent checkpoint is kept
    every BLOCK_HASH_CHECKPOINTS_INTERVAL blocks so a deep fork can still be
    resolved. Round-trips through model_dump_json / model_validate_json.
    """

    block_hash_checkpoints: list[str] = Field(default_factory=list)
    last_known_block_hashes: list[str] = Field(default_factory=list)
    last_known_block_height: int = Field(0, ge=0)
    last_saved_checkpoint_at: int = Field(0, ge=0)

    def store_block_hash(self, block_height: int, block_hash: str) -> None:
        self.last_known_block_height = block_height

        # Already stored
        if self.last_known_block_hashes and self.last_known_block_hashes[0] == block_hash:
            return

        if block_height % BLOCK_HASH_CHECKPOINTS_INTERVAL == 0:
            self.block_hash_checkpoints.insert(0, block_hash)
            self.last_saved_checkpoint_at = block_height

        self.last_known_block_hashes.insert(0, block_hash)

        if len(self.last_known_block_hashes) > LAST_KNOWN_BLOCK_HASHES_SIZE:
            self.last_known_block_hashes.pop()

    def get_processed_block_hash_checkpoints(self) -> list[str]:
        """Recent hashes followed by the infrequent checkpoints, newest first."""
        return self.last_known_block_hashes + self.block_hash_checkpoints
