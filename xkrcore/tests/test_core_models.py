"""
Tests for xkrcore.models
"""

import pytest
from pydantic import ValidationError

from xkrcore.models import (
    Block,
    NodeFee,
    NodeInfo,
    SendTransactionResult,
    SynchronizationStatus,
    WalletSyncData,
    WalletSyncResponse,
)


def test_node_info_from_daemon_json():
    info = NodeInfo.model_validate(
        {
            "height": 1000,
            "network_height": 1001,
            "incoming_connections_count": 3,
            "outgoing_connections_count": 8,
            "hashrate": 123456,
            "alt_blocks_count": 0,
        }
    )
    assert info.height == 1000
    assert info.network_height == 1001
    assert info.peer_count == 11


def test_node_info_rejects_negative_height():
    with pytest.raises(ValidationError):
        NodeInfo(height=-1)


def test_node_fee_defaults():
    fee = NodeFee.model_validate({})
    assert fee.address == ""
    assert fee.amount == 0


def test_block_from_sync_json():
    block = Block.model_validate(
        {
            "blockHash": "aa" * 32,
            "blockHeight": 42,
            "blockTimestamp": 1_600_000_000,
            "coinbaseTX": {
                "outputs": [{"key": "bb" * 32, "amount": 100}],
                "hash": "cc" * 32,
                "txPublicKey": "dd" * 32,
                "unlockTime": 52,
            },
            "transactions": [
                {
                    "outputs": [{"key": "ee" * 32, "amount": 5}],
                    "hash": "ff" * 32,
                    "txPublicKey": "11" * 32,
                    "unlockTime": 0,
                    "paymentID": "",
                    "inputs": [{"amount": 10, "key_offsets": [1, 2, 3], "k_image": "22" * 32}],
                }
            ],
        }
    )
    assert block.block_height == 42
    assert block.coinbase_transaction is not None
    assert block.coinbase_transaction.unlock_time == 52
    tx = block.transactions[0]
    assert tx.key_inputs[0].key_image == "22" * 32
    assert tx.key_outputs[0].global_index is None


def test_wallet_sync_data_serializes_with_daemon_keys():
    data = WalletSyncData(
        block_hash_checkpoints=["ab"],
        start_height=10,
        start_timestamp=0,
        block_count=50,
        skip_coinbase_transactions=False,
    )
    assert data.model_dump(by_alias=True) == {
        "checkpoints": ["ab"],
        "height": 10,
        "timestamp": 0,
        "count": 50,
        "skipCoinbaseTransactions": False,
    }


def test_wallet_sync_response_top_block():
    response = WalletSyncResponse.model_validate(
        {"items": [], "synced": True, "topBlock": {"hash": "ab", "height": 99}}
    )
    assert response.synced
    assert response.top_block is not None
    assert response.top_block.height == 99


def test_send_transaction_result():
    assert SendTransactionResult(status="OK").success
    assert not SendTransactionResult(status="Failed", error="double spend").success


class TestSynchronizationStatus:
    def test_store_block_hash(self):
        status = SynchronizationStatus()
        status.store_block_hash(1, "a")
        status.store_block_hash(2, "b")
        assert status.last_known_block_height == 2
        assert status.last_known_block_hashes == ["b", "a"]

    def test_repeat_of_newest_hash_ignored(self):
        status = SynchronizationStatus()
        status.store_block_hash(1, "a")
        status.store_block_hash(1, "a")
        assert status.last_known_block_hashes == ["a"]

    def test_recent_hashes_capped(self):
        status = SynchronizationStatus()
        for height in range(1, 61):
            status.store_block_hash(height, f"h{height}")
        assert len(status.last_known_block_hashes) == 50
        assert status.last_known_block_hashes[0] == "h60"
        assert status.last_known_block_hashes[-1] == "h11"

    def test_infrequent_checkpoints(self):
        status = SynchronizationStatus()
        status.store_block_hash(4999, "x")
        status.store_block_hash(5000, "y")
        status.store_block_hash(10000, "z")
        assert status.block_hash_checkpoints == ["z", "y"]
        assert status.last_saved_checkpoint_at == 10000
        assert status.get_processed_block_hash_checkpoints() == ["z", "y", "x", "z", "y"]

    def test_json_round_trip(self):
        status = SynchronizationStatus()
        for height in range(4990, 5010):
            status.store_block_hash(height, f"hash{height}")

        restored = SynchronizationStatus.model_validate_json(status.model_dump_json())
        assert restored == status
        assert restored.get_processed_block_hash_checkpoints() == (
            status.get_processed_block_hash_checkpoints()
        )
