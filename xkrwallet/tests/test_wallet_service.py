"""
Tests for WalletService.
"""

import asyncio

import pytest
from conftest import (
    PRIMARY_ADDRESS,
    PRIVATE_VIEW_KEY,
    FakeDaemonBackend,
    make_address,
    make_block,
    make_output,
    make_transaction,
)

from xkrwallet.errors import NetworkBlockCountError, NodeDeadError
from xkrwallet.wallet.service import WalletService
from xkrwallet.wallet.synchronizer import SyncOutcome


def chain():
    t1 = make_transaction("t1", outputs=[make_output("pub_0", 100)])
    t2 = make_transaction("t2", outputs=[make_output("pub_1", 25)])
    return [make_block(1), make_block(2, [t1]), make_block(3, [t2])]


def make_service(backend, crypto, codec, settings, **kwargs) -> WalletService:
    return WalletService(
        PRIMARY_ADDRESS,
        PRIVATE_VIEW_KEY,
        backend,
        crypto,
        codec,
        private_spend_key="priv_0",
        settings=settings,
        **kwargs,
    )


async def wait_for_height(service: WalletService, height: int) -> None:
    for _ in range(300):
        if service.get_height() >= height:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"wallet stuck at height {service.get_height()}")


class TestWalletService:
    @pytest.mark.asyncio
    async def test_init(self, crypto, codec, settings):
        service = make_service(FakeDaemonBackend(chain()), crypto, codec, settings)
        await service.init()

        assert service.get_sync_status() == (0, 3, 3)
        assert service.get_primary_address() == PRIMARY_ADDRESS
        await service.close()

    @pytest.mark.asyncio
    async def test_init_empty_network(self, crypto, codec, settings):
        backend = FakeDaemonBackend([])
        backend.info.network_height = 0
        service = make_service(backend, crypto, codec, settings)

        with pytest.raises(NetworkBlockCountError):
            await service.init()

    @pytest.mark.asyncio
    async def test_sync_once(self, crypto, codec, settings):
        settings.blocks_per_tick = 10
        service = make_service(FakeDaemonBackend(chain()), crypto, codec, settings)
        await service.init()

        assert await service.sync_once() is SyncOutcome.PROCESSED
        assert service.get_balance() == (100, 0)
        assert [t.hash for t in service.get_transactions()] == ["t1"]
        assert len(service.get_spendable_transaction_inputs()) == 1

    @pytest.mark.asyncio
    async def test_fetch_blocks_keeps_blocks_stored(self, crypto, codec, settings):
        service = make_service(FakeDaemonBackend(chain()), crypto, codec, settings)
        await service.init()

        blocks, should_sleep = await service.fetch_blocks(2)

        assert [b.block_height for b in blocks] == [1, 2]
        assert not should_sleep
        assert service.get_height() == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, crypto, codec, settings):
        service = make_service(FakeDaemonBackend(chain()), crypto, codec, settings)
        await service.init()

        await service.start()
        assert service.is_syncing
        await wait_for_height(service, 3)
        await service.stop()

        assert not service.is_syncing
        assert service.get_balance() == (100, 0)
        await service.close()

    @pytest.mark.asyncio
    async def test_import_subwallet_rewinds(self, crypto, codec, settings):
        settings.blocks_per_tick = 10
        service = make_service(FakeDaemonBackend(chain()), crypto, codec, settings)
        await service.init()
        await service.sync_once()
        assert service.get_height() == 3

        address = await service.import_subwallet("priv_1", scan_height=1)

        assert address == make_address("pub_1")
        assert service.get_height() == 0

        await service.sync_once()
        assert service.get_balance([address]) == (25, 0)
        assert service.get_balance() == (125, 0)

    @pytest.mark.asyncio
    async def test_add_and_delete_subwallet(self, crypto, codec, settings):
        service = make_service(FakeDaemonBackend(chain()), crypto, codec, settings)
        await service.init()

        address = await service.add_subwallet()
        assert service.subwallets.get_primary_subwallet().address == PRIMARY_ADDRESS
        assert service.subwallets.subwallets["pub_gen1"].sync_start_height == 3
        assert address in service.get_addresses()

        service.delete_subwallet(address)
        assert service.get_addresses() == [PRIMARY_ADDRESS]

    @pytest.mark.asyncio
    async def test_reset_while_syncing(self, crypto, codec, settings):
        service = make_service(FakeDaemonBackend(chain()), crypto, codec, settings)
        await service.init()
        await service.start()
        await wait_for_height(service, 3)

        await service.reset()
        assert service.is_syncing

        await wait_for_height(service, 3)
        await service.stop()

        assert [t.hash for t in service.get_transactions()] == ["t1"]
        assert service.get_unconfirmed_transactions() == []

    @pytest.mark.asyncio
    async def test_wait_reports_dead_daemon(self, crypto, codec, settings):
        backend = FakeDaemonBackend(chain())
        service = make_service(backend, crypto, codec, settings)
        await service.init()

        backend.fail = True
        service.synchronizer.last_downloaded_blocks -= settings.max_last_fetched_block_interval + 1
        await service.start()

        with pytest.raises(NodeDeadError):
            await asyncio.wait_for(service.wait(), timeout=2)

        # Stopping a dead loop is not an error
        await service.stop()
