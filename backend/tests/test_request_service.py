import asyncio

import pytest

from chainweave_server.models.nft_request import RequestStatus
from chainweave_server.services.blockchain import BlockchainService
from chainweave_server.services.requests import RequestService, generate_request_id
from tests.fakes import OTHER_WALLET, WALLET, FakeGateway, FakePipeline

PROMPT = 'a lighthouse in a storm at dusk'


@pytest.fixture
def service(store, users, registered_user, gateway):
    return RequestService(
        store, users, blockchain=BlockchainService(gateway, store), pipeline=FakePipeline(fail_on='refuse'),
    )


async def _created(service, prompt=PROMPT):
    result = await service.create_request(WALLET, prompt, 7001)
    assert result.success, result.error
    return result.data['request_id']


def test_request_id_is_deterministic_sha256():
    rid = generate_request_id(WALLET, PROMPT, 1_700_000_000_000)
    assert rid == generate_request_id(WALLET, PROMPT, 1_700_000_000_000)
    assert rid.startswith('0x') and len(rid) == 66
    assert rid != generate_request_id(WALLET, PROMPT, 1_700_000_000_001)


class TestCreate:

    @pytest.mark.asyncio
    async def test_creates_pending_request(self, service, registered_user):
        result = await service.create_request(WALLET.upper().replace('0X', '0x'), f"  {PROMPT}  ", 84532)
        assert result.success
        assert result.data['status'] == 'pending'
        assert result.data['prompt'] == PROMPT
        assert result.data['wallet_address'] == WALLET
        assert result.data['user_id'] == registered_user['id']

    @pytest.mark.asyncio
    @pytest.mark.parametrize('prompt', ['too short', 'x' * 501])
    async def test_prompt_length_bounds(self, service, prompt):
        result = await service.create_request(WALLET, prompt, 7001)
        assert not result.success
        assert result.code == 'invalid'

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        result = await service.create_request(OTHER_WALLET, PROMPT, 7001)
        assert not result.success
        assert result.code == 'not_found'
        assert result.error == 'User not found'

    @pytest.mark.asyncio
    async def test_unsupported_chain(self, service):
        result = await service.create_request(WALLET, PROMPT, 1)
        assert not result.success
        assert result.code == 'invalid'

    @pytest.mark.asyncio
    async def test_without_chain_any_destination_is_accepted(self, store, users, registered_user):
        result = await RequestService(store, users).create_request(WALLET, PROMPT, 1)
        assert result.success


class TestReads:

    @pytest.mark.asyncio
    async def test_wallet_listing_is_paginated(self, service):
        for i in range(3):
            await _created(service, f"{PROMPT} number {i}")
        result = await service.get_requests_by_wallet(WALLET, page=1, limit=2)
        assert len(result.data['requests']) == 2
        assert result.data['pagination']['total_items'] == 3
        assert result.data['pagination']['total_pages'] == 2

    @pytest.mark.asyncio
    async def test_unknown_status(self, service):
        result = await service.get_requests_by_status('minting')
        assert result.code == 'invalid'

    @pytest.mark.asyncio
    async def test_search_needs_three_characters(self, service):
        assert (await service.search_requests('ab')).code == 'invalid'

    @pytest.mark.asyncio
    async def test_missing_request(self, service):
        assert (await service.get_request('0xnope')).code == 'not_found'


class TestOwnerActions:

    @pytest.mark.asyncio
    async def test_cancel_pending(self, service, store):
        rid = await _created(service)
        assert (await service.cancel_request(rid, WALLET)).success
        assert store.get(rid).status == 'cancelled'

    @pytest.mark.asyncio
    async def test_cancel_by_other_wallet_forbidden(self, service, store):
        rid = await _created(service)
        result = await service.cancel_request(rid, OTHER_WALLET)
        assert result.code == 'forbidden'
        assert store.get(rid).status == 'pending'

    @pytest.mark.asyncio
    async def test_cancel_after_ai_completion_conflicts(self, service, store):
        rid = await _created(service)
        store.update_status(rid, RequestStatus.processing)
        store.update_status(rid, RequestStatus.ai_completed)
        result = await service.cancel_request(rid, WALLET)
        assert result.code == 'conflict'

    @pytest.mark.asyncio
    async def test_retry_only_failed(self, service):
        rid = await _created(service)
        result = await service.retry_request(rid, WALLET)
        assert result.code == 'conflict'

    @pytest.mark.asyncio
    async def test_retry_until_limit(self, service, store):
        rid = await _created(service)
        for expected in (1, 2, 3):
            store.update_status(rid, RequestStatus.failed, error_message='boom')
            result = await service.retry_request(rid, WALLET)
            assert result.success
            assert result.data == {'retry_count': expected}
            row = store.get(rid)
            assert row.status == 'pending'
            assert row.error_message is None

        store.update_status(rid, RequestStatus.failed, error_message='boom')
        result = await service.retry_request(rid, WALLET)
        assert not result.success
        assert result.error == 'Maximum retry attempts reached'
        assert store.get(rid).status == 'failed'

    @pytest.mark.asyncio
    async def test_retry_missing(self, service):
        assert (await service.retry_request('0xnope', WALLET)).code == 'not_found'


class TestProcessing:

    @pytest.mark.asyncio
    async def test_success_submits_completion(self, service, store, gateway):
        rid = await _created(service)
        result = await service.process_pending_requests(batch_size=5)
        assert result.data == {'processed': 1, 'failed': 0}

        row = store.get(rid)
        assert row.status == 'ai_completed'
        assert row.ai_generation_data['token_uri'] == 'ipfs://bafy0001/metadata.json'
        assert row.nft_metadata['name'] == 'ChainWeave #1'
        assert row.blockchain_data['confirmations'] == 1
        assert [s['request_id'] for s in gateway.sent] == [rid]

    @pytest.mark.asyncio
    async def test_pipeline_failure_marks_failed(self, service, store, gateway):
        rid = await _created(service, 'please refuse this prompt')
        result = await service.process_pending_requests()
        assert result.data == {'processed': 0, 'failed': 1}
        row = store.get(rid)
        assert row.status == 'failed'
        assert row.error_message == 'image model refused the prompt'
        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_reverted_completion_marks_failed(self, store, users, registered_user):
        gateway = FakeGateway(receipt_status=0)
        service = RequestService(store, users, blockchain=BlockchainService(gateway, store), pipeline=FakePipeline())
        rid = await _created(service)
        result = await service.process_pending_requests()
        assert result.data['failed'] == 1
        assert store.get(rid).status == 'failed'

    @pytest.mark.asyncio
    async def test_without_chain_stays_ai_completed(self, store, users, registered_user):
        service = RequestService(store, users, pipeline=FakePipeline())
        rid = await _created(service)
        await service.process_pending_requests()
        assert store.get(rid).status == 'ai_completed'

    @pytest.mark.asyncio
    async def test_cancelled_requests_are_not_picked_up(self, service, store):
        rid = await _created(service)
        store.update_status(rid, RequestStatus.cancelled)
        result = await service.process_pending_requests()
        assert result.data == {'processed': 0, 'failed': 0}
        assert store.get(rid).status == 'cancelled'

    @pytest.mark.asyncio
    async def test_overlapping_batches_process_a_request_once(self, store, users, registered_user, gateway, monkeypatch):
        pipeline = FakePipeline(delay=0.05)
        service = RequestService(store, users, blockchain=BlockchainService(gateway, store), pipeline=pipeline)
        rid = await _created(service)
        # both batches start from the same pending snapshot
        snapshot = store.find_pending_requests(5)
        monkeypatch.setattr(store, 'find_pending_requests', lambda limit=10: list(snapshot))

        first, second = await asyncio.gather(
            service.process_pending_requests(), service.process_pending_requests(),
        )
        assert first.data['processed'] + second.data['processed'] == 1
        assert first.data['failed'] + second.data['failed'] == 0
        assert len(pipeline.calls) == 1
        assert [s['request_id'] for s in gateway.sent] == [rid]
        assert store.get(rid).status == 'ai_completed'

    @pytest.mark.asyncio
    async def test_concurrency_is_independent_of_batch_size(self, store, users, registered_user):
        in_flight = 0
        peak = 0

        class CountingPipeline(FakePipeline):
            async def generate_nft_artwork(self, prompt, style='realistic'):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                try:
                    await asyncio.sleep(0.05)
                    return await super().generate_nft_artwork(prompt, style)
                finally:
                    in_flight -= 1

        service = RequestService(store, users, pipeline=CountingPipeline(), max_concurrency=2)
        for i in range(6):
            await _created(service, f"{PROMPT} number {i}")
        result = await service.process_pending_requests(batch_size=6)
        assert result.data == {'processed': 6, 'failed': 0}
        assert peak == 2

    @pytest.mark.asyncio
    async def test_without_pipeline_is_unavailable(self, store, users):
        result = await RequestService(store, users).process_pending_requests()
        assert result.code == 'unavailable'
