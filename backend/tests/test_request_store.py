"""Request store: creation, status updates and JSON sub-record merges against real SQLite."""

import threading

import pytest
from sqlalchemy import func, select

from chainweave_server.core.errors import (
    InvalidTransition,
    RequestNotFound,
    RetryLimitExceeded,
    ValidationFailed,
)
from chainweave_server.models.nft_request import NFTRequest, RequestStatus
from tests.fakes import WALLET, tx_hash


def _create(store, request_id='0xabc', **kw):
    params = dict(
        request_id=request_id,
        wallet_address=WALLET.upper().replace('0X', '0x'),
        prompt='a lighthouse in a storm',
        destination_chain_id=7001,
    )
    params.update(kw)
    return store.create(**params)


class TestCreate:

    def test_create_stores_pending_with_lowercased_wallet(self, store):
        row, created = _create(store)
        assert created
        assert row.status == RequestStatus.pending.value
        assert row.wallet_address == WALLET
        assert row.recipient == WALLET
        assert row.fee == '0'
        assert row.completed_at is None

    def test_duplicate_request_id_returns_existing(self, store):
        first, created = _create(store)
        second, created_again = _create(store, prompt='something else entirely')
        assert created and not created_again
        assert second.id == first.id
        assert second.prompt == first.prompt

    def test_concurrent_creates_leave_one_row(self, store, session_factory):
        results = []
        barrier = threading.Barrier(6)

        def worker():
            barrier.wait()
            results.append(_create(store, request_id='0xrace'))

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        with session_factory() as db:
            count = db.execute(
                select(func.count(NFTRequest.id)).where(NFTRequest.request_id == '0xrace')
            ).scalar_one()
        assert count == 1
        assert sum(1 for _row, created in results if created) == 1

    def test_invalid_wallet_rejected(self, store):
        with pytest.raises(ValueError):
            _create(store, wallet_address='not-a-wallet')


class TestUpdateStatus:

    def test_completed_sets_completed_at(self, store):
        _create(store)
        row = store.update_status('0xabc', RequestStatus.completed)
        assert row.status == 'completed'
        assert row.completed_at is not None

    @pytest.mark.parametrize('target', [RequestStatus.processing, RequestStatus.failed, RequestStatus.cancelled])
    def test_other_statuses_leave_completed_at_unset(self, store, target):
        _create(store)
        row = store.update_status('0xabc', target)
        assert row.completed_at is None

    def test_same_status_is_noop(self, store):
        row, _ = _create(store)
        again = store.update_status('0xabc', RequestStatus.pending)
        assert again.version == row.version
        assert again.updated_at == row.updated_at

    def test_completed_is_terminal(self, store):
        _create(store)
        done = store.update_status('0xabc', RequestStatus.completed)
        with pytest.raises(InvalidTransition):
            store.update_status('0xabc', RequestStatus.failed)
        assert store.get('0xabc').completed_at == done.completed_at

    def test_missing_request(self, store):
        with pytest.raises(RequestNotFound):
            store.update_status('0xnope', RequestStatus.processing)

    def test_error_message_truncated(self, store):
        _create(store)
        row = store.update_status('0xabc', RequestStatus.failed, error_message='x' * 900)
        assert len(row.error_message) == 500

    def test_racing_moves_have_one_winner(self, store):
        _create(store)
        store.update_status('0xabc', RequestStatus.processing)
        wins, losses = [], []
        barrier = threading.Barrier(2)

        def move(target):
            barrier.wait()
            try:
                store.update_status('0xabc', target)
                wins.append(target)
            except InvalidTransition:
                losses.append(target)

        threads = [
            threading.Thread(target=move, args=(RequestStatus.cancelled,)),
            threading.Thread(target=move, args=(RequestStatus.ai_completed,)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(wins) == 1 and len(losses) == 1
        assert store.get('0xabc').status == wins[0].value

    def test_late_completion_of_failed_clears_error(self, store):
        _create(store)
        store.update_status('0xabc', RequestStatus.failed, error_message='receipt timeout')
        row = store.update_status('0xabc', RequestStatus.completed)
        assert row.status == 'completed'
        assert row.error_message is None
        assert row.completed_at is not None


class TestClaim:

    def test_claim_moves_pending_to_processing(self, store):
        row, _ = _create(store)
        claimed = store.claim('0xabc')
        assert claimed.status == 'processing'
        assert claimed.version == row.version + 1

    def test_second_claim_loses(self, store):
        _create(store)
        store.claim('0xabc')
        with pytest.raises(InvalidTransition):
            store.claim('0xabc')
        assert store.get('0xabc').status == 'processing'

    def test_claim_missing(self, store):
        with pytest.raises(RequestNotFound):
            store.claim('0xnope')

    def test_racing_claims_have_one_winner(self, store):
        _create(store)
        wins, losses = [], []
        barrier = threading.Barrier(4)

        def grab():
            barrier.wait()
            try:
                store.claim('0xabc')
                wins.append(1)
            except InvalidTransition:
                losses.append(1)

        threads = [threading.Thread(target=grab) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(wins) == 1 and len(losses) == 3


class TestRequeue:

    def test_requeue_bumps_retry_and_clears_error(self, store):
        _create(store)
        store.set_ai_generation_data('0xabc', {'generated_image_url': 'https://images.example/1.png'})
        store.update_status('0xabc', RequestStatus.failed, error_message='model offline')
        row = store.requeue_failed('0xabc')
        assert row.status == 'pending'
        assert row.error_message is None
        assert row.ai_generation_data['retry_count'] == 1
        assert row.ai_generation_data['generated_image_url'] == 'https://images.example/1.png'

    def test_requeue_needs_failed(self, store):
        _create(store)
        with pytest.raises(InvalidTransition):
            store.requeue_failed('0xabc')
        assert store.get('0xabc').ai_generation_data is None

    def test_requeue_capped(self, store):
        _create(store)
        for _ in range(3):
            store.update_status('0xabc', RequestStatus.failed, error_message='boom')
            store.requeue_failed('0xabc')
        store.update_status('0xabc', RequestStatus.failed, error_message='boom')
        with pytest.raises(RetryLimitExceeded):
            store.requeue_failed('0xabc')
        row = store.get('0xabc')
        assert row.status == 'failed'
        assert row.error_message == 'boom'

    def test_requeue_missing(self, store):
        with pytest.raises(RequestNotFound):
            store.requeue_failed('0xnope')


class TestSubRecords:

    def test_blockchain_data_merges(self, store):
        _create(store)
        store.set_blockchain_data('0xabc', {'transaction_hash': tx_hash(1)})
        row = store.set_blockchain_data('0xabc', {'token_id': 42, 'block_number': 900})
        assert row.blockchain_data == {'transaction_hash': tx_hash(1), 'token_id': 42, 'block_number': 900}

    def test_blockchain_data_validated(self, store):
        _create(store)
        with pytest.raises(ValidationFailed):
            store.set_blockchain_data('0xabc', {'transaction_hash': '0x1234'})

    def test_contract_address_lowercased(self, store):
        _create(store)
        row = store.set_blockchain_data('0xabc', {'contract_address': '0x' + 'AB' * 20})
        assert row.blockchain_data['contract_address'] == '0x' + 'ab' * 20

    def test_retry_count_capped(self, store):
        _create(store)
        store.set_ai_generation_data('0xabc', {'retry_count': 3})
        with pytest.raises(RetryLimitExceeded):
            store.set_ai_generation_data('0xabc', {'retry_count': 4})
        assert store.get('0xabc').ai_generation_data['retry_count'] == 3

    def test_ai_generation_defaults_model(self, store):
        _create(store)
        row = store.set_ai_generation_data('0xabc', {'token_uri': 'ipfs://xyz'})
        assert row.ai_generation_data['model'] == 'gemini-pro'
        assert row.ai_generation_data['token_uri'] == 'ipfs://xyz'

    def test_metadata_replaced(self, store):
        _create(store)
        store.set_metadata('0xabc', {'name': 'one', 'description': 'd', 'image': 'ipfs://a'})
        row = store.set_metadata('0xabc', {'name': 'two', 'description': 'd', 'image': 'ipfs://b'})
        assert row.nft_metadata['name'] == 'two'
        assert row.as_dict()['metadata']['image'] == 'ipfs://b'

    def test_concurrent_merges_keep_both_fields(self, store):
        _create(store)
        barrier = threading.Barrier(2)

        def merge(patch):
            barrier.wait()
            store.set_blockchain_data('0xabc', patch)

        threads = [
            threading.Thread(target=merge, args=({'token_id': 7},)),
            threading.Thread(target=merge, args=({'gas_used': 21000},)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        data = store.get('0xabc').blockchain_data
        assert data['token_id'] == 7
        assert data['gas_used'] == 21000

    def test_merge_on_missing_request(self, store):
        with pytest.raises(RequestNotFound):
            store.set_blockchain_data('0xnope', {'token_id': 1})


class TestQueries:

    def test_wallet_pagination(self, store):
        for i in range(5):
            _create(store, request_id=f"0x{i:02d}")
        rows, total = store.find_by_wallet(WALLET, page=2, limit=2)
        assert total == 5
        assert len(rows) == 2

    def test_wallet_limit_clamped(self, store):
        _create(store)
        rows, total = store.find_by_wallet(WALLET, limit=1000)
        assert total == 1 and len(rows) == 1

    def test_pending_oldest_first(self, store):
        for i in range(3):
            _create(store, request_id=f"0x{i:02d}")
        store.update_status('0x01', RequestStatus.processing)
        pending = store.find_pending_requests(limit=10)
        assert [r.request_id for r in pending] == ['0x00', '0x02']

    def test_search_is_case_insensitive(self, store):
        _create(store, prompt='A Lighthouse in a Storm')
        _create(store, request_id='0xdef', prompt='a quiet forest')
        hits = store.search('LIGHTHOUSE')
        assert [r.request_id for r in hits] == ['0xabc']

    def test_search_needs_three_characters(self, store):
        with pytest.raises(ValidationFailed):
            store.search('ab')

    def test_stats(self, store):
        _create(store)
        _create(store, request_id='0xdef', destination_chain_id=84532)
        store.update_status('0xdef', RequestStatus.failed)
        stats = store.stats()
        assert stats['total_requests'] == 2
        assert {'status': 'failed', 'count': 1} in stats['by_status']
        assert stats['recent_requests'] == 2
        assert {c['chain_id'] for c in stats['by_chain']} == {7001, 84532}
