"""Event reconciliation: contract events applied to the request store."""

import threading

from sqlalchemy import func, select

from chainweave_server.chain.abi import EVENT_MINTED
from chainweave_server.chain.events import ChainEvent
from chainweave_server.models.chain_event import UnresolvedChainEvent, UnresolvedState
from chainweave_server.models.nft_request import NFTRequest, RequestStatus
from chainweave_server.reconciliation.reconciler import Outcome
from tests.fakes import WALLET, ai_completed, mint_requested, mint_reverted, minted, tx_hash


def _count_requests(session_factory, request_id=None):
    q = select(func.count(NFTRequest.id))
    if request_id is not None:
        q = q.where(NFTRequest.request_id == request_id)
    with session_factory() as db:
        return db.execute(q).scalar_one()


class TestMintRequested:

    def test_creates_pending_record_from_short_prompt(self, reconciler, store):
        outcome = reconciler.handle_mint_requested(mint_requested('0xabc', sender=WALLET, prompt='a cat'))
        assert outcome is Outcome.applied
        row = store.get('0xabc')
        assert row.status == 'pending'
        assert row.prompt == 'a cat'
        assert row.destination_chain_id == 7001
        assert row.blockchain_data == {'transaction_hash': tx_hash(1)}

    def test_links_registered_user(self, reconciler, store, registered_user):
        reconciler.handle_mint_requested(mint_requested('0xabc', sender=WALLET))
        assert store.get('0xabc').user_id == registered_user['id']

    def test_unknown_sender_has_no_user(self, reconciler, store):
        reconciler.handle_mint_requested(mint_requested('0xabc', sender=WALLET))
        assert store.get('0xabc').user_id is None

    def test_fee_kept_as_decimal_string(self, reconciler, store):
        big = 2**200
        reconciler.handle_mint_requested(mint_requested('0xabc', sender=WALLET, fee=big))
        assert store.get('0xabc').fee == str(big)

    def test_duplicate_delivery_ignored(self, reconciler, session_factory):
        event = mint_requested('0xabc', sender=WALLET)
        assert reconciler.handle_mint_requested(event) is Outcome.applied
        assert reconciler.handle_mint_requested(event) is Outcome.duplicate
        assert _count_requests(session_factory, '0xabc') == 1

    def test_concurrent_duplicate_deliveries(self, reconciler, session_factory):
        event = mint_requested('0xabc', sender=WALLET)
        outcomes = []
        barrier = threading.Barrier(5)

        def deliver():
            barrier.wait()
            outcomes.append(reconciler.handle_mint_requested(event))

        threads = [threading.Thread(target=deliver) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert _count_requests(session_factory, '0xabc') == 1
        assert outcomes.count(Outcome.applied) == 1
        assert outcomes.count(Outcome.duplicate) == 4


class TestMinted:

    def test_request_then_mint_completes(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET, prompt='a cat'))
        outcome = reconciler.dispatch(minted('0xabc', 42, 'ipfs://xyz'))
        assert outcome is Outcome.applied
        row = store.get('0xabc')
        assert row.status == 'completed'
        assert row.completed_at is not None
        assert row.blockchain_data['token_id'] == 42
        assert row.blockchain_data['transaction_hash'] == tx_hash(3)
        assert row.blockchain_data['block_number'] == 12

    def test_replay_keeps_completed_and_overwrites_chain_fields(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET))
        reconciler.dispatch(minted('0xabc', 42))
        first = store.get('0xabc')

        outcome = reconciler.dispatch(minted('0xabc', 43, block=30, n=9))
        assert outcome is Outcome.applied
        row = store.get('0xabc')
        assert row.status == 'completed'
        assert row.completed_at == first.completed_at
        assert row.blockchain_data['token_id'] == 43
        assert row.blockchain_data['transaction_hash'] == tx_hash(9)
        assert row.blockchain_data['block_number'] == 30

    def test_missing_request_is_parked(self, reconciler, session_factory):
        outcome = reconciler.handle_minted(minted('0xmissing', 1))
        assert outcome is Outcome.parked
        assert _count_requests(session_factory) == 0
        parked = reconciler.list_unresolved()
        assert [p['request_id'] for p in parked] == ['0xmissing']

    def test_mint_after_local_failure_completes(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET))
        store.update_status('0xabc', RequestStatus.processing)
        store.update_status('0xabc', RequestStatus.ai_completed)
        store.update_status('0xabc', RequestStatus.failed, error_message='receipt timeout')

        assert reconciler.dispatch(minted('0xabc', 42)) is Outcome.applied
        row = store.get('0xabc')
        assert row.status == 'completed'
        assert row.error_message is None
        assert row.blockchain_data['token_id'] == 42

    def test_cancelled_request_rejects_mint(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET))
        store.update_status('0xabc', RequestStatus.cancelled)
        assert reconciler.dispatch(minted('0xabc', 5)) is Outcome.rejected
        assert store.get('0xabc').status == 'cancelled'


class TestReverted:

    def test_revert_marks_failed_with_reason(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET))
        assert reconciler.dispatch(mint_reverted('0xabc', 'out of gas')) is Outcome.applied
        row = store.get('0xabc')
        assert row.status == 'failed'
        assert row.error_message == 'out of gas'
        assert row.completed_at is None

    def test_revert_after_completion_ignored(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET))
        reconciler.dispatch(minted('0xabc', 1))
        assert reconciler.dispatch(mint_reverted('0xabc')) is Outcome.ignored
        assert store.get('0xabc').status == 'completed'

    def test_missing_request_is_parked(self, reconciler, session_factory):
        assert reconciler.handle_mint_reverted(mint_reverted('0xmissing')) is Outcome.parked
        assert _count_requests(session_factory) == 0


class TestAIGenerationCompleted:

    def test_moves_ai_completed_to_cross_chain_pending(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET))
        store.update_status('0xabc', RequestStatus.processing)
        store.update_status('0xabc', RequestStatus.ai_completed)
        assert reconciler.dispatch(ai_completed('0xabc', 'ipfs://meta')) is Outcome.applied
        row = store.get('0xabc')
        assert row.status == 'cross_chain_pending'
        assert row.ai_generation_data['token_uri'] == 'ipfs://meta'

    def test_earlier_status_only_records_uri(self, reconciler, store):
        reconciler.dispatch(mint_requested('0xabc', sender=WALLET))
        reconciler.dispatch(ai_completed('0xabc', 'ipfs://meta'))
        row = store.get('0xabc')
        assert row.status == 'pending'
        assert row.ai_generation_data['token_uri'] == 'ipfs://meta'


class TestParking:

    def test_late_mint_request_replays_parked_events(self, reconciler, store):
        reconciler.dispatch(minted('0xlate', 7, block=20))
        assert store.find_by_request_id('0xlate') is None

        reconciler.dispatch(mint_requested('0xlate', sender=WALLET, block=21, n=5))
        row = store.get('0xlate')
        assert row.status == 'completed'
        assert row.blockchain_data['token_id'] == 7
        assert reconciler.list_unresolved(UnresolvedState.parked) == []
        resolved = reconciler.list_unresolved(UnresolvedState.resolved)
        assert len(resolved) == 1 and resolved[0]['attempts'] == 1

    def test_same_log_parked_once(self, reconciler, session_factory):
        event = minted('0xmissing', 1)
        reconciler.dispatch(event)
        reconciler.dispatch(event)
        with session_factory() as db:
            count = db.execute(select(func.count(UnresolvedChainEvent.id))).scalar_one()
        assert count == 1

    def test_events_without_log_coordinates_park_per_request(self, reconciler):
        for rid in ('0xfirst', '0xsecond'):
            event = ChainEvent(name=EVENT_MINTED, request_id=rid, args={'requestId': rid, 'tokenId': 1})
            assert reconciler.dispatch(event) is Outcome.parked
        parked = reconciler.list_unresolved()
        assert sorted(p['request_id'] for p in parked) == ['0xfirst', '0xsecond']

    def test_failing_replay_leaves_event_parked(self, reconciler, store, monkeypatch):
        reconciler.dispatch(minted('0xlate', 7, block=20))

        def boom(*_a, **_kw):
            raise RuntimeError('database went away')

        monkeypatch.setitem(reconciler._appliers, EVENT_MINTED, boom)
        assert reconciler.dispatch(mint_requested('0xlate', sender=WALLET, block=21, n=5)) is Outcome.applied
        assert store.get('0xlate').status == 'pending'
        parked = reconciler.list_unresolved()
        assert [p['request_id'] for p in parked] == ['0xlate']
        assert parked[0]['attempts'] == 0

        monkeypatch.undo()
        assert reconciler.sweep_unresolved()['resolved'] == 1
        assert store.get('0xlate').status == 'completed'

    def test_sweep_resolves_when_request_appears(self, reconciler, store):
        reconciler.dispatch(mint_reverted('0xabc', 'boom'))
        # request arrives through another path, e.g. the API
        store.create(request_id='0xabc', wallet_address=WALLET, prompt='a lighthouse', destination_chain_id=7001)
        counts = reconciler.sweep_unresolved()
        assert counts == {'resolved': 1, 'parked': 0, 'abandoned': 0, 'errors': 0}
        assert store.get('0xabc').status == 'failed'

    def test_sweep_abandons_after_max_attempts(self, reconciler):
        reconciler.dispatch(minted('0xghost', 1))
        assert reconciler.sweep_unresolved()['parked'] == 1
        assert reconciler.sweep_unresolved()['parked'] == 1
        assert reconciler.sweep_unresolved() == {'resolved': 0, 'parked': 0, 'abandoned': 1, 'errors': 0}
        abandoned = reconciler.list_unresolved('abandoned')
        assert abandoned[0]['attempts'] == 3
        assert reconciler.sweep_unresolved() == {'resolved': 0, 'parked': 0, 'abandoned': 0, 'errors': 0}


class TestDispatch:

    def test_unknown_event_ignored(self, reconciler):
        event = ChainEvent(name='OwnershipTransferred', request_id='', args={})
        assert reconciler.dispatch(event) is Outcome.ignored

    def test_handler_failure_does_not_raise(self, reconciler, monkeypatch):
        def boom(*_a, **_kw):
            raise RuntimeError('database went away')

        monkeypatch.setattr(reconciler._store, 'find_by_request_id', boom)
        assert reconciler.dispatch(minted('0xabc', 1)) is Outcome.error

    def test_bad_sender_reported_as_error(self, reconciler, session_factory):
        outcome = reconciler.dispatch(mint_requested('0xabc', sender='not-an-address'))
        assert outcome is Outcome.error
        assert _count_requests(session_factory) == 0
