import datetime as dt

from chainweave_server.models.nft_request import RequestStatus
from chainweave_server.services.analytics import AnalyticsService
from chainweave_server.services.collections import CollectionService
from tests.fakes import OTHER_WALLET, WALLET


class TestUserService:

    def test_register_rejects_bad_wallet(self, users):
        result = users.register('0x123')
        assert result.code == 'invalid'

    def test_profile_update_checks_only_given_fields(self, users):
        users.register(WALLET, username='weaver')
        users.register(OTHER_WALLET)
        # OTHER_WALLET has no email; updating its avatar must not clash with rows whose email is NULL
        result = users.update_profile(OTHER_WALLET, {'avatar': 'ipfs://avatar'})
        assert result.success, result.error
        assert result.data['avatar'] == 'ipfs://avatar'

        clash = users.update_profile(OTHER_WALLET, {'username': 'weaver'})
        assert clash.code == 'conflict'

    def test_deactivated_user_is_reactivated_on_register(self, users, registered_user):
        users.deactivate(WALLET)
        assert users.find_by_wallet(WALLET) is None
        result = users.register(WALLET)
        assert result.success
        assert result.data['id'] == registered_user['id']
        assert result.data['is_active'] is True

    def test_writes_reject_bad_wallet(self, users):
        assert users.update_profile('0x123', {'avatar': 'ipfs://a'}).code == 'invalid'
        assert users.update_preferences('0x123', {'ai_style': 'anime'}).code == 'invalid'
        assert users.deactivate('0x123').code == 'invalid'

    def test_active_count(self, users, registered_user):
        users.register(OTHER_WALLET)
        users.deactivate(OTHER_WALLET)
        assert users.active_count() == 1


class TestCollectionService:

    def test_unknown_creator(self, session_factory):
        result = CollectionService(session_factory).create(
            name='x', chain_id=7001, contract_address='0x' + '12' * 20, creator_wallet=WALLET,
        )
        assert result.code == 'not_found'

    def test_deactivate_rejects_bad_wallet(self, session_factory):
        assert CollectionService(session_factory).deactivate(1, '0x123').code == 'invalid'

    def test_royalty_bounds(self, session_factory, registered_user):
        result = CollectionService(session_factory).create(
            name='x', chain_id=7001, contract_address='0x' + '12' * 20, creator_wallet=WALLET, royalty_bps=20000,
        )
        assert result.code == 'invalid'


class TestAnalyticsService:

    def test_snapshot_counts_outcomes_and_volume(self, session_factory, store, registered_user):
        for i, fee in enumerate((10**18, 2 * 10**18, 5)):
            store.create(
                request_id=f"0x{i:02d}", wallet_address=WALLET, prompt='a lighthouse',
                destination_chain_id=7001 + i, fee=fee,
            )
        store.update_status('0x00', RequestStatus.completed)
        store.update_status('0x01', RequestStatus.completed)
        store.update_status('0x02', RequestStatus.cancelled)

        svc = AnalyticsService(session_factory)
        row = svc.snapshot_platform_stats().data
        assert row['total_users'] == 1
        assert row['total_requests'] == 3
        assert row['completed_requests'] == 2
        assert row['failed_requests'] == 1
        assert row['total_volume'] == str(3 * 10**18)
        assert row['active_chains'] == 3

        # same day again overwrites instead of adding a row
        svc.snapshot_platform_stats()
        assert len(svc.platform_history(1).data) == 1

    def test_snapshot_for_empty_day(self, session_factory):
        row = AnalyticsService(session_factory).snapshot_platform_stats(dt.date(2024, 1, 1)).data
        assert row['total_requests'] == 0
        assert row['total_volume'] == '0'

    def test_user_summary_unknown_wallet(self, session_factory):
        assert AnalyticsService(session_factory).user_summary(WALLET).code == 'not_found'
