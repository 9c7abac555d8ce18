from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from chainweave_server.models.nft_request import NFTRequest, RequestStatus
from chainweave_server.models.reporting import PlatformStats, UserAnalytics
from chainweave_server.models.user import User
from chainweave_server.schemas.nft_request import ServiceResult
from chainweave_server.utils.hex_utils import normalize_wallet

_log = logging.getLogger(__name__)


def _day_bounds(day: dt.date) -> tuple[dt.datetime, dt.datetime]:
    start = dt.datetime.combine(day, dt.time.min)
    return start, start + dt.timedelta(days=1)


def _sum_wei(values) -> str:
    # fees are decimal strings; sum in Python to keep full uint256 precision
    total = 0
    for v in values:
        try:
            total += int(v or 0)
        except (TypeError, ValueError):
            continue
    return str(total)


class AnalyticsService:
    """Daily platform snapshots and per-user summaries."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def snapshot_platform_stats(self, day: dt.date | None = None) -> ServiceResult:
        day = day or dt.datetime.now(dt.timezone.utc).date()
        start, end = _day_bounds(day)
        in_day = (NFTRequest.created_at >= start, NFTRequest.created_at < end)
        with self._session_factory() as db:
            total_users = db.execute(select(func.count(User.id)).where(User.is_active.is_(True))).scalar_one()
            total_requests = db.execute(select(func.count(NFTRequest.id)).where(*in_day)).scalar_one()
            completed = db.execute(
                select(func.count(NFTRequest.id)).where(*in_day, NFTRequest.status == RequestStatus.completed.value)
            ).scalar_one()
            failed = db.execute(
                select(func.count(NFTRequest.id)).where(
                    *in_day,
                    NFTRequest.status.in_([RequestStatus.failed.value, RequestStatus.cancelled.value]),
                )
            ).scalar_one()
            fees = db.execute(
                select(NFTRequest.fee).where(*in_day, NFTRequest.status == RequestStatus.completed.value)
            ).scalars().all()
            active_chains = db.execute(
                select(func.count(func.distinct(NFTRequest.destination_chain_id))).where(*in_day)
            ).scalar_one()

            values = {
                'total_users': int(total_users),
                'total_requests': int(total_requests),
                'completed_requests': int(completed),
                'failed_requests': int(failed),
                'total_volume': _sum_wei(fees),
                'active_chains': int(active_chains),
            }
            row = db.execute(select(PlatformStats).where(PlatformStats.date == day)).scalar_one_or_none()
            if row is None:
                row = PlatformStats(date=day, **values)
                db.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
            try:
                db.commit()
            except IntegrityError:
                # another snapshot for the same day won the insert; overwrite it
                db.rollback()
                row = db.execute(select(PlatformStats).where(PlatformStats.date == day)).scalar_one()
                for key, value in values.items():
                    setattr(row, key, value)
                db.commit()
        _log.info("platform stats snapshot day=%s requests=%s completed=%s", day, total_requests, completed)
        return ServiceResult.ok(row.as_dict())

    def platform_history(self, days: int = 30) -> ServiceResult:
        days = max(1, min(365, days))
        since = dt.datetime.now(dt.timezone.utc).date() - dt.timedelta(days=days - 1)
        with self._session_factory() as db:
            rows = db.execute(
                select(PlatformStats).where(PlatformStats.date >= since).order_by(PlatformStats.date.asc())
            ).scalars().all()
        return ServiceResult.ok([r.as_dict() for r in rows])

    def user_summary(self, wallet_address: str) -> ServiceResult:
        try:
            wallet = normalize_wallet(wallet_address)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        today = dt.datetime.now(dt.timezone.utc).date()
        start, end = _day_bounds(today)
        with self._session_factory() as db:
            user = db.execute(
                select(User).where(User.wallet_address == wallet, User.is_active.is_(True))
            ).scalar_one_or_none()
            if user is None:
                return ServiceResult.fail('User not found', 'not_found')
            by_status = dict(
                db.execute(
                    select(NFTRequest.status, func.count(NFTRequest.id))
                    .where(NFTRequest.wallet_address == wallet)
                    .group_by(NFTRequest.status)
                ).all()
            )
            today_rows = db.execute(
                select(NFTRequest.status, NFTRequest.fee).where(
                    NFTRequest.wallet_address == wallet,
                    NFTRequest.created_at >= start,
                    NFTRequest.created_at < end,
                )
            ).all()
            requests_today = len(today_rows)
            completed_today = sum(1 for s, _ in today_rows if s == RequestStatus.completed.value)
            spent_today = _sum_wei(fee for s, fee in today_rows if s == RequestStatus.completed.value)

            daily = db.execute(
                select(UserAnalytics).where(UserAnalytics.user_id == user.id, UserAnalytics.date == today)
            ).scalar_one_or_none()
            if daily is None:
                daily = UserAnalytics(user_id=user.id, date=today)
                db.add(daily)
            daily.requests_count = requests_today
            daily.completed_count = completed_today
            daily.total_spent = spent_today
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                _log.debug("user analytics row for %s/%s written concurrently", user.id, today)

        total = sum(int(n) for n in by_status.values())
        return ServiceResult.ok({
            'wallet_address': wallet,
            'total_requests': total,
            'by_status': {k: int(v) for k, v in by_status.items()},
            'completed_requests': int(by_status.get(RequestStatus.completed.value, 0)),
            'failed_requests': int(by_status.get(RequestStatus.failed.value, 0)),
            'today': {
                'date': today.isoformat(),
                'requests_count': requests_today,
                'completed_count': completed_today,
                'total_spent': spent_today,
            },
        })
