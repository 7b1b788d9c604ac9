from trips.managers.TripLedgerManager import (
    TripLedgerManager,
    normalize_address,
    parse_int,
    serialized,
)
from trips.models.database import db
from trips.models.TripEvent import TripEvent
from trips.models.typings import TransferFailed, UnknownRecord, ZeroAmount


class DonationManager:
    """
    捐赠：任何人都可以把钱直接转给记录的创作者

    捐赠不写任何记录状态：先读出收款人和金额，外部转账放在最后一步，
    转账确认成功后才追加 DonationReceived 事件。转账过程中如果对方重入本系统，
    这里没有"读-改-写"跨越外部调用的状态，所以不需要重入锁标志。

    全局操作锁只在读取收款人和追加事件时持有，等待链上回执期间不持锁，
    慢转账（最长 receipt_timeout 秒）不会卡住铸造和管理操作。
    """

    def __init__(self, delivery):
        self.delivery = delivery

    def donate(self, record_id, caller, amount):
        """
        :return: 捐赠事件
        """
        donor, record_id, creator, amount = self._resolve(record_id, caller, amount)

        try:
            tx_hash = self.delivery.deliver(donor, creator, amount)
        except TransferFailed:
            raise
        except Exception as e:
            raise TransferFailed(f"向 {creator} 转账 {amount} 失败: {e}", creator, amount) from e

        event = self._record(donor, record_id, creator, amount, tx_hash)
        print(f"【捐赠】{donor} -> {creator} 记录 {record_id} 金额 {amount} tx={tx_hash}")
        return event

    @serialized
    def _resolve(self, record_id, caller, amount):
        donor = normalize_address(caller, "caller")
        trip = TripLedgerManager.get_trip(record_id, error=UnknownRecord)
        amount = parse_int(amount, "amount")
        if amount <= 0:
            raise ZeroAmount(f"捐赠金额必须大于0，当前 {amount}")

        record_id, creator = trip.record_id, trip.creator_address
        # 结束只读事务，外部调用期间不持有数据库事务
        db.session.commit()
        return donor, record_id, creator, amount

    @serialized
    def _record(self, donor, record_id, creator, amount, tx_hash):
        event = TripEvent(
            event_name=TripEvent.DONATION_RECEIVED,
            record_id=record_id,
            creator_address=creator,
            donor_address=donor,
            amount=str(amount),
            tx_hash=tx_hash,
        )
        db.session.add(event)
        db.session.commit()
        return event
