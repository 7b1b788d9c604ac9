from datetime import datetime, timezone

from trips.models.database import db


class TripEvent(db.Model):
    """
    只追加的事件日志，供链下索引服务消费
    RecordCreated / RecordTransferred / DonationReceived
    """
    __tablename__ = 'trip_events'

    RECORD_CREATED = 'RecordCreated'
    RECORD_TRANSFERRED = 'RecordTransferred'
    DONATION_RECEIVED = 'DonationReceived'

    event_id = db.Column(db.Integer, primary_key=True, autoincrement=True, comment='事件序号')
    event_name = db.Column(db.String(32), nullable=False, index=True)
    record_id = db.Column(db.Integer, nullable=False, index=True)
    creator_address = db.Column(db.String(42), nullable=True, index=True)
    donor_address = db.Column(db.String(42), nullable=True, index=True)
    from_address = db.Column(db.String(42), nullable=True)
    to_address = db.Column(db.String(42), nullable=True)
    fingerprint = db.Column(db.String(66), nullable=True)
    # wei 数值可能超过 BIGINT，用十进制字符串存
    amount = db.Column(db.String(78), nullable=True)
    tx_hash = db.Column(db.String(66), nullable=True, comment='捐赠转账的交易哈希')
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    def to_dict(self):
        payload = {"event_id": self.event_id, "event": self.event_name, "record_id": self.record_id}
        if self.event_name == self.RECORD_CREATED:
            payload.update(creator=self.creator_address, fingerprint=self.fingerprint)
        elif self.event_name == self.RECORD_TRANSFERRED:
            payload.update({"from": self.from_address, "to": self.to_address})
        elif self.event_name == self.DONATION_RECEIVED:
            payload.update(donor=self.donor_address, creator=self.creator_address,
                           amount=int(self.amount), tx_hash=self.tx_hash)
        return payload
