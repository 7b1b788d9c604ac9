from datetime import datetime, timezone

from trips.models.database import db


class Trip(db.Model):
    """Trip 记录表 - 每一行是一个已铸造的非同质化记录"""
    __tablename__ = 'trips'

    # record_id 由 registry_state.next_record_id 分配，不使用自增
    record_id = db.Column(db.Integer, primary_key=True, autoincrement=False, comment='记录ID，从1开始')
    owner_address = db.Column(db.String(42), nullable=False, index=True, comment='当前持有者地址')
    creator_address = db.Column(db.String(42), nullable=False, index=True, comment='创作者地址，铸造后不可变')
    fingerprint = db.Column(db.String(66), nullable=False, unique=True, comment='内容指纹，0x + 64位hex')

    # 铸造时写入的版税覆盖值，为空时使用全局默认费率
    royalty_receiver = db.Column(db.String(42), nullable=True, comment='版税接收地址')
    royalty_bps = db.Column(db.Integer, nullable=True, comment='版税费率（基点）')

    created_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           nullable=False,
                           comment='铸造时间')

    __table_args__ = (
        {'mysql_engine': 'InnoDB', 'mysql_charset': 'utf8mb4'},
    )

    def has_royalty_override(self):
        return self.royalty_receiver is not None and self.royalty_bps is not None

    def to_dict(self):
        return {
            "record_id": self.record_id,
            "owner": self.owner_address,
            "creator": self.creator_address,
            "fingerprint": self.fingerprint,
            "royalty_receiver": self.royalty_receiver,
            "royalty_bps": self.royalty_bps,
            "created_at": self.created_at.strftime('%Y-%m-%d %H:%M:%S') if self.created_at else None,
        }
