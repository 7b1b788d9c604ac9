from datetime import datetime, timezone

from trips.models.database import db


class RegistryState(db.Model):
    """
    全局配置（单行表）：名称、符号、描述符前缀、默认版税、管理员、序列计数器
    """
    __tablename__ = 'registry_state'

    id = db.Column(db.Integer, primary_key=True, comment='固定为1')
    name = db.Column(db.String(128), nullable=False)
    symbol = db.Column(db.String(32), nullable=False)
    descriptor_base = db.Column(db.String(512), nullable=False, default='', comment='描述符URI前缀')
    default_royalty_bps = db.Column(db.Integer, nullable=False, default=0, comment='默认版税费率（基点）')
    owner_address = db.Column(db.String(42), nullable=False, comment='管理员地址')
    next_record_id = db.Column(db.Integer, nullable=False, default=1, comment='下一个要分配的记录ID')
    updated_at = db.Column(db.DateTime,
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "name": self.name,
            "symbol": self.symbol,
            "descriptor_base": self.descriptor_base,
            "default_royalty_bps": self.default_royalty_bps,
            "owner": self.owner_address,
            "total_supply": self.next_record_id - 1,
        }
