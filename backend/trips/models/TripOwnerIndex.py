from trips.models.database import db


class TripOwnerIndex(db.Model):
    """
    持有者枚举索引：owner -> 有序的 record_id 列表
    position 从0开始连续，和 trips.owner_address 在同一个事务里更新
    """
    __tablename__ = 'trip_owner_index'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True, comment='主键ID')
    owner_address = db.Column(db.String(42), nullable=False, comment='持有者地址')
    position = db.Column(db.Integer, nullable=False, comment='在该持有者列表中的下标')
    record_id = db.Column(db.Integer, db.ForeignKey('trips.record_id'), nullable=False, index=True, comment='记录ID')

    __table_args__ = (
        db.UniqueConstraint('owner_address', 'position', name='uk_owner_position'),
        {'mysql_engine': 'InnoDB', 'mysql_charset': 'utf8mb4'}
    )
