from datetime import datetime, timezone

from trips.models.database import db


# 托管钱包表：捐赠时优先用这里的私钥本地签名
class Wallet(db.Model):
    __tablename__ = 'wallets'
    id = db.Column(db.Integer, primary_key=True, autoincrement=True, comment='主键，自增 ID')
    user_address = db.Column(db.String(42), nullable=False, unique=True, comment='所属用户地址')
    address = db.Column(db.String(42), nullable=False, unique=True, comment='托管钱包地址')
    private_key = db.Column(db.String(255), nullable=False, comment='加密后的私钥')
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), comment='创建时间')
