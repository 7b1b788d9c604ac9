# -*- coding: utf-8 -*-
"""
@author yumu
@version 1.0.0
"""
from datetime import datetime, timezone

from trips.models.database import db


class ErrorLog(db.Model):
    """
    错误日志模型，所有 CustomException 都会落到这张表
    """
    __tablename__ = 'error_log'
    error_log_id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    error_code = db.Column(db.String(64), nullable=True, comment='异常类名')
    error_event = db.Column(db.Text, nullable=True)
    tx_hash = db.Column(db.String(66), nullable=True, index=True, comment='已广播转账的交易哈希')
    error_time = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
