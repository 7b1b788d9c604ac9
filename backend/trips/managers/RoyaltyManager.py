from trips.managers.TripLedgerManager import TripLedgerManager, parse_int
from trips.models.typings import InvalidArgument, UnknownRecord

BPS_DENOMINATOR = 10000


class RoyaltyManager:
    """二级市场版税查询，只读"""

    @classmethod
    def royalty_info(cls, record_id, sale_amount):
        """
        :return: (receiver, royalty_amount)，royalty = floor(sale * bps / 10000)
        """
        # 先确认记录存在，再校验金额
        trip = TripLedgerManager.get_trip(record_id, error=UnknownRecord)
        sale_amount = parse_int(sale_amount, "sale_amount")
        if sale_amount < 0:
            raise InvalidArgument(f"sale_amount 不能为负数: {sale_amount}")

        if trip.has_royalty_override():
            receiver, rate = trip.royalty_receiver, trip.royalty_bps
        else:
            receiver, rate = trip.creator_address, TripLedgerManager.get_state().default_royalty_bps
        return receiver, sale_amount * rate // BPS_DENOMINATOR
