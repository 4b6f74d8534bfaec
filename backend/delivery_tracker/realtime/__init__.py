"""
Realtime fan-out of order events to channel subscribers.

Channels are ``order_<orderId>`` and ``partner_<partnerId>``; brokers are
either in-process or backed by Redis pub/sub.
"""
