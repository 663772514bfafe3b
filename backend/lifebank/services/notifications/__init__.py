"""
Domain notifications, in-process event bus and the real-time orders channel.
"""
