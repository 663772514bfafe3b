"""
Order lifecycle package: state machine, event store, repository and service.
"""
