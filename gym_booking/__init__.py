"""
Gym/studio booking engine: hourly slots, capacity rules and audit events.
"""
