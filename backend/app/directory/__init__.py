"""
directory — Read-only view of users and venues.

The surrounding platform owns user and venue records; this core only
reads them to decide who receives geofenced alerts and who holds a
certification.
"""
