"""
TeamTrack membership core.

Handles:
- Team memberships and tournament organizer relations
- Safety checks that keep a coach on every team and an organizer on every tournament
- Cascading deletion of accounts, teams and tournaments
- The HTTP API in front of them
"""
