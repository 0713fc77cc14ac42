"""Ingestion helpers.

Turn snapshot rows and change-feed payloads into normalized
:class:`livetrack.state.events.LocationEvent` objects.
"""
