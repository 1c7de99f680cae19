# Package initializer for the room booking service.

"""
The `roombook` package contains all modules for the meeting room booking
service and its calendar synchronization engine.

Modules:

- ``config``: application settings loaded from environment variables.
- ``models``: Pydantic data models for the core and the API.
- ``errors``: the error taxonomy shared by every component.
- ``grid``: the half-hour slot axis and the per-date slot grid.
- ``mapper``: turns remote calendar events into bookings.
- ``reconciler``: rebuilds a date's grid from room and personal calendars.
- ``session``: the viewing session that owns and publishes grids.
- ``mutator``: creating and cancelling bookings.
- ``scheduler``: timed and event-driven resynchronization.
- ``google_client``: Google Calendar auth provider and calendar source.
- ``main``: the FastAPI application definition.

"""
