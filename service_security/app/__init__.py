"""
Security gateway service package for the Homebase API.

Every protected request passes through one pipeline:
- Method check against the route's allowed methods
- Authentication: via the identity service
- Rate limiting: fixed-window counters per subject and endpoint class
- CSRF validation for state-changing methods
- Handler dispatch with API security headers

Security-relevant outcomes are recorded by the security monitor, which
escalates repeated failures from one source into suspicious activity.

Structure:
- ``ratelimit/``: limiter, counter stores, class table
- ``csrf/``: stateless token service
- ``monitoring/``: event model and monitor
- ``adapters/``: identity service client
- ``domain/``: the gateway pipeline
- ``main.py``: service composition and routes
"""
