"""
Pytest suite for the order tracker.

Test categories:
- Unit tests: store, retry, poller, channel, payment, cancellation with fakes
- Integration tests: FastAPI routes over httpx ASGITransport
"""
