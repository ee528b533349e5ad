"""
LiveRelay Test Suite

Test Categories:
- unit/: Fast, isolated unit tests against an in-memory database
- integration/: The HTTP API driven through the ASGI app
"""
