"""Scene runtime primitives (events, disposal, frame clock, scheduler, scene lifecycle).

Kept free of FastAPI and Redis concerns so it can run in any host: a browser bridge, a window, or tests.
"""
