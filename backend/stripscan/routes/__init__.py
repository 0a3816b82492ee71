# Routes package init
"""
StripScan Backend — API Routes Package
=========================================

What:  HTTP route handlers that accept requests and return responses.

Route Inventory:
    - test_strips.py: POST /test-strips/upload     (upload and process a photo)
                      GET  /test-strips/list       (paginated history)
                      GET  /test-strips/{id}       (single submission)
    - uploads.py:     GET  /uploads/thumbnails/{f} (thumbnail files)
    - health.py:      GET  /health                 (reachability signal)

Design Principle:
    Routes are THIN: they extract request data, call a service, and return
    its response model. Status codes for failures are chosen centrally in
    main.py from each error's kind.
"""
