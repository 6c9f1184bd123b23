"""
Startup script for the selector cache backend
Run this instead of 'uvicorn main:app' on Windows
"""

import sys
import os
import asyncio

# Force unbuffered output
os.environ['PYTHONUNBUFFERED'] = '1'

# CRITICAL: Set Windows event loop policy FIRST, before any imports
if sys.platform == 'win32':
    print(" Detected Windows - Setting ProactorEventLoop policy...", flush=True)
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

if __name__ == "__main__":
    import uvicorn

    host = os.getenv("SELECTOR_CACHE_HOST", "0.0.0.0")
    port = int(os.getenv("SELECTOR_CACHE_PORT", "8000"))

    print("\n Starting Selector Cache Server...", flush=True)
    print(f" Server will run on: http://localhost:{port}", flush=True)
    print(f" API Docs available at: http://localhost:{port}/docs", flush=True)
    print("\n" + "="*50, flush=True)

    # reload=False keeps the logs in this terminal
    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=False,
        log_level="info",
        access_log=True
    )
