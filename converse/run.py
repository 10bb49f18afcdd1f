"""Backend launcher that sets the Windows event loop policy before uvicorn starts."""
import asyncio
import os
import sys

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

import uvicorn


def main():
    uvicorn.run(
        "converse.main:app",
        host=os.environ.get("CONVERSE_HOST", "127.0.0.1"),
        port=int(os.environ.get("CONVERSE_PORT", "8765")),
    )


if __name__ == "__main__":
    main()
