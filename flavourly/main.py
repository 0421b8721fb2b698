import os

import uvicorn


def main():
    uvicorn.run(
        "flavourly.app:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() in ("1", "true", "yes"),
    )


if __name__ == "__main__":
    main()
