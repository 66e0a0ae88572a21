import os

import uvicorn


def main():
    uvicorn.run(
        "chimerascan.main:app",
        host=os.getenv("CHIMERASCAN_HOST", "127.0.0.1"),
        port=int(os.getenv("SERVER_PORT", "8080")),
    )


if __name__ == "__main__":
    main()
