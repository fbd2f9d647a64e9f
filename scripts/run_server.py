import argparse

import uvicorn

from signal_relay.server import create_app


def main():
    parser = argparse.ArgumentParser(description="SignalRelay webhook server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    print(f"🚀 [Server] Listening on {args.host}:{args.port}")
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
