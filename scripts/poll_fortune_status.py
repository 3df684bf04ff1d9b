"""Poll a fortune until its reading is ready (or failed) and print it."""

import argparse
import json
import sys
import time

import httpx

TERMINAL = {"completed", "failed"}


def main() -> None:
    """CLI entrypoint for status polling."""

    parser = argparse.ArgumentParser(description="Poll GET /api/fortune/process until the fortune settles.")
    parser.add_argument("fortune_id")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--token", default="", help="bearer token of the fortune owner")
    parser.add_argument("--interval", type=float, default=5.0)
    parser.add_argument("--max-polls", type=int, default=60)
    args = parser.parse_args()

    headers = {"Authorization": f"Bearer {args.token}"} if args.token else {}
    with httpx.Client(base_url=args.base_url, headers=headers, timeout=10.0) as client:
        for _ in range(args.max_polls):
            resp = client.get("/api/fortune/process", params={"fortuneId": args.fortune_id})
            if resp.status_code >= 400:
                print(json.dumps(resp.json(), indent=2), file=sys.stderr)
                sys.exit(1)
            body = resp.json()
            print(f"status={body['status']}")
            if body["status"] in TERMINAL:
                print(json.dumps(body, indent=2, ensure_ascii=False))
                sys.exit(0 if body["status"] == "completed" else 2)
            time.sleep(args.interval)
    print("gave up waiting", file=sys.stderr)
    sys.exit(3)


if __name__ == "__main__":
    main()
