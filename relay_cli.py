#!/usr/bin/env python3
"""
Smoke-test client for a running relay.

Usage:
  python relay_cli.py                          # DeepSeek-format request, buffered
  python relay_cli.py --format coze --stream   # Coze-format request, streamed events
  python relay_cli.py --url http://host:3000/api/relay --message "Hi there"
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

import httpx

DEFAULT_URL = "http://localhost:3000/api/relay"
DEFAULT_MESSAGE = 'Hello! Say "test successful" if you can read this.'


def build_chat_payload(message: str, stream: bool) -> Dict[str, Any]:
    return {
        "model": "deepseek-chat",
        "messages": [{"role": "user", "content": message}],
        "stream": stream,
        "temperature": 0.7,
        "max_tokens": 100,
    }


def build_coze_payload(message: str, stream: bool, stage: str = "Opening", context: str = "") -> Dict[str, Any]:
    custom_variables = {"stage": stage}
    if context:
        custom_variables["context"] = context
    return {
        "bot_id": "relay-cli",
        "user_id": "relay-cli",
        "additional_messages": [{"role": "user", "content": message, "content_type": "text"}],
        "custom_variables": custom_variables,
        "stream": stream,
    }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Send a test request to the Coze/DeepSeek relay")
    p.add_argument("--url", default=os.getenv("API_URL", DEFAULT_URL),
                   help="Relay endpoint (default: $API_URL or %(default)s)")
    p.add_argument("--format", dest="payload_format", default="chat", choices=["chat", "coze"],
                   help="Payload format to send (default: chat)")
    p.add_argument("--message", default=DEFAULT_MESSAGE, help="User message text")
    p.add_argument("--stage", default="Opening", help="Coze custom_variables.stage")
    p.add_argument("--context", default="", help="Coze custom_variables.context")
    p.add_argument("--stream", action="store_true", help="Request a streamed response")
    p.add_argument("--timeout", type=float, default=60.0, help="Client timeout in seconds")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.payload_format == "coze":
        payload = build_coze_payload(args.message, args.stream, args.stage, args.context)
    else:
        payload = build_chat_payload(args.message, args.stream)

    print("Sending request:", json.dumps(payload, indent=2, ensure_ascii=False))
    print(f"URL: {args.url}\n")

    try:
        with httpx.Client(timeout=args.timeout) as client:
            with client.stream("POST", args.url, json=payload) as resp:
                print(f"Response Status: {resp.status_code} {resp.reason_phrase}")
                if args.stream and resp.is_success:
                    for line in resp.iter_lines():
                        print(line)
                else:
                    resp.read()
                    try:
                        print(json.dumps(resp.json(), indent=2, ensure_ascii=False))
                    except ValueError:
                        print(resp.text)
                return 0 if resp.is_success else 1
    except httpx.HTTPError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        print("Make sure the relay is running: python relay_service.py", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
