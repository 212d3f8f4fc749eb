#!/usr/bin/env python3
"""
Terminal client for the knowledge chatbot API: build a chatbot from a
website, document or pasted text and chat with it until the message limit
"""
import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Dict, Optional

import httpx

API_URL = os.getenv("API_URL", "http://localhost:8000")
SESSIONS_URL = f"{API_URL}/api/v1/sessions"


def print_transcript(session: Dict, already_shown: int) -> int:
    """Print messages not shown yet and return the new count"""
    messages = session.get("messages", [])
    for message in messages[already_shown:]:
        prefix = "🤖" if message["sender"] == "assistant" else "🧑"
        print(f"\n{prefix} {message['text']}")
    return len(messages)


def print_error(response: httpx.Response) -> Dict:
    body = response.json()
    print(f"\n❌ {body.get('error', f'HTTP {response.status_code}')}")
    if body.get("manual_paste"):
        print("   💡 You can paste the content manually with --paste")
    return body


async def create_session(client: httpx.AsyncClient, args) -> Optional[Dict]:
    if args.file:
        path = Path(args.file)
        if not path.exists():
            print(f"❌ File not found: {path}")
            sys.exit(1)
        response = await client.post(
            f"{SESSIONS_URL}/upload",
            files={"file": (path.name, path.read_bytes())},
            timeout=180.0
        )
    else:
        if args.url:
            source = {"kind": "link", "url": args.url}
        elif args.social:
            platform, _, handle = args.social.partition(":")
            source = {"kind": "social_profile", "platform": platform, "handle": handle}
        else:
            print("📋 Paste the content, then press Ctrl-D:")
            source = {"kind": "pasted_text", "text": sys.stdin.read()}
        response = await client.post(SESSIONS_URL, json={"source": source}, timeout=180.0)

    if response.status_code == 201:
        return response.json()
    print_error(response)
    return None


async def chat_loop(client: httpx.AsyncClient, session: Dict):
    session_id = session["session_id"]
    shown = print_transcript(session, 0)

    while session["state"] == "chatting":
        print(f"\n({session['turns_remaining']} messages left)")
        try:
            text = input("> ").strip()
        except EOFError:
            break
        if not text:
            continue

        response = await client.post(
            f"{SESSIONS_URL}/{session_id}/messages",
            json={"text": text},
            timeout=120.0
        )
        if response.status_code != 200:
            print_error(response)
            if response.status_code == 409:
                break
            continue
        session = response.json()
        shown = print_transcript(session, shown)

    response = await client.post(f"{SESSIONS_URL}/{session_id}/acknowledge")
    if response.status_code == 200:
        conversion = response.json().get("conversion") or {}
        print("\n" + "=" * 60)
        print("✨ You've reached the message limit for this demo.")
        print(f"📅 Book a call: {conversion.get('booking_url')}")

    await client.delete(f"{SESSIONS_URL}/{session_id}")


async def main():
    parser = argparse.ArgumentParser(description="Chat with a knowledge base built from a source")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--url", help="Website to ingest")
    group.add_argument("--file", help="PDF or Word document to upload")
    group.add_argument("--social", help="Social profile as platform:handle")
    group.add_argument("--paste", action="store_true", help="Read content from stdin")
    args = parser.parse_args()

    print(f"🚀 Knowledge chatbot client")
    print(f"🔗 API URL: {API_URL}")
    print("=" * 60)

    async with httpx.AsyncClient() as client:
        session = await create_session(client, args)
        if session is None:
            sys.exit(1)
        await chat_loop(client, session)


if __name__ == "__main__":
    asyncio.run(main())
