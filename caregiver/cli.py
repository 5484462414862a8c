"""Command-line entry point.

  caregiver talk [--lang en]    voice session on this machine's mic and speakers
  caregiver serve               run the API server (uvicorn)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from caregiver.config import SUPPORTED_LANGUAGES, settings
from caregiver.errors import VoiceSessionError
from caregiver.state import AppState
from caregiver.store import create_store
from caregiver.voice.controller import SessionState, create_controller
from caregiver.voice.gemini import GeminiLiveTransport

log = logging.getLogger("caregiver.cli")


def _device(value: str | None) -> int | str | None:
    if value is not None and value.isdigit():
        return int(value)
    return value


def _print_event(event_type: str, data: dict) -> None:
    if event_type == "turn":
        for turn in data["added"]:
            who = "You" if turn["role"] == "user" else "Assistant"
            print(f"{who}: {turn['text']}")
    elif event_type == "tool_call":
        print(f"  [{data['tool']}] {data['result']['message']}")
    elif event_type == "error":
        print(data["message"], file=sys.stderr)


async def _talk(language: str, input_device: str | None, output_device: str | None) -> int:
    # sounddevice is an optional extra; only this command needs it
    from caregiver.channels.local import SoundDeviceCapture, SoundDevicePlayback

    app_state = AppState(create_store(settings.record_store_url))
    await app_state.load()

    controller = create_controller(
        app_state,
        GeminiLiveTransport(),
        SoundDeviceCapture(device=_device(input_device)),
        SoundDevicePlayback(device=_device(output_device)),
        language,
    )
    controller.add_listener(_print_event)

    try:
        try:
            await controller.start()
        except VoiceSessionError:
            return 1

        print("Listening. Press Ctrl-C to stop.", file=sys.stderr)
        while controller.state is not SessionState.IDLE:
            await asyncio.sleep(0.2)
    finally:
        await controller.stop()
        await app_state.flush()
        await app_state.store.close()

    return 1 if controller.last_error else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="caregiver",
        description="Caregiver voice assistant",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    talk = sub.add_parser("talk", help="Talk to the assistant with the local microphone")
    talk.add_argument(
        "--lang", default=settings.language, choices=SUPPORTED_LANGUAGES,
        help="Conversation language (default: %(default)s)",
    )
    talk.add_argument("--input-device", help="sounddevice input device name or index")
    talk.add_argument("--output-device", help="sounddevice output device name or index")

    sub.add_parser("serve", help="Run the HTTP/WebSocket server")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(name)-20s %(levelname)-7s %(message)s",
    )

    if args.command == "serve":
        from caregiver.app import run
        run()
        return 0

    try:
        return asyncio.run(_talk(args.lang, args.input_device, args.output_device))
    except KeyboardInterrupt:
        print("\nStopped.", file=sys.stderr)
        return 0


if __name__ == "__main__":
    sys.exit(main())
