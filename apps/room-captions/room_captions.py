#!/usr/bin/env python3
"""
Room Captions - terminal client for speech rooms v1.0

Creates or joins a room on the room-log service, streams raw PCM audio from
stdin to a streaming ASR service, and prints the room's transcript as
participants speak.

Features:
- Create, join or restore the last room
- Live word-by-word lines from every participant ("You", "Speaker N")
- Offline mode with an in-process log for trying things out

Usage:
  arecord -f S16_LE -r 16000 -c 1 -t raw | python room_captions.py --create
  python room_captions.py --join K7QXMA < speech.raw
  python room_captions.py --restore
"""

import argparse
import asyncio
import sys
from collections.abc import Callable
from typing import BinaryIO

from speech_rooms.capture import (
    ASRStreamEngine,
    CaptureState,
    PlatformPolicy,
    ProviderOptions,
    RecognitionEngine,
)
from speech_rooms.client import SpeechRoomsClient, WebSocketLog
from speech_rooms.config import DEFAULT_LANGUAGE, get_display_info, get_server_config, list_servers
from speech_rooms.rooms import InMemoryLog, InvalidRoomIdError, SharedLog
from speech_rooms.utils import set_log_level, setup_logging

logger = setup_logging(__name__)

__version__ = "1.0"

# 200ms of 16kHz mono int16
CHUNK_BYTES = 6400


class RoomCaptions:
    """Terminal room client: one SpeechRoomsClient plus audio and rendering."""

    def __init__(
        self,
        log: SharedLog,
        asr_config: dict | None = None,
        language: str = DEFAULT_LANGUAGE,
        engine_factory: Callable[[ProviderOptions], RecognitionEngine | None] | None = None,
        output: Callable[[str], None] = print,
    ):
        """
        Initialize room captions.

        Args:
            log: Shared log backend
            asr_config: ASR server config (host, port, endpoint, chunk_ms)
            language: Recognition language tag
            engine_factory: Override the ASR engine (tests)
            output: Line printer
        """
        self.asr_config = asr_config or get_server_config("asr")
        self.output = output
        self.engine: RecognitionEngine | None = None
        self._factory = engine_factory or self._make_asr_engine
        self._printed: dict[str, str] = {}

        self.client = SpeechRoomsClient(
            log,
            engine_factory=self._make_engine,
            options=ProviderOptions(language=language, policy=PlatformPolicy.desktop()),
        )
        self.client.view.on_change = self.render_updates

    def _make_asr_engine(self, options: ProviderOptions) -> RecognitionEngine:
        return ASRStreamEngine.from_server_config(
            self.asr_config,
            language=options.language,
            continuous=options.continuous,
            interim_results=options.interim_results,
        )

    def _make_engine(self, options: ProviderOptions) -> RecognitionEngine | None:
        self.engine = self._factory(options)
        return self.engine

    def render_updates(self) -> list[str]:
        """Print lines that are new or changed since the last call."""
        lines = self.client.view.get_lines()
        if not lines:
            self._printed.clear()
            return []

        changed = []
        for line in lines:
            rendered = line.render()
            if self._printed.get(line.key) != rendered:
                self._printed[line.key] = rendered
                changed.append(rendered)

        for rendered in changed:
            self.output(rendered)
        return changed

    async def enter_room(
        self, join: str | None = None, create: bool = False, restore: bool = False
    ) -> str | None:
        """Enter a room per the command line. Returns the room id."""
        if restore:
            room_id = await self.client.restore_last_room()
            if room_id is None:
                self.output("No recent room to restore.")
            return room_id
        if create:
            return await self.client.create_room()
        if join:
            try:
                return await self.client.join_room(join)
            except InvalidRoomIdError as e:
                self.output(str(e))
                return None
        return None

    def feed_audio(self, chunk: bytes) -> None:
        if isinstance(self.engine, ASRStreamEngine):
            self.engine.queue_audio(chunk)

    async def pump_audio(self, stream: BinaryIO, chunk_bytes: int = CHUNK_BYTES) -> int:
        """
        Feed raw PCM from a binary stream until EOF.

        Returns:
            Number of bytes read
        """
        total = 0
        while True:
            chunk = await asyncio.to_thread(stream.read, chunk_bytes)
            if not chunk:
                break
            total += len(chunk)
            self.feed_audio(chunk)
            if self.client.state in (CaptureState.IDLE, CaptureState.ERROR):
                break
        logger.info(f"Audio input ended after {total} bytes")
        return total

    async def wait_until_stopped(self, poll_interval: float = 0.1) -> CaptureState:
        while self.client.state not in (CaptureState.IDLE, CaptureState.ERROR):
            await asyncio.sleep(poll_interval)
        await self.client.capture.settle()
        return self.client.state

    async def run(
        self,
        stream: BinaryIO,
        join: str | None = None,
        create: bool = False,
        restore: bool = False,
    ) -> int:
        """Enter the room, caption the audio stream, then stop. Returns exit code."""
        async with self.client:
            room_id = await self.enter_room(join=join, create=create, restore=restore)
            if room_id is None:
                return 1

            role = "creator" if self.client.rooms.is_creator else "participant"
            self.output(f"Room: {room_id} ({role})")

            if not await self.client.start_capture():
                await self.client.capture.settle()
                return 1

            await self.pump_audio(stream)
            await self.client.stop_capture()
            state = await self.wait_until_stopped()
            return 1 if state is CaptureState.ERROR else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=f"Room Captions v{__version__}")
    room = parser.add_mutually_exclusive_group()
    room.add_argument("--create", action="store_true", help="Create a new room")
    room.add_argument("--join", metavar="ROOM_ID", help="Join a room by its 6-character id")
    room.add_argument("--restore", action="store_true", help="Rejoin the last room (24h)")
    parser.add_argument("--language", default=DEFAULT_LANGUAGE, help="Recognition language tag")
    parser.add_argument("--asr-host", help="ASR service host")
    parser.add_argument("--asr-port", type=int, help="ASR service port")
    parser.add_argument("--room-log-host", help="Room log service host")
    parser.add_argument("--room-log-port", type=int, help="Room log service port")
    parser.add_argument(
        "--offline", action="store_true", help="Use an in-process log instead of the service"
    )
    parser.add_argument("--list-servers", action="store_true", help="List configured servers")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def resolve_servers(args: argparse.Namespace) -> tuple[dict, dict]:
    """Server configs with command-line overrides applied."""
    asr = dict(get_server_config("asr"))
    if args.asr_host:
        asr["host"] = args.asr_host
    if args.asr_port:
        asr["port"] = args.asr_port

    room_log = dict(get_server_config())
    if args.room_log_host:
        room_log["host"] = args.room_log_host
    if args.room_log_port:
        room_log["port"] = args.room_log_port
    return asr, room_log


async def run_app(args: argparse.Namespace, stream: BinaryIO) -> int:
    asr, room_log = resolve_servers(args)
    log = InMemoryLog() if args.offline else WebSocketLog.from_server_config(room_log)
    try:
        app = RoomCaptions(log, asr_config=asr, language=args.language)
        return await app.run(stream, join=args.join, create=args.create, restore=args.restore)
    finally:
        await log.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.list_servers:
        for name, description in list_servers().items():
            print(f"{name}: {description}")
        return 0

    if not (args.create or args.join or args.restore):
        print("Choose --create, --join ROOM_ID or --restore")
        return 2

    if args.debug:
        set_log_level("DEBUG")
        logger.setLevel("DEBUG")

    asr, room_log = resolve_servers(args)

    # Print startup banner (ASCII only for Windows console compatibility)
    print("+======================================+")
    print(f"|        Room Captions v{__version__}            |")
    print("+======================================+")
    print(f"Language: {args.language}")
    print(f"ASR: ws://{asr['host']}:{asr['port']}{asr['endpoint']}")
    if args.offline:
        print("Room log: in-process (offline)")
    elif args.room_log_host or args.room_log_port:
        print(f"Room log: ws://{room_log['host']}:{room_log['port']}{room_log['endpoint']}")
    else:
        print(f"Room log: {get_display_info()}")
    if args.debug:
        print("Debug: ENABLED")
    print()
    print("Tip: pipe 16kHz mono int16 PCM into stdin")
    print()

    try:
        return asyncio.run(run_app(args, sys.stdin.buffer))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
