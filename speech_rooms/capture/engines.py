"""ASR WebSocket recognition engine.

Streams raw PCM audio to a streaming ASR service and reports its transcripts
through the RecognitionEngine callbacks. Supported server messages:

    {"partial": "..."}                                interim text
    {"text": "..."}                                   final text
    {"id": "s0", "text": "...", "is_final": bool}     segment protocol
"""

import asyncio
import contextlib
import json
import logging
from typing import Any

from speech_rooms.config import DEFAULT_LANGUAGE

from .errors import ErrorKind, InvalidStateError
from .provider import RecognitionEngine

logger = logging.getLogger(__name__)


class ASRStreamEngine(RecognitionEngine):
    """Recognition engine backed by an ASR service's /stream endpoint."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8000,
        endpoint: str = "/stream",
        chunk_ms: int = 200,
        timeout: float = 30.0,
        language: str = DEFAULT_LANGUAGE,
        continuous: bool = True,
        interim_results: bool = True,
        retry_backoff: float = 2.0,
    ):
        """
        Initialize ASR engine.

        Args:
            host: ASR service host
            port: ASR service port
            endpoint: WebSocket endpoint path
            chunk_ms: Chunk duration in milliseconds for config
            timeout: Connection timeout in seconds
            language: Language tag sent with the config message
            continuous: If False, recognition ends after the first final result
            interim_results: If False, interim text is not reported
            retry_backoff: Delay before reporting the end after a failed connect
        """
        super().__init__(language=language, continuous=continuous, interim_results=interim_results)
        self.host = host
        self.port = port
        self.endpoint = endpoint
        self.chunk_ms = chunk_ms
        self.timeout = timeout
        self.retry_backoff = retry_backoff

        self.audio_queue: asyncio.Queue[bytes | None] | None = None
        self._task: asyncio.Task | None = None
        self._stopping = False

        # Segment protocol: last seen segment and its text
        self._segment_id: str | None = None
        self._segment_text = ""

    @classmethod
    def from_server_config(cls, config: dict[str, Any], **kwargs) -> "ASRStreamEngine":
        """Create engine from a server configuration dictionary."""
        return cls(
            host=config.get("host", "localhost"),
            port=config.get("port", 8000),
            endpoint=config.get("endpoint", "/stream"),
            chunk_ms=config.get("chunk_ms", 200),
            timeout=config.get("timeout", 30.0),
            **kwargs,
        )

    @property
    def uri(self) -> str:
        """WebSocket URI for the ASR service."""
        return f"ws://{self.host}:{self.port}{self.endpoint}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def queue_audio(self, audio_data: bytes | None) -> None:
        """
        Queue audio data for sending to the ASR service.

        Args:
            audio_data: Raw 16-bit PCM audio bytes (mono, 16kHz), or None to
                signal the end of the audio source
        """
        if self.audio_queue is None:
            return
        try:
            self.audio_queue.put_nowait(audio_data)
        except asyncio.QueueFull:
            logger.warning("Audio queue full, dropping audio chunk")

    def start(self) -> None:
        if self.running:
            raise InvalidStateError("recognition has already started")
        self._stopping = False
        self._segment_id = None
        self._segment_text = ""
        self.audio_queue = asyncio.Queue(maxsize=100)
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        self._stopping = True

    def abort(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()

    async def _run(self) -> None:
        import websockets

        try:
            logger.info(f"Connecting to ASR: {self.uri}")
            async with websockets.connect(self.uri, open_timeout=self.timeout) as ws:
                if self.on_start:
                    self.on_start()

                config = {"chunk_ms": self.chunk_ms, "language": self.language}
                await ws.send(json.dumps(config))

                send_task = asyncio.create_task(self._send_audio(ws))
                recv_task = asyncio.create_task(self._receive_transcripts(ws))

                _done, pending = await asyncio.wait(
                    [send_task, recv_task], return_when=asyncio.FIRST_COMPLETED
                )

                for task in pending:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        except (ConnectionRefusedError, OSError) as e:
            logger.warning(f"Connection failed: {e}")
            self._emit_error(ErrorKind.NETWORK_TRANSIENT.value)
            await self._backoff()
        except Exception as e:
            logger.error(f"ASR error: {e}")
            self._emit_error(ErrorKind.NETWORK_TRANSIENT.value)
            await self._backoff()
        finally:
            self.audio_queue = None
            if self.on_end:
                self.on_end()

    async def _backoff(self) -> None:
        # Keeps auto-restart from hammering an unreachable service
        if not self._stopping:
            await asyncio.sleep(self.retry_backoff)

    async def _send_audio(self, ws) -> None:
        """Send audio to ASR service until stopped or the source ends."""
        while not self._stopping:
            try:
                audio_data = await asyncio.wait_for(self.audio_queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            if audio_data is None:
                logger.info("Audio source ended")
                break
            try:
                await ws.send(audio_data)
            except Exception as e:
                logger.error(f"Send error: {e}")
                break

    async def _receive_transcripts(self, ws) -> None:
        """Receive transcripts from ASR service."""
        while not self._stopping:
            try:
                message = await asyncio.wait_for(ws.recv(), timeout=1.0)
            except TimeoutError:
                continue
            except Exception as e:
                logger.error(f"Receive error: {e}")
                break
            if self._process_message(message) and not self.continuous:
                break

    def _process_message(self, message: str | bytes) -> bool:
        """
        Process a message from the ASR service.

        Returns:
            True if a final result was reported
        """
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")

        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            # Plain text message
            text = message.strip()
            if text:
                self._emit_result(text, "")
                return True
            return False

        if not isinstance(data, dict):
            return False

        if "id" in data:
            return self._process_segment(
                str(data["id"]),
                data.get("text", "").strip(),
                bool(data.get("is_final", data.get("final", False))),
            )
        if "partial" in data:
            partial = data["partial"].strip()
            if partial:
                self._emit_result("", partial)
            return False
        if "text" in data:
            text = data["text"].strip()
            if text:
                self._emit_result(text, "")
                return True
        return False

    def _process_segment(self, segment_id: str, text: str, is_final: bool) -> bool:
        finalized = False

        # A new segment implicitly closes the previous one
        if segment_id != self._segment_id and self._segment_text:
            self._emit_result(self._segment_text, "")
            finalized = True
            self._segment_text = ""
        self._segment_id = segment_id

        if is_final:
            text = text or self._segment_text
            self._segment_id = None
            self._segment_text = ""
            if text:
                self._emit_result(text, "")
                return True
            return finalized

        if text:
            self._segment_text = text
            self._emit_result("", text)
        return finalized

    def _emit_result(self, final_text: str, interim_text: str) -> None:
        if not self.interim_results:
            interim_text = ""
        if not (final_text or interim_text):
            return
        if self.on_result:
            self.on_result(final_text, interim_text)

    def _emit_error(self, code: str) -> None:
        if self.on_error:
            self.on_error(code)
