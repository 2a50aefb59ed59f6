"""
Media Engine Adapter.

The real-time audio engine is a native SDK that may not be installed. It is
probed once per process by probe_media_engine(); when it cannot be loaded
the returned engine reports available=False and every session-starting
operation fails fast before touching the signaling store.

Engine events can fire on native threads, so they are handed to the event
loop captured at initialize() before reaching the event handler.
"""
import asyncio
import importlib
import logging
import time
from typing import Optional

from agora_token_builder import RtcTokenBuilder

from .constants import (
    AGORA_APP_CERT,
    AGORA_APP_ID,
    MEDIA_ENGINE,
    ROLE_PUBLISHER,
    TOKEN_EXPIRE_SECONDS,
)
from .errors import MediaEngineError
from .utils import clamp_expire

logger = logging.getLogger("calls")

PROFILE_COMMUNICATION = "communication"


def build_rtc_token(channel: str, account: str, app_id: str = None, app_cert: str = None,
                    expire=TOKEN_EXPIRE_SECONDS) -> str:
    """Channel join token; empty when the project has no app certificate."""
    app_id = AGORA_APP_ID if app_id is None else app_id
    app_cert = AGORA_APP_CERT if app_cert is None else app_cert
    if not app_cert:
        return ""
    expire_ts = int(time.time()) + clamp_expire(expire)
    return RtcTokenBuilder.buildTokenWithAccount(
        app_id, app_cert, channel, str(account), ROLE_PUBLISHER, expire_ts
    )


class MediaEventHandler:
    """Callbacks delivered by a MediaEngine. Override what you need."""

    def on_joined(self, channel: str, user_id: str) -> None:
        pass

    def on_remote_joined(self, user_id: str) -> None:
        pass

    def on_remote_left(self, user_id: str, reason: int) -> None:
        pass

    def on_error(self, code: int, message: str) -> None:
        pass


class MediaEngine:
    """Capability interface for the real-time audio engine."""

    name = "abstract"
    available = True

    def __init__(self):
        self._handler: Optional[MediaEventHandler] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.initialized = False

    def register_event_handler(self, handler: MediaEventHandler) -> None:
        self._handler = handler

    def _capture_loop(self) -> None:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def _emit(self, event: str, *args) -> None:
        if self._handler is None:
            return
        callback = getattr(self._handler, event)
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(callback, *args)
        else:
            callback(*args)

    def initialize(self, app_id: str, profile: str = PROFILE_COMMUNICATION) -> None:
        raise NotImplementedError

    async def join(self, channel: str, local_user_id: str) -> bool:
        raise NotImplementedError

    async def leave(self) -> None:
        raise NotImplementedError

    def mute_local(self, muted: bool) -> None:
        raise NotImplementedError

    def set_speakerphone(self, enabled: bool) -> None:
        raise NotImplementedError

    def release(self) -> None:
        pass


class UnavailableMediaEngine(MediaEngine):
    """Stand-in reported when the native engine could not be loaded."""

    name = "unavailable"
    available = False

    def __init__(self, reason: str = ""):
        super().__init__()
        self.reason = reason

    def initialize(self, app_id: str, profile: str = PROFILE_COMMUNICATION) -> None:
        raise MediaEngineError(f"Media engine unavailable: {self.reason}")

    async def join(self, channel: str, local_user_id: str) -> bool:
        raise MediaEngineError(f"Media engine unavailable: {self.reason}")

    async def leave(self) -> None:
        return None

    def mute_local(self, muted: bool) -> None:
        return None

    def set_speakerphone(self, enabled: bool) -> None:
        return None


def _make_connection_observer(base, engine: "AgoraMediaEngine"):
    class _ConnectionObserver(base):
        def on_connected(self, agora_rtc_conn, conn_info, reason):
            engine._emit("on_joined", engine.channel, engine.local_user_id)

        def on_user_joined(self, agora_rtc_conn, user_id):
            engine._emit("on_remote_joined", str(user_id))

        def on_user_left(self, agora_rtc_conn, user_id, reason):
            engine._emit("on_remote_left", str(user_id), reason)

        def on_connection_failure(self, agora_rtc_conn, conn_info, reason):
            engine._emit("on_error", reason, "connection failure")

    return _ConnectionObserver()


class AgoraMediaEngine(MediaEngine):
    """Agora RTC SDK (agora.rtc) in communication profile, broadcaster role."""

    name = "agora"
    available = True

    def __init__(self, sdk: dict):
        super().__init__()
        self._sdk = sdk
        self._service = None
        self._connection = None
        self._audio_track = None
        self.channel: Optional[str] = None
        self.local_user_id: Optional[str] = None
        self.speakerphone = True

    def initialize(self, app_id: str, profile: str = PROFILE_COMMUNICATION) -> None:
        if self.initialized:
            return
        if not app_id:
            raise MediaEngineError("AGORA_APP_ID is not configured")

        self._capture_loop()
        config = self._sdk["AgoraServiceConfig"]()
        config.appid = app_id
        config.enable_audio_processor = 1
        config.enable_audio_device = 1

        service = self._sdk["AgoraService"]()
        try:
            ret = service.initialize(config)
        except Exception as e:
            raise MediaEngineError(f"Agora initialize failed: {e}") from e
        if ret != 0:
            raise MediaEngineError(f"Agora initialize failed: {ret}", code=ret)

        self._service = service
        self.initialized = True
        logger.info(f"[MEDIA] Agora engine initialized (profile={profile})")

    async def join(self, channel: str, local_user_id: str) -> bool:
        if not self.initialized:
            raise MediaEngineError("Agora engine not initialized")

        try:
            return await self._connect(channel, str(local_user_id))
        except MediaEngineError:
            raise
        except Exception as e:
            logger.error(f"[MEDIA] Agora join failed for {channel}: {e}")
            raise MediaEngineError(f"Agora join failed: {e}") from e

    async def _connect(self, channel: str, local_user_id: str) -> bool:
        base = self._sdk["agora_base"]
        conn_config = self._sdk["RTCConnConfig"](
            client_role_type=base.ClientRoleType.CLIENT_ROLE_BROADCASTER,
            channel_profile=base.ChannelProfileType.CHANNEL_PROFILE_COMMUNICATION,
        )
        connection = self._service.create_rtc_connection(conn_config)
        connection.register_observer(_make_connection_observer(self._sdk["IRTCConnectionObserver"], self))

        self.channel = channel
        self.local_user_id = local_user_id
        token = build_rtc_token(channel, local_user_id)

        try:
            ret = await asyncio.to_thread(connection.connect, token, channel, local_user_id)
            if ret != 0:
                raise MediaEngineError(f"Agora connect failed: {ret}", code=ret)

            audio_track = self._service.create_local_audio_track()
            audio_track.set_enabled(1)
            connection.get_local_user().publish_audio(audio_track)
        except Exception:
            connection.release()
            self.channel = None
            raise

        self._connection = connection
        self._audio_track = audio_track
        logger.info(f"[MEDIA] Joining channel {channel} as {local_user_id}")
        return True

    async def leave(self) -> None:
        connection, self._connection = self._connection, None
        audio_track, self._audio_track = self._audio_track, None
        if connection is None:
            return
        try:
            if audio_track is not None:
                connection.get_local_user().unpublish_audio(audio_track)
            await asyncio.to_thread(connection.disconnect)
        finally:
            connection.unregister_observer()
            connection.release()
            logger.info(f"[MEDIA] Left channel {self.channel}")
            self.channel = None

    def mute_local(self, muted: bool) -> None:
        if self._audio_track is not None:
            self._audio_track.set_enabled(0 if muted else 1)

    def set_speakerphone(self, enabled: bool) -> None:
        # The SDK plays through the default output device; routing is a preference here
        self.speakerphone = enabled

    def release(self) -> None:
        if self._connection is not None:
            try:
                self._connection.disconnect()
                self._connection.release()
            except Exception as e:
                logger.warning(f"[MEDIA] Connection release failed: {e}")
            self._connection = None
        if self._service is not None:
            self._service.release()
            self._service = None
        self.initialized = False


def _load_agora_sdk() -> dict:
    service_mod = importlib.import_module("agora.rtc.agora_service")
    base_mod = importlib.import_module("agora.rtc.agora_base")
    observer_mod = importlib.import_module("agora.rtc.rtc_connection_observer")
    return {
        "AgoraService": service_mod.AgoraService,
        "AgoraServiceConfig": service_mod.AgoraServiceConfig,
        "RTCConnConfig": service_mod.RTCConnConfig,
        "IRTCConnectionObserver": observer_mod.IRTCConnectionObserver,
        "agora_base": base_mod,
    }


def probe_media_engine(kind: str = MEDIA_ENGINE) -> MediaEngine:
    """Load the configured engine once; never raises."""
    if kind == "none":
        logger.info("[MEDIA] Media engine disabled by configuration")
        return UnavailableMediaEngine("disabled by configuration")

    if kind != "agora":
        logger.error(f"[MEDIA] Unknown media engine: {kind}")
        return UnavailableMediaEngine(f"unknown engine {kind}")

    try:
        sdk = _load_agora_sdk()
    except (ImportError, AttributeError) as e:
        logger.warning(f"[MEDIA] Agora SDK not available: {e}")
        return UnavailableMediaEngine(str(e))

    logger.info("[MEDIA] Agora SDK loaded")
    return AgoraMediaEngine(sdk)
