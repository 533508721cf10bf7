"""Offer/answer negotiation with a single remote peer."""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Sequence
from typing import TypeVar

from aiortc import RTCConfiguration
from aiortc import RTCDataChannel
from aiortc import RTCIceCandidate
from aiortc import RTCIceServer
from aiortc import RTCPeerConnection
from aiortc import RTCSessionDescription
from aiortc.sdp import candidate_from_sdp
from aiortc.sdp import candidate_to_sdp

from rtcsignal.exceptions import CandidateApplyError
from rtcsignal.exceptions import NegotiationError
from rtcsignal.exceptions import NegotiationInProgressError
from rtcsignal.exceptions import NegotiationTimeoutError
from rtcsignal.media import TrackSource
from rtcsignal.messages import encode_message
from rtcsignal.messages import MessageType
from rtcsignal.messages import SignalingMessage
from rtcsignal.messenger import DataChannelMessenger
from rtcsignal.protocols import Transport
from rtcsignal.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)

DEFAULT_ICE_SERVERS = ('stun:stun.l.google.com:19302',)

T = TypeVar('T')


class NegotiationState(enum.Enum):
    """Negotiation state of a peer session."""

    idle = 'idle'
    remote_offer_received = 'remote_offer_received'
    remote_description_set = 'remote_description_set'
    answer_created = 'answer_created'
    answer_sent = 'answer_sent'
    connected = 'connected'
    disconnected = 'disconnected'


@dataclasses.dataclass(eq=False)
class PeerSession:
    """State of the session with the remote peer.

    Attributes:
        connection: Peer connection, created when an offer is received.
        state: Negotiation state.
        remote_description_set: If the remote offer has been applied.
        pending_candidates: Remote candidates received before the remote
            description was set, in arrival order.
        applied_candidates: Number of remote candidates applied.
        dropped_candidates: Number of remote candidates that could not be
            applied and were dropped.
        negotiation_task: Task running the in-flight negotiation.
        apply_lock: Serializes application of remote candidates.
        closed: If the session has been torn down.
    """

    connection: RTCPeerConnection | None = None
    state: NegotiationState = NegotiationState.idle
    remote_description_set: bool = False
    pending_candidates: list[SignalingMessage] = dataclasses.field(
        default_factory=list,
    )
    applied_candidates: int = 0
    dropped_candidates: int = 0
    negotiation_task: asyncio.Task[Any] | None = None
    apply_lock: asyncio.Lock = dataclasses.field(default_factory=asyncio.Lock)
    closed: bool = False


def ice_configuration(
    urls: Sequence[str],
    username: str | None = None,
    credential: str | None = None,
) -> RTCConfiguration:
    """Build a peer connection configuration from STUN/TURN URLs.

    Args:
        urls: STUN or TURN server URLs.
        username: Username applied to TURN URLs.
        credential: Credential applied to TURN URLs.

    Returns:
        Peer connection configuration.
    """
    servers = []
    for url in urls:
        if url.startswith(('turn:', 'turns:')):
            servers.append(
                RTCIceServer(
                    urls=url,
                    username=username,
                    credential=credential,
                ),
            )
        else:
            servers.append(RTCIceServer(urls=url))
    return RTCConfiguration(iceServers=servers)


def parse_candidate(message: SignalingMessage) -> RTCIceCandidate:
    """Parse a candidate message into an aiortc candidate.

    Raises:
        CandidateApplyError: If the candidate line is malformed.
    """
    assert message.candidate is not None
    line = message.candidate
    if line.startswith('candidate:'):
        line = line.split(':', 1)[1]
    try:
        candidate = candidate_from_sdp(line)
    except (AssertionError, IndexError, ValueError) as e:
        raise CandidateApplyError(
            f'Malformed candidate {message.candidate!r}',
        ) from e
    candidate.sdpMid = message.sdpMid
    candidate.sdpMLineIndex = message.sdpMLineIndex
    return candidate


class NegotiationEngine:
    """Answering side of the WebRTC offer/answer exchange.

    The engine owns the single active
    [`PeerSession`][rtcsignal.negotiation.PeerSession]. An offer creates the
    peer connection, applies the remote description, drains any candidates
    that arrived early, and replies with exactly one answer. Data channels
    opened by the peer are handed to the
    [`DataChannelMessenger`][rtcsignal.messenger.DataChannelMessenger].

    Warning:
        All methods must be called from the owner task (see
        [`WorkQueue`][rtcsignal.utils.tasks.WorkQueue]). The engine is not
        safe for concurrent use from multiple threads.

    Example:
        ```python
        engine = NegotiationEngine(messenger, transport)

        engine.receive_candidate(early_candidate)  # buffered
        await engine.receive_offer(offer_sdp)  # answer broadcast
        ...
        await engine.teardown()
        ```

    Args:
        messenger: Messenger that adopts data channels opened by the peer.
        transport: Transport used to send answers and local candidates.
        ice_servers: STUN/TURN server URLs.
        turn_username: Username for TURN servers.
        turn_credential: Credential for TURN servers.
        video_source: Optional supplier of an outbound video track.
        step_timeout: Optional timeout in seconds for each negotiation step.
        connection_factory: Callable that creates the peer connection from
            the ICE configuration.
    """

    def __init__(
        self,
        messenger: DataChannelMessenger,
        transport: Transport,
        *,
        ice_servers: Sequence[str] = DEFAULT_ICE_SERVERS,
        turn_username: str | None = None,
        turn_credential: str | None = None,
        video_source: TrackSource | None = None,
        step_timeout: float | None = None,
        connection_factory: Callable[
            [RTCConfiguration],
            RTCPeerConnection,
        ] = RTCPeerConnection,
    ) -> None:
        self._messenger = messenger
        self._transport = transport
        self._configuration = ice_configuration(
            ice_servers,
            turn_username,
            turn_credential,
        )
        self._video_source = video_source
        self._step_timeout = step_timeout
        self._connection_factory = connection_factory

        self._session = PeerSession()
        self._candidate_tasks: set[asyncio.Task[Any]] = set()
        self._close_callbacks: list[
            tuple[Callable[..., Awaitable[None]], tuple[Any, ...]]
        ] = []

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._session.state.value}]'

    @property
    def session(self) -> PeerSession:
        """Active peer session."""
        return self._session

    @property
    def state(self) -> NegotiationState:
        """Negotiation state of the active session."""
        return self._session.state

    def on_close_callback(
        self,
        callback: Callable[..., Awaitable[None]],
        *args: Any,
    ) -> None:
        """Configure a callback for when the peer connection fails or closes.

        The callback is not invoked for connections closed by
        [`teardown()`][rtcsignal.negotiation.NegotiationEngine.teardown].

        Args:
            callback: Callable to invoke when the connection state of the
                active session changes to closed or failed.
            args: Positional arguments to pass to the callback.
        """
        self._close_callbacks.append((callback, args))

    def begin_offer(self, sdp: str) -> asyncio.Task[None]:
        """Claim the idle session for a remote offer and start negotiating.

        The session leaves `idle` before this returns, so a
        [`teardown()`][rtcsignal.negotiation.NegotiationEngine.teardown]
        that runs after this call always finds and cancels the negotiation,
        even if the returned task has not started yet.

        Args:
            sdp: Session description of the remote offer.

        Returns:
            Task running the negotiation. Awaiting it raises the errors
            documented in
            [`receive_offer()`][rtcsignal.negotiation.NegotiationEngine.receive_offer].

        Raises:
            NegotiationInProgressError: If a session is already active.
        """
        session = self._session
        if session.state is not NegotiationState.idle:
            raise NegotiationInProgressError(
                'Received offer while a session is in state '
                f'{session.state.value}. Tear down the active session before '
                'sending a new offer.',
            )

        logger.info(f'{self._log_prefix}: received offer')
        session.state = NegotiationState.remote_offer_received
        task = asyncio.create_task(self._run_offer(session, sdp))
        task.set_name('negotiation')
        session.negotiation_task = task
        return task

    async def receive_offer(self, sdp: str) -> None:
        """Negotiate a new session from a remote offer.

        Args:
            sdp: Session description of the remote offer.

        Raises:
            NegotiationInProgressError: If a session is already active.
            NegotiationTimeoutError: If a negotiation step exceeds the
                step timeout. The session is torn down.
            NegotiationError: If the connection cannot be created, the remote
                description cannot be applied, or the answer cannot be
                created. The session is torn down.
        """
        await self.begin_offer(sdp)

    async def _run_offer(self, session: PeerSession, sdp: str) -> None:
        try:
            session.connection = self._create_connection(session)
            await self._negotiate(session, sdp)
        except asyncio.CancelledError:
            logger.info(f'{self._log_prefix}: negotiation cancelled')
            raise
        except Exception as e:
            logger.error(
                f'{self._log_prefix}: negotiation failed: '
                f'{e.__class__.__name__}: {e}',
            )
            session.state = NegotiationState.disconnected
            await self._teardown_session(session)
            if isinstance(e, NegotiationError):
                raise
            raise NegotiationError(
                f'Negotiation failed: {e.__class__.__name__}: {e}',
            ) from e
        finally:
            session.negotiation_task = None

    async def _negotiate(self, session: PeerSession, sdp: str) -> None:
        pc = session.connection
        assert pc is not None

        offer = RTCSessionDescription(sdp=sdp, type='offer')
        await self._step(
            'set remote description',
            pc.setRemoteDescription(offer),
        )
        session.state = NegotiationState.remote_description_set
        logger.info(f'{self._log_prefix}: remote description set')

        async with session.apply_lock:
            session.remote_description_set = True
            pending = session.pending_candidates
            session.pending_candidates = []
            if len(pending) > 0:
                logger.info(
                    f'{self._log_prefix}: applying {len(pending)} buffered '
                    'candidate(s)',
                )
            for message in pending:
                await self._add_candidate(session, message)

        self._attach_video(pc)

        answer = await self._step('create answer', pc.createAnswer())
        await self._step(
            'set local description',
            pc.setLocalDescription(answer),
        )
        session.state = NegotiationState.answer_created
        logger.info(f'{self._log_prefix}: answer created')

        await self._emit(
            SignalingMessage(
                type=MessageType.answer,
                sdp=pc.localDescription.sdp,
            ),
        )
        if session.state is NegotiationState.answer_created:
            session.state = NegotiationState.answer_sent
        logger.info(f'{self._log_prefix}: answer sent')

    async def _step(self, name: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, self._step_timeout)
        except asyncio.TimeoutError as e:
            raise NegotiationTimeoutError(
                f'Timeout waiting to {name} after {self._step_timeout} s.',
            ) from e

    def _attach_video(self, pc: RTCPeerConnection) -> None:
        if self._video_source is None:
            logger.info(f'{self._log_prefix}: no outbound video source')
            return

        track = self._video_source.track()
        if track is None:
            logger.warning(f'{self._log_prefix}: video source has no track')
        elif not any(t.kind == 'video' for t in pc.getTransceivers()):
            logger.warning(
                f'{self._log_prefix}: offer did not negotiate video so the '
                'video track will not be sent',
            )
        else:
            pc.addTrack(track)
            logger.info(f'{self._log_prefix}: added outbound video track')

    def receive_candidate(self, message: SignalingMessage) -> None:
        """Apply or buffer a remote ICE candidate.

        Candidates received before the remote description is set are
        buffered and applied in arrival order once it is set. Later
        candidates are applied in arrival order behind any buffered ones.

        Args:
            message: Candidate message from the remote peer.
        """
        session = self._session
        if not message.candidate:
            logger.debug(f'{self._log_prefix}: remote end of candidates')
            return

        if session.remote_description_set:
            task = spawn_guarded_background_task(
                self._apply_candidate,
                session,
                message,
            )
            self._candidate_tasks.add(task)
            task.add_done_callback(self._candidate_tasks.discard)
        else:
            session.pending_candidates.append(message)
            logger.debug(
                f'{self._log_prefix}: candidate buffered '
                f'({len(session.pending_candidates)} pending)',
            )

    async def _apply_candidate(
        self,
        session: PeerSession,
        message: SignalingMessage,
    ) -> None:
        async with session.apply_lock:
            if session.closed:
                return
            await self._add_candidate(session, message)

    async def _add_candidate(
        self,
        session: PeerSession,
        message: SignalingMessage,
    ) -> None:
        pc = session.connection
        assert pc is not None
        try:
            candidate = parse_candidate(message)
            try:
                await pc.addIceCandidate(candidate)
            except Exception as e:
                raise CandidateApplyError(
                    f'Failed to add candidate {message.candidate!r}: {e}',
                ) from e
        except CandidateApplyError as e:
            session.dropped_candidates += 1
            logger.warning(f'{self._log_prefix}: dropping candidate: {e}')
        else:
            session.applied_candidates += 1
            logger.debug(
                f'{self._log_prefix}: applied candidate {message.candidate}',
            )

    async def handle_local_candidate(
        self,
        candidate: RTCIceCandidate | None,
    ) -> None:
        """Relay a locally gathered candidate to the peer.

        Note:
            aiortc includes gathered candidates in the answer's session
            description so this is only invoked by connections that trickle
            candidates.

        Args:
            candidate: Local candidate or `None` to mark the end of
                candidates, which is not relayed.
        """
        if candidate is None:
            logger.debug(f'{self._log_prefix}: local end of candidates')
            return

        line = candidate_to_sdp(candidate)
        if not line:
            logger.debug(f'{self._log_prefix}: local end of candidates')
            return

        await self._emit(
            SignalingMessage(
                type=MessageType.candidate,
                candidate=f'candidate:{line}',
                sdpMid=candidate.sdpMid,
                sdpMLineIndex=(
                    0
                    if candidate.sdpMLineIndex is None
                    else candidate.sdpMLineIndex
                ),
            ),
        )

    async def _emit(self, message: SignalingMessage) -> None:
        await self._transport.broadcast(encode_message(message))
        logger.debug(f'{self._log_prefix}: sent {message.type.value} message')

    def _create_connection(self, session: PeerSession) -> RTCPeerConnection:
        pc = self._connection_factory(self._configuration)

        def on_datachannel(channel: RTCDataChannel) -> None:
            if session.closed:
                channel.close()
                return
            logger.info(
                f'{self._log_prefix}: peer opened channel {channel.label}',
            )
            self._messenger.attach(channel)

        async def on_connectionstatechange() -> None:
            state = pc.connectionState
            logger.info(f'{self._log_prefix}: connection state is {state}')
            if session.closed or session is not self._session:
                return
            if state == 'connected':
                session.state = NegotiationState.connected
            elif state in ('failed', 'closed'):
                session.state = NegotiationState.disconnected
                for callback, args in self._close_callbacks:
                    await callback(*args)

        def on_iceconnectionstatechange() -> None:
            logger.info(
                f'{self._log_prefix}: ICE connection state is '
                f'{pc.iceConnectionState}',
            )

        pc.on('datachannel', on_datachannel)
        pc.on('connectionstatechange', on_connectionstatechange)
        pc.on('iceconnectionstatechange', on_iceconnectionstatechange)
        pc.on('icecandidate', self.handle_local_candidate)
        return pc

    async def teardown(self) -> None:
        """Tear down the active session.

        Cancels an in-flight negotiation, closes the data channel and peer
        connection, and discards buffered candidates and queued messages.
        A fresh idle session replaces the torn down one. Calling this
        multiple times is safe and this never raises.
        """
        await self._teardown_session(self._session)

    async def _teardown_session(self, session: PeerSession) -> None:
        if session.closed:
            logger.debug(f'{self._log_prefix}: session already torn down')
            return
        session.closed = True
        logger.info(f'{self._log_prefix}: tearing down session')

        task = session.negotiation_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        for candidate_task in list(self._candidate_tasks):
            candidate_task.cancel()
        session.pending_candidates.clear()

        if session is self._session:
            self._messenger.reset()

        if session.connection is not None:
            try:
                await session.connection.close()
            except Exception as e:
                logger.warning(
                    f'{self._log_prefix}: error closing connection: '
                    f'{e.__class__.__name__}: {e}',
                )

        if session is self._session:
            self._session = PeerSession()
        logger.info(f'{self._log_prefix}: session torn down')
