"""Matchmaking session engine.

Owns the current MatchSession and drives it from two inputs: game ticks
(polling, rally/engagement checks, hint arrow) and player deaths (result
reporting). HTTP calls run on a worker pool; their results come back
through ``_complete`` which re-checks that they still belong to the
current match before touching any state.

Threading model: ``on_tick``/``load_match``/``on_actor_death``/``reset``
are meant to be called from the game thread. Every piece of mutable state
is guarded by ``self._lock``. Work is collected under the lock and only
submitted, and listeners only notified, after it is released.
"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Optional

from runematch.api_client import ApiResult, MatchmakingApiClient, build_item_payload
from runematch.credentials import AccountState
from runematch.observer import Actor, GameObserver
from runematch.session import MatchSession, MatchUpdate, WorldPoint

logger = logging.getLogger(__name__)

POLL_INTERVAL_TICKS = 2
RALLY_DISTANCE = 15
DEFAULT_MAX_WORKERS = 4

MISSING_CREDENTIALS_MESSAGE = "Missing verification or RSN. Please re-verify your account."

MatchUpdateListener = Callable[[MatchUpdate], None]


class RequestKind(Enum):
    """Operation kinds; at most one request of each kind is in flight."""
    FETCH = "fetch"
    ACCEPT = "accept"
    BEGIN = "begin"
    REPORT = "report"
    REPORT_ITEMS = "report_items"
    REFRESH = "refresh"


@dataclass(frozen=True)
class _Ticket:
    """Identifies the match a request was issued for."""
    epoch: int
    match_code: str


@dataclass(frozen=True)
class _Job:
    kind: RequestKind
    ticket: _Ticket
    call: Callable[[], ApiResult]


class MatchmakingEngine:
    """Client-side state machine for one matchmaking session at a time.

    Example:
        engine = MatchmakingEngine(client, observer, account, listener=panel.on_update)
        engine.load_match("M-42")
        # then, once per game tick:
        engine.on_tick()
    """

    def __init__(
        self,
        api_client: MatchmakingApiClient,
        observer: GameObserver,
        account: AccountState,
        listener: Optional[MatchUpdateListener] = None,
        executor: Optional[Executor] = None,
        poll_interval_ticks: int = POLL_INTERVAL_TICKS,
        rally_distance: int = RALLY_DISTANCE,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        """Initialize the engine.

        Args:
            api_client: Transport for the matchmaking endpoints.
            observer: Source of player positions/interactions and hint-arrow sink.
            account: Verification code and verified username.
            listener: Optional callback for MatchUpdate events.
            executor: Worker pool for HTTP calls. A private
                ThreadPoolExecutor is created when omitted.
            poll_interval_ticks: Poll the server every N ticks.
            rally_distance: Radius in tiles around the rally point.
            max_workers: Pool size when the engine creates its own executor.
        """
        if poll_interval_ticks < 1:
            raise ValueError("poll_interval_ticks must be >= 1")

        self._client = api_client
        self._observer = observer
        self._account = account
        self._listeners: list[MatchUpdateListener] = []
        if listener is not None:
            self._listeners.append(listener)

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="matchmaking"
        )
        self.poll_interval_ticks = poll_interval_ticks
        self.rally_distance = rally_distance

        self._lock = threading.Lock()
        self._session: Optional[MatchSession] = None
        self._match_code: Optional[str] = None
        # Bumped by reset so results issued before it are dropped
        self._epoch = 0
        self._tick_counter = 0
        self._in_flight: set[RequestKind] = set()
        self._result_reported = False
        self._items_reported = False

        # Hint arrow memory, to avoid re-pointing it every tick
        self._last_rally_point: Optional[WorldPoint] = None
        self._last_hint_player: Optional[str] = None

    # Listener management

    def add_listener(self, listener: MatchUpdateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MatchUpdateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Read-only views

    @property
    def session(self) -> Optional[MatchSession]:
        return self._session

    def has_active_match(self) -> bool:
        return self._session is not None

    @property
    def result_reported(self) -> bool:
        return self._result_reported

    @property
    def items_reported(self) -> bool:
        return self._items_reported

    @property
    def tick_count(self) -> int:
        return self._tick_counter

    def is_in_flight(self, kind: RequestKind) -> bool:
        with self._lock:
            return kind in self._in_flight

    # Public operations

    def load_match(self, match_code: str) -> None:
        """Fetch a match by code and make it the current session.

        No-op while a previous fetch is still outstanding. Emits a failed
        update without touching the network when credentials are missing.
        """
        match_code = (match_code or "").strip()
        if not match_code:
            raise ValueError("match_code must not be empty")

        update = None
        jobs: list[_Job] = []
        with self._lock:
            if RequestKind.FETCH in self._in_flight:
                logger.debug(f"Ignoring load of {match_code}: fetch already in flight")
                return

            self._reset_locked()

            credentials = self._resolve_credentials()
            if credentials is None:
                logger.info("Cannot load match: missing verification code or RSN")
                update = MatchUpdate(None, MISSING_CREDENTIALS_MESSAGE, "", False, False)
            else:
                verification_code, rsn = credentials
                self._match_code = match_code
                logger.info(f"Loading match {match_code} as {rsn}")
                jobs.append(self._claim(
                    RequestKind.FETCH,
                    partial(self._client.get_match, verification_code, match_code, rsn),
                ))

        if update is not None:
            self._notify(update)
        self._dispatch(jobs)

    def on_tick(self) -> None:
        """Advance one game tick."""
        jobs: list[_Job] = []
        with self._lock:
            if self._session is None or RequestKind.FETCH in self._in_flight:
                return

            self._tick_counter += 1
            self._update_hint_arrow()

            if self._tick_counter % self.poll_interval_ticks == 0:
                jobs.extend(self._poll_job())

            jobs.extend(self._begin_job())
            jobs.extend(self._report_items_job())

        self._dispatch(jobs)

    def on_actor_death(self, name: Optional[str]) -> None:
        """Report the match result when one of the two participants dies.

        Args:
            name: Name of the player who died; becomes the reported loser.
        """
        jobs: list[_Job] = []
        with self._lock:
            session = self._session
            if session is None or RequestKind.REPORT in self._in_flight or self._result_reported:
                return
            if not name or not session.involves(name):
                return

            token = session.local_token
            credentials = self._resolve_credentials()
            if not token or credentials is None:
                logger.debug("Skipping result report: missing token or credentials")
                return

            verification_code, rsn = credentials
            logger.info(f"Reporting match {session.match_code}: {name} died")
            jobs.append(self._claim(
                RequestKind.REPORT,
                partial(
                    self._client.report_match,
                    verification_code, session.match_code, rsn, token, name,
                ),
            ))

        self._dispatch(jobs)

    def reset(self) -> None:
        """Forget the current match, all in-flight guards and the hint arrow."""
        with self._lock:
            self._reset_locked()

    def shutdown(self) -> None:
        """Reset and release the worker pool if the engine created it."""
        self.reset()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def get_minimap_target(self) -> Optional[WorldPoint]:
        """Where the minimap arrow should point, or None.

        The opponent's live position while fighting, otherwise the rally
        point while the match is not over.
        """
        session = self._session
        if session is None or session.is_terminal:
            return None

        if session.is_fighting:
            opponent = self._find_player(session.opponent_rsn)
            if opponent is not None:
                return opponent.position

        if session.rally is None:
            return None
        return session.rally.to_world_point()

    # Request construction (lock held)

    def _claim(self, kind: RequestKind, call: Callable[[], ApiResult]) -> _Job:
        self._in_flight.add(kind)
        return _Job(kind, _Ticket(self._epoch, self._match_code or ""), call)

    def _poll_job(self) -> list[_Job]:
        credentials = self._resolve_credentials()
        if credentials is None or self._session is None:
            return []
        verification_code, rsn = credentials
        return [self._claim(
            RequestKind.FETCH,
            partial(self._client.get_match, verification_code, self._session.match_code, rsn),
        )]

    def _accept_job(self) -> list[_Job]:
        session = self._session
        if session is None or session.local_joined or RequestKind.ACCEPT in self._in_flight:
            return []

        token = session.local_token
        credentials = self._resolve_credentials()
        if not token or credentials is None:
            return []

        verification_code, rsn = credentials
        logger.info(f"Accepting match {session.match_code}")
        return [self._claim(
            RequestKind.ACCEPT,
            partial(self._client.accept_match, verification_code, session.match_code, rsn, token),
        )]

    def _begin_job(self) -> list[_Job]:
        session = self._session
        if session is None or RequestKind.BEGIN in self._in_flight:
            return []
        if session.local_ready_to_fight or session.is_fighting or session.is_terminal:
            return []

        local_player = self._observer.get_local_player()
        if local_player is None:
            return []
        opponent = self._find_player(session.opponent_rsn)
        if opponent is None:
            return []

        should_begin = False
        if session.rally is not None:
            should_begin = self._within_rally(local_player, opponent, session.rally.to_world_point())
        if not should_begin:
            should_begin = self._mutually_engaged(local_player, opponent)
        if not should_begin:
            return []

        token = session.local_token
        credentials = self._resolve_credentials()
        if not token or credentials is None:
            return []

        verification_code, rsn = credentials
        logger.info(f"Beginning match {session.match_code} against {opponent.name}")
        return [self._claim(
            RequestKind.BEGIN,
            partial(self._client.begin_match, verification_code, session.match_code, rsn, token),
        )]

    def _report_items_job(self) -> list[_Job]:
        session = self._session
        if session is None or self._items_reported or RequestKind.REPORT_ITEMS in self._in_flight:
            return []
        if not session.is_fighting:
            return []

        token = session.local_token
        credentials = self._resolve_credentials()
        if not token or credentials is None:
            return []

        inventory = build_item_payload(self._observer.get_inventory())
        gear = build_item_payload(self._observer.get_equipment())

        verification_code, rsn = credentials
        return [self._claim(
            RequestKind.REPORT_ITEMS,
            partial(
                self._client.report_items,
                verification_code, session.match_code, rsn, token, inventory, gear,
            ),
        )]

    def _refresh_job(self) -> list[_Job]:
        match_code = self._match_code
        if not match_code or RequestKind.REFRESH in self._in_flight:
            return []
        credentials = self._resolve_credentials()
        if credentials is None:
            return []
        verification_code, rsn = credentials
        logger.info(f"Refreshing matchmaking token for {match_code}")
        return [self._claim(
            RequestKind.REFRESH,
            partial(self._client.get_match, verification_code, match_code, rsn),
        )]

    # Execution

    def _dispatch(self, jobs: list[_Job]) -> None:
        for job in jobs:
            try:
                self._executor.submit(self._run, job)
            except RuntimeError as e:
                # Executor already shut down
                logger.warning(f"Could not submit {job.kind.value} request: {e}")
                with self._lock:
                    if self._is_current(job.ticket):
                        self._in_flight.discard(job.kind)

    def _run(self, job: _Job) -> None:
        try:
            result = job.call()
        except Exception as e:
            logger.error(f"Unexpected error in {job.kind.value} request: {e}")
            result = ApiResult.failure(str(e))
        self._complete(job, result)

    def _complete(self, job: _Job, result: ApiResult) -> None:
        """Apply a finished request's result if it still belongs to this match."""
        jobs: list[_Job] = []
        with self._lock:
            if not self._is_current(job.ticket):
                logger.debug(
                    f"Discarding stale {job.kind.value} result for match {job.ticket.match_code}"
                )
                return

            self._in_flight.discard(job.kind)

            if result.success and result.session is not None and result.session.has_participants:
                self._session = result.session
                if job.kind in (RequestKind.FETCH, RequestKind.REFRESH):
                    jobs.extend(self._accept_job())
                self._update_result_status()

            if result.token_refresh:
                logger.info("Matchmaking token refresh requested by server")
                if job.kind is RequestKind.REFRESH:
                    logger.warning("Token refresh response asked for another refresh; not retrying")
                else:
                    jobs.extend(self._refresh_job())

            if job.kind is RequestKind.REPORT_ITEMS and result.success and not result.token_refresh:
                self._items_reported = True

            update = self._build_update(result)

        self._notify(update)
        self._dispatch(jobs)

    def _is_current(self, ticket: _Ticket) -> bool:
        return ticket.epoch == self._epoch and ticket.match_code == (self._match_code or "")

    def _build_update(self, result: ApiResult) -> MatchUpdate:
        # Applied sessions are already current; acks and refresh signals keep the last good one
        session = self._session if (result.success or result.token_refresh) else None
        return MatchUpdate(
            session=session,
            message=result.message,
            raw_response=result.raw_response,
            success=result.success,
            token_refresh=result.token_refresh,
        )

    def _notify(self, update: MatchUpdate) -> None:
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.error(f"Matchmaking listener error: {e}")

    # State helpers (lock held)

    def _reset_locked(self) -> None:
        self._epoch += 1
        self._session = None
        self._match_code = None
        self._tick_counter = 0
        self._in_flight.clear()
        self._result_reported = False
        self._items_reported = False
        self._clear_hint_arrow()

    def _update_result_status(self) -> None:
        session = self._session
        if session is not None and session.is_terminal and not self._result_reported:
            logger.info(f"Match {session.match_code} finished with status {session.status}")
            self._result_reported = True

    def _resolve_credentials(self) -> Optional[tuple[str, str]]:
        verification_code = self._account.verification_code
        rsn = self._resolve_local_rsn()
        if not verification_code or not rsn:
            return None
        return verification_code, rsn

    def _resolve_local_rsn(self) -> Optional[str]:
        username = self._account.verified_username
        if username:
            return username
        local_player = self._observer.get_local_player()
        if local_player is not None and local_player.name:
            return local_player.name
        return None

    def _find_player(self, name: Optional[str]) -> Optional[Actor]:
        if not name:
            return None
        return self._observer.find_player(name)

    def _within_rally(self, local_player: Actor, opponent: Actor, rally_point: WorldPoint) -> bool:
        local_distance = local_player.position.distance_to(rally_point)
        opponent_distance = opponent.position.distance_to(rally_point)
        # distance_to is None when on another plane
        if local_distance is None or opponent_distance is None:
            return False
        return local_distance <= self.rally_distance and opponent_distance <= self.rally_distance

    @staticmethod
    def _mutually_engaged(local_player: Actor, opponent: Actor) -> bool:
        return local_player.is_interacting_with(opponent) and opponent.is_interacting_with(local_player)

    # Hint arrow (lock held)

    def _update_hint_arrow(self) -> None:
        session = self._session
        if session is None or session.is_terminal:
            self._clear_hint_arrow()
            return

        if session.is_fighting:
            opponent = self._find_player(session.opponent_rsn)
            if opponent is None:
                self._clear_hint_arrow()
                return
            last = self._last_hint_player
            if last is None or last.lower() != opponent.name.lower():
                self._set_hint_arrow(opponent)
                self._last_hint_player = opponent.name
                self._last_rally_point = None
            return

        if session.rally is None:
            self._clear_hint_arrow()
            return

        rally_point = session.rally.to_world_point()
        if rally_point != self._last_rally_point or self._last_hint_player is not None:
            self._set_hint_arrow(rally_point)
            self._last_rally_point = rally_point
            self._last_hint_player = None

    def _set_hint_arrow(self, target) -> None:
        try:
            self._observer.set_hint_arrow(target)
        except Exception as e:
            logger.error(f"Failed to set hint arrow: {e}")

    def _clear_hint_arrow(self) -> None:
        if self._last_rally_point is None and self._last_hint_player is None:
            return
        self._last_rally_point = None
        self._last_hint_player = None
        try:
            self._observer.clear_hint_arrow()
        except Exception as e:
            logger.error(f"Failed to clear hint arrow: {e}")
