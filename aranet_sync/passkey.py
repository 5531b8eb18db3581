"""
Passkey handoff between the pairing procedure and the user interfaces.

Pairing blocks in :meth:`PasskeyMediator.request_passkey` until a passkey
arrives from the terminal prompt or the web form. Producers deliver through
:meth:`PasskeyMediator.submit`, which behaves like a send on an unbuffered
channel: it returns only once the pairing procedure has taken the value.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

from aranet_sync.errors import (
    NoPasskeyRequestPending,
    PairingInProgress,
    PasskeyDeliveryTimeout,
    PasskeyRequestTimeout,
)

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_TIMEOUT_S = 5.0
MAX_PASSKEY = 999999


class PasskeyRequest:
    """Single-use rendezvous for one pairing attempt."""

    def __init__(self):
        self._cond = threading.Condition()
        self._receivers = 0
        self._value: Optional[int] = None
        self._delivered = False
        self._closed = False

    def receive(self, timeout: Optional[float] = None) -> int:
        """Block until a producer hands over a passkey."""
        with self._cond:
            self._receivers += 1
            self._cond.notify_all()
            try:
                if not self._cond.wait_for(lambda: self._delivered, timeout):
                    raise PasskeyRequestTimeout(f"no passkey received within {timeout}s")
                return self._value
            finally:
                self._receivers -= 1

    def deliver(self, value: int, timeout: Optional[float] = None) -> None:
        """Hand a passkey to the waiting receiver."""
        with self._cond:
            claimable = self._cond.wait_for(
                lambda: self._closed or (self._receivers > 0 and not self._delivered),
                timeout,
            )
            if self._closed:
                raise NoPasskeyRequestPending("pairing attempt is no longer waiting for a passkey")
            if not claimable:
                raise PasskeyDeliveryTimeout(f"no pairing attempt claimed the passkey within {timeout}s")
            self._value = value
            self._delivered = True
            self._cond.notify_all()

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()


@dataclass(frozen=True)
class Idle:
    """No pairing attempt is waiting."""


@dataclass(frozen=True)
class AwaitingPasskey:
    """A pairing attempt is blocked on ``request``."""
    request: PasskeyRequest


PasskeyState = Union[Idle, AwaitingPasskey]


def parse_passkey(text: str) -> int:
    """Parse a six-digit BLE passkey, raising ValueError on anything else."""
    text = text.strip()
    if not text:
        raise ValueError("passkey is required")
    if not (text.isascii() and text.isdigit()):
        raise ValueError(f"passkey must contain only digits: {text!r}")
    value = int(text)
    if value > MAX_PASSKEY:
        raise ValueError(f"passkey out of range 0-{MAX_PASSKEY}: {value}")
    return value


class PasskeyMediator:
    """Routes a passkey from whichever UI is active to the pairing procedure."""

    def __init__(
        self,
        terminal_prompt: bool = False,
        delivery_timeout_s: float = DEFAULT_DELIVERY_TIMEOUT_S,
        request_timeout_s: Optional[float] = None,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self.terminal_prompt = terminal_prompt
        self.delivery_timeout_s = delivery_timeout_s
        self.request_timeout_s = request_timeout_s
        self._input = input_fn
        self._output = output_fn
        # Guards _state; notified on every state transition
        self._changed = threading.Condition()
        self._state: PasskeyState = Idle()
        self._terminal_thread: Optional[threading.Thread] = None
        self._terminal_closed = False

    @property
    def state(self) -> PasskeyState:
        with self._changed:
            return self._state

    @property
    def wants_passkey(self) -> bool:
        return isinstance(self.state, AwaitingPasskey)

    def open_request(self) -> PasskeyRequest:
        """Transition Idle -> AwaitingPasskey."""
        with self._changed:
            if isinstance(self._state, AwaitingPasskey):
                raise PairingInProgress("another pairing attempt is already waiting for a passkey")
            request = PasskeyRequest()
            self._state = AwaitingPasskey(request)
            self._changed.notify_all()
        logger.info("Waiting for passkey (terminal or web form)")
        return request

    def close_request(self, request: PasskeyRequest):
        """Transition back to Idle and release any blocked producers."""
        with self._changed:
            if isinstance(self._state, AwaitingPasskey) and self._state.request is request:
                self._state = Idle()
                self._changed.notify_all()
        request.close()

    def request_passkey(self, timeout: Optional[float] = None) -> int:
        """Block the pairing procedure until a passkey is supplied."""
        if timeout is None:
            timeout = self.request_timeout_s
        request = self.open_request()
        try:
            if self.terminal_prompt:
                self._ensure_terminal_reader()
            passkey = request.receive(timeout)
            logger.info("Passkey received")
            return passkey
        finally:
            self.close_request(request)

    def submit(self, passkey: int, timeout: Optional[float] = None) -> None:
        """Deliver a passkey from a producer such as the web form."""
        if timeout is None:
            timeout = self.delivery_timeout_s
        state = self.state
        if not isinstance(state, AwaitingPasskey):
            raise NoPasskeyRequestPending("no passkey request pending")
        state.request.deliver(passkey, timeout)

    def _ensure_terminal_reader(self):
        """Start the terminal reader unless one is already running."""
        with self._changed:
            if self._terminal_closed:
                return
            if self._terminal_thread is not None and self._terminal_thread.is_alive():
                return
            self._terminal_thread = threading.Thread(
                target=self._terminal_loop,
                name="passkey-terminal",
                daemon=True,
            )
            self._terminal_thread.start()

    def _next_request(self, previous: Optional[PasskeyRequest]) -> PasskeyRequest:
        """Block until a pairing attempt other than ``previous`` is waiting."""
        with self._changed:
            self._changed.wait_for(
                lambda: isinstance(self._state, AwaitingPasskey) and self._state.request is not previous
            )
            return self._state.request

    def _read_terminal_passkey(self) -> Optional[int]:
        """Prompt until a valid passkey is entered; None once stdin is closed."""
        while True:
            try:
                line = self._input("Enter passkey: ")
            except EOFError:
                return None
            try:
                return parse_passkey(line)
            except ValueError:
                self._output(f"ERROR: expected 1 integer; got {line.strip()!r}")

    def _terminal_loop(self):
        """
        Single stdin reader shared by all pairing attempts.

        Each entered passkey goes to whichever attempt is waiting when the
        line is read, not the one that was waiting when the prompt appeared.
        """
        delivered_to = None
        while True:
            self._next_request(delivered_to)
            passkey = self._read_terminal_passkey()
            if passkey is None:
                logger.warning("Terminal input closed, waiting for passkey via web form only")
                with self._changed:
                    self._terminal_closed = True
                return

            state = self.state
            if not isinstance(state, AwaitingPasskey):
                logger.warning("Passkey entered on terminal while no pairing attempt is waiting, ignoring")
                continue
            try:
                state.request.deliver(passkey, timeout=None)
            except NoPasskeyRequestPending:
                logger.warning("Passkey entered on terminal after pairing stopped waiting, ignoring")
            delivered_to = state.request
