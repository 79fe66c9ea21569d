"""
Timing engine adapters.

An adapter owns one timing engine: it starts it, writes command lines to it,
and yields the notifications it emits. EngineProcess drives the real engine
binary over stdin/stdout pipes; other adapters (see pseudo.py) implement the
same interface in memory.
"""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Iterator

from nanotimer.errors import SpawnError, ClosedError, ValidationError
from nanotimer.protocol import Command, Notification, decode_notification

logger = logging.getLogger(__name__)

# Overrides the bundled engine location
ENGINE_ENV_VAR = "NANOTIMER_ENGINE"

DEFAULT_GRACE_PERIOD_S = 0.05


def default_engine_command() -> List[str]:
    """
    Locate the timing engine binary.

    Uses $NANOTIMER_ENGINE when set, otherwise bin/timer inside the
    nanotimer package directory.
    """
    path = os.environ.get(ENGINE_ENV_VAR)
    if not path:
        package_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        path = os.path.join(package_dir, "bin", "timer")
    return [path]


def check_line(line: str) -> None:
    """Reject anything that is not exactly one newline-terminated line"""
    if not isinstance(line, str) or not line.endswith("\n") or "\n" in line[:-1]:
        raise ValidationError(f"expected a single newline-terminated line, got {line!r}")


@dataclass
class EngineConfig:
    """Configuration for the timing engine process"""
    # Engine startup command (argv); the engine itself takes no arguments
    command: List[str] = field(default_factory=default_engine_command)
    # Working directory for the engine
    workdir: Optional[str] = None
    # How long destroy() waits after closing stdin before killing
    grace_period_s: float = DEFAULT_GRACE_PERIOD_S
    # Pass -d to the engine so it writes diagnostics to stderr
    debug: bool = False
    # Extra environment variables for the engine
    env: Dict[str, str] = field(default_factory=dict)

    def argv(self) -> List[str]:
        argv = list(self.command)
        if self.debug:
            argv.append("-d")
        return argv


class EngineAdapter:
    """
    Base class for timing engine adapters.

    Subclasses provide start, write_line, notifications, destroy and
    is_alive. One adapter serves exactly one NanoTimer.
    """

    def __init__(self):
        self.pid: Optional[int] = None
        self.closing: bool = False

    def start(self) -> int:
        """
        Start the engine.

        Returns:
            PID of the engine

        Raises:
            SpawnError: If the engine cannot be started
        """
        raise NotImplementedError

    def write_line(self, line: str) -> None:
        """
        Write one newline-terminated command line to the engine.

        Raises:
            ClosedError: If destroy() has begun or the engine input is gone
        """
        raise NotImplementedError

    def notifications(self) -> Iterator[Notification]:
        """Yield decoded notifications until the engine output ends"""
        raise NotImplementedError

    def destroy(self) -> None:
        """Shut the engine down. Must be idempotent."""
        raise NotImplementedError

    def is_alive(self) -> bool:
        raise NotImplementedError

    @property
    def returncode(self) -> Optional[int]:
        return None

    def send(self, command: Command) -> None:
        """Encode and write a command"""
        self.write_line(command.to_line() + "\n")


class EngineProcess(EngineAdapter):
    """
    Adapter for the external timing engine binary.

    The engine reads commands on stdin and writes notifications on stdout.
    Its stderr is forwarded to the log and never parsed.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        super().__init__()
        self.config = config or EngineConfig()
        self.process: Optional[subprocess.Popen] = None
        self.stderr_thread: Optional[threading.Thread] = None
        self._started = False
        self._reading = False
        self._write_lock = threading.Lock()

    def start(self) -> int:
        """
        Start the engine process with piped stdin/stdout/stderr.

        Returns:
            PID of the engine process

        Raises:
            SpawnError: If the binary cannot be found or executed, or the
                adapter was already started
        """
        argv = self.config.argv()
        if self._started:
            raise SpawnError("Timing engine already started", argv)
        self._started = True

        if not argv:
            raise SpawnError("No timing engine command configured", argv)

        env = None
        if self.config.env:
            env = dict(os.environ)
            env.update(self.config.env)

        try:
            self.process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.config.workdir,
                env=env,
                text=True,
                bufsize=1,  # Line buffered
                close_fds=True,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Cannot start timing engine {argv[0]}: {e}", argv) from e

        self.pid = self.process.pid
        logger.debug(f"Timing engine started with PID: {self.pid}")

        self.stderr_thread = threading.Thread(
            target=self._drain_stderr,
            name=f"nanotimer-stderr-{self.pid}",
            daemon=True,
        )
        self.stderr_thread.start()

        return self.pid

    def write_line(self, line: str) -> None:
        """
        Write a command line to the engine stdin.

        Args:
            line: Command line including its trailing newline
        """
        check_line(line)
        if self.process is None:
            raise ClosedError("Timing engine not started")
        if self.closing:
            raise ClosedError("Timing engine is shutting down")

        with self._write_lock:
            try:
                self.process.stdin.write(line)
                self.process.stdin.flush()
            except (OSError, ValueError) as e:
                # Broken pipe, or stdin already closed
                raise ClosedError(f"Timing engine input closed: {e}") from e

    def notifications(self) -> Iterator[Notification]:
        """
        Yield notifications read from the engine stdout.

        Ends when stdout closes. Noise lines are skipped. stdout is closed
        on every exit path.
        """
        if self.process is None:
            raise ClosedError("Timing engine not started")

        self._reading = True
        stdout = self.process.stdout
        try:
            for line in stdout:
                notification = decode_notification(line)
                if notification is not None:
                    yield notification
        except (OSError, ValueError) as e:
            logger.debug(f"Timing engine output closed: {e}")
        finally:
            stdout.close()
            self._log_exit()

    def _drain_stderr(self) -> None:
        """Forward engine diagnostics to the log"""
        level = logging.DEBUG if self.config.debug else logging.WARNING
        stderr = self.process.stderr
        try:
            for line in stderr:
                logger.log(level, f"Timing engine [{self.pid}]: {line.rstrip()}")
        except (OSError, ValueError):
            pass  # Pipe closed during shutdown
        finally:
            stderr.close()

    def _log_exit(self) -> None:
        try:
            code = self.process.wait(timeout=self.config.grace_period_s)
        except subprocess.TimeoutExpired:
            logger.debug(f"Timing engine {self.pid} closed stdout but is still running")
            return
        logger.debug(f"Timing engine {self.pid} exited with code {code}")

    def destroy(self) -> None:
        """
        Stop the engine.

        Closes stdin so the engine sees EOF, waits the grace period, then
        kills it if it is still running. Safe to call more than once.
        """
        if self.closing:
            return
        self.closing = True

        if self.process is None:
            return

        with self._write_lock:
            try:
                self.process.stdin.close()
            except OSError as e:
                logger.debug(f"Error closing timing engine stdin: {e}")

        try:
            self.process.wait(timeout=self.config.grace_period_s)
        except subprocess.TimeoutExpired:
            logger.debug(
                f"Timing engine {self.pid} still running after "
                f"{self.config.grace_period_s}s, killing"
            )
            self.kill()

        # Nobody is consuming stdout; release it here
        if not self._reading:
            self.process.stdout.close()

    def kill(self) -> None:
        """Force kill the engine process"""
        if self.process is not None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass  # Process already terminated
            try:
                self.process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning(f"Timing engine {self.pid} did not exit after kill")

    def is_alive(self) -> bool:
        """Check if the engine process is still running"""
        if self.process is None:
            return False
        return self.process.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        if self.process is None:
            return None
        return self.process.poll()
